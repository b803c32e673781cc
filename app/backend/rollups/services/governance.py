"""Governance flags in effect for a rollup scope."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum

from rollups.models.entities import Portfolio, Program


class GovernanceFlag(str, Enum):
    COST_TRACKING = "cost_tracking_enabled"
    BASELINES = "baselines_enabled"
    ITERATIONS = "iterations_enabled"
    CHANGE_MANAGEMENT = "change_management_enabled"


@dataclass(frozen=True, slots=True)
class GovernanceFlags:
    cost_tracking_enabled: bool = False
    baselines_enabled: bool = False
    iterations_enabled: bool = False
    change_management_enabled: bool = False

    def is_enabled(self, flag: GovernanceFlag) -> bool:
        return bool(getattr(self, flag.value))

    def as_dict(self) -> dict[str, bool]:
        return asdict(self)


DISABLED_GOVERNANCE = GovernanceFlags()


def governance_from_portfolio(portfolio: Portfolio) -> GovernanceFlags:
    """Read the four flags straight off a portfolio record."""

    return GovernanceFlags(
        cost_tracking_enabled=bool(portfolio.cost_tracking_enabled),
        baselines_enabled=bool(portfolio.baselines_enabled),
        iterations_enabled=bool(portfolio.iterations_enabled),
        change_management_enabled=bool(portfolio.change_management_enabled),
    )


def resolve_program_governance(program: Program, parent_portfolio: Portfolio | None) -> GovernanceFlags:
    """Inherit flags from the program's parent portfolio.

    A program without a resolvable parent gets every flag off, so KPIs whose
    data guarantees come from portfolio governance are skipped rather than
    computed from unverified data.
    """

    if program.portfolio_id is not None and parent_portfolio is not None and parent_portfolio.id == program.portfolio_id:
        return governance_from_portfolio(parent_portfolio)
    return DISABLED_GOVERNANCE
