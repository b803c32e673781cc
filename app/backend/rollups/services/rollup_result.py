"""Rollup output records, input fingerprinting, and result assembly."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from enum import Enum
from uuid import UUID

from rollups.services.kpi_definitions import KpiStatus, KpiUnit, RollupContext

SKIP_REASON_GOVERNANCE_FLAG_DISABLED = "GOVERNANCE_FLAG_DISABLED"
COMPUTE_ERROR_MARKER = "COMPUTE_ERROR"
INPUT_HASH_LENGTH = 16


class RollupScope(str, Enum):
    PORTFOLIO = "PORTFOLIO"
    PROGRAM = "PROGRAM"

    @property
    def label(self) -> str:
        return self.value.title()


@dataclass(frozen=True, slots=True)
class RollupKpi:
    kpi_code: str
    kpi_name: str
    value: float | int | None
    unit: KpiUnit
    status: KpiStatus
    value_json: dict[str, object]

    def to_dict(self) -> dict[str, object]:
        return {
            "kpi_code": self.kpi_code,
            "kpi_name": self.kpi_name,
            "value": self.value,
            "unit": self.unit.value,
            "status": self.status.value,
            "value_json": dict(self.value_json),
        }


@dataclass(frozen=True, slots=True)
class SkippedKpi:
    kpi_code: str
    kpi_name: str
    reason: str
    governance_flag: str | None

    def to_dict(self) -> dict[str, object]:
        return {
            "kpi_code": self.kpi_code,
            "kpi_name": self.kpi_name,
            "reason": self.reason,
            "governance_flag": self.governance_flag,
        }


@dataclass(frozen=True, slots=True)
class RollupSources:
    project_count: int
    projects_with_kpis: int
    budgets_found: int


@dataclass(frozen=True, slots=True)
class RollupResult:
    scope: RollupScope
    scope_id: UUID
    portfolio_id: UUID | None
    as_of_date: date
    engine_version: str
    input_hash: str
    computed: tuple[RollupKpi, ...]
    skipped: tuple[SkippedKpi, ...]
    sources: RollupSources

    def to_dict(self) -> dict[str, object]:
        """JSON-ready form with string ids and an ISO date."""

        payload: dict[str, object] = {
            "scope": self.scope.value,
            "scope_id": str(self.scope_id),
        }
        if self.scope is RollupScope.PROGRAM:
            payload["program_id"] = str(self.scope_id)
        payload["portfolio_id"] = str(self.portfolio_id) if self.portfolio_id is not None else None
        payload.update(
            {
                "as_of_date": self.as_of_date.isoformat(),
                "engine_version": self.engine_version,
                "input_hash": self.input_hash,
                "computed": [row.to_dict() for row in self.computed],
                "skipped": [row.to_dict() for row in self.skipped],
                "sources": {
                    "project_count": self.sources.project_count,
                    "projects_with_kpis": self.sources.projects_with_kpis,
                    "budgets_found": self.sources.budgets_found,
                },
            }
        )
        return payload


def _sorted_strings(ids: Iterable[UUID | str]) -> list[str]:
    return sorted(str(value) for value in ids)


def compute_input_hash(
    *,
    scope_id: UUID,
    as_of_date: date,
    project_ids: Iterable[UUID],
    budget_ids: Iterable[UUID],
    kpi_value_ids: Iterable[UUID],
) -> str:
    """Fingerprint everything that fed a rollup.

    Each id list is sorted before serialization so the hash does not depend
    on the order rows were returned in.
    """

    payload = {
        "scope_id": str(scope_id),
        "as_of_date": as_of_date.isoformat(),
        "project_ids": _sorted_strings(project_ids),
        "budget_ids": _sorted_strings(budget_ids),
        "kpi_value_ids": _sorted_strings(kpi_value_ids),
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:INPUT_HASH_LENGTH]


def assemble_result(
    *,
    scope: RollupScope,
    scope_id: UUID,
    portfolio_id: UUID | None,
    as_of_date: date,
    engine_version: str,
    context: RollupContext,
    computed: Sequence[RollupKpi],
    skipped: Sequence[SkippedKpi],
) -> RollupResult:
    input_hash = compute_input_hash(
        scope_id=scope_id,
        as_of_date=as_of_date,
        project_ids=context.project_ids,
        budget_ids=[row.id for row in context.budgets],
        kpi_value_ids=context.kpi_value_ids,
    )
    return RollupResult(
        scope=scope,
        scope_id=scope_id,
        portfolio_id=portfolio_id,
        as_of_date=as_of_date,
        engine_version=engine_version,
        input_hash=input_hash,
        computed=tuple(sorted(computed, key=lambda row: row.kpi_code)),
        skipped=tuple(sorted(skipped, key=lambda row: row.kpi_code)),
        sources=RollupSources(
            project_count=len(context.project_ids),
            projects_with_kpis=context.projects_with_kpis,
            budgets_found=len(context.budgets),
        ),
    )
