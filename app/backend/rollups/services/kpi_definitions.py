"""Scope-level KPI catalog and the rules that compute each KPI."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from uuid import UUID

from rollups.models.entities import ChangeRequest, ChangeRequestStatus, ProjectBudget, Risk
from rollups.repositories.rollup_repository import KpiValuePoint
from rollups.services.governance import GovernanceFlag

ROLLUP_ENGINE_VERSION = "1.0.0"

ZERO = Decimal("0")
Q4 = Decimal("0.0001")
OPEN_RISK_WARNING_THRESHOLD = 10

KpiDetail = dict[str, int | float]


class KpiUnit(str, Enum):
    RATIO = "ratio"
    NUMBER = "number"
    CURRENCY = "currency"
    COUNT = "count"


class KpiStatus(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    BREACH = "BREACH"
    NO_DATA = "NO_DATA"


@dataclass(frozen=True, slots=True)
class RollupContext:
    """Source data for one rollup invocation, built once and never mutated."""

    project_ids: tuple[UUID, ...]
    project_kpis: Mapping[UUID, tuple[KpiValuePoint, ...]]
    budgets: tuple[ProjectBudget, ...] = ()
    change_requests: tuple[ChangeRequest, ...] = ()
    risks: tuple[Risk, ...] = ()

    @property
    def projects_with_kpis(self) -> int:
        return sum(1 for points in self.project_kpis.values() if points)

    @property
    def kpi_value_ids(self) -> list[UUID]:
        return [point.id for points in self.project_kpis.values() for point in points]


@dataclass(frozen=True, slots=True)
class KpiComputation:
    value: float | int | None
    status: KpiStatus
    detail: KpiDetail = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class KpiDefinition:
    code: str
    name: str
    aggregation: str
    unit: KpiUnit
    compute: Callable[[RollupContext], KpiComputation]
    required_governance_flag: GovernanceFlag | None = None

    def display_name(self, scope_label: str) -> str:
        return f"{self.name} ({scope_label} {self.aggregation})"


def round_ratio(value: Decimal) -> float:
    return float(value.quantize(Q4, rounding=ROUND_HALF_UP))


def safe_div(numerator: Decimal, denominator: Decimal) -> float | None:
    """Divide and round to four places; a zero denominator yields ``None``."""

    if denominator == ZERO:
        return None
    return round_ratio(numerator / denominator)


def ratio_status(value: float | None) -> KpiStatus:
    if value is None:
        return KpiStatus.NO_DATA
    if value >= 0.95:
        return KpiStatus.OK
    if value >= 0.80:
        return KpiStatus.WARNING
    return KpiStatus.BREACH


def to_decimal(value: object) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def collect_latest_values(context: RollupContext, kpi_code: str) -> list[Decimal]:
    """Latest numeric value of ``kpi_code`` for every project that reports one."""

    values: list[Decimal] = []
    for project_id in context.project_ids:
        for point in context.project_kpis.get(project_id, ()):
            if point.kpi_code == kpi_code:
                if point.value is not None:
                    values.append(to_decimal(point.value))
                break
    return values


# ---------- Compute rules ----------
def compute_spi(context: RollupContext) -> KpiComputation:
    values = collect_latest_values(context, "spi")
    if not values:
        return KpiComputation(None, KpiStatus.NO_DATA, {"projects_with_spi": 0})
    total = sum(values, ZERO)
    average = safe_div(total, Decimal(len(values)))
    return KpiComputation(
        average,
        ratio_status(average),
        {"projects_with_spi": len(values), "sum": float(total)},
    )


def compute_schedule_variance(context: RollupContext) -> KpiComputation:
    values = collect_latest_values(context, "schedule_variance")
    if not values:
        return KpiComputation(None, KpiStatus.NO_DATA, {"projects_with_sv": 0})
    total = sum(values, ZERO)
    # Negative variance only warns; there is no breach tier for this KPI.
    status = KpiStatus.WARNING if total < ZERO else KpiStatus.OK
    return KpiComputation(float(total), status, {"projects_with_sv": len(values), "sum": float(total)})


def compute_budget_burn(context: RollupContext) -> KpiComputation:
    total_baseline = sum((to_decimal(row.baseline_budget) for row in context.budgets), ZERO)
    total_revised = sum((to_decimal(row.revised_budget) for row in context.budgets), ZERO)
    ratio = safe_div(total_revised, total_baseline)
    if ratio is None:
        return KpiComputation(None, KpiStatus.NO_DATA, {"total_baseline": 0})
    status = KpiStatus.WARNING if ratio > 1.0 else KpiStatus.OK
    return KpiComputation(
        ratio,
        status,
        {"total_baseline": float(total_baseline), "total_revised": float(total_revised)},
    )


def compute_forecast_at_completion(context: RollupContext) -> KpiComputation:
    if not context.budgets:
        return KpiComputation(None, KpiStatus.NO_DATA, {})
    total_fac = sum((to_decimal(row.forecast_at_completion) for row in context.budgets), ZERO)
    return KpiComputation(
        float(total_fac),
        KpiStatus.OK,
        {"budget_count": len(context.budgets), "total_fac": float(total_fac)},
    )


def compute_open_risk_count(context: RollupContext) -> KpiComputation:
    count = len(context.risks)
    status = KpiStatus.WARNING if count > OPEN_RISK_WARNING_THRESHOLD else KpiStatus.OK
    return KpiComputation(count, status, {"count": count})


def compute_change_request_approval_rate(context: RollupContext) -> KpiComputation:
    total = len(context.change_requests)
    if total == 0:
        return KpiComputation(None, KpiStatus.NO_DATA, {"total_crs": 0})
    approved = sum(1 for row in context.change_requests if row.status == ChangeRequestStatus.APPROVED)
    rejected = sum(1 for row in context.change_requests if row.status == ChangeRequestStatus.REJECTED)
    decided = approved + rejected
    if decided == 0:
        return KpiComputation(None, KpiStatus.NO_DATA, {"total_crs": total, "decided_crs": 0})
    rate = safe_div(Decimal(approved), Decimal(decided))
    return KpiComputation(
        rate,
        KpiStatus.OK,
        {"total_crs": total, "decided_crs": decided, "approved_crs": approved},
    )


def _summed_project_kpi(kpi_code: str, detail_key: str) -> Callable[[RollupContext], KpiComputation]:
    def compute(context: RollupContext) -> KpiComputation:
        values = collect_latest_values(context, kpi_code)
        if not values:
            return KpiComputation(None, KpiStatus.NO_DATA, {detail_key: 0})
        total = sum(values, ZERO)
        return KpiComputation(float(total), KpiStatus.OK, {detail_key: len(values), "sum": float(total)})

    compute.__name__ = f"compute_{kpi_code}"
    return compute


compute_throughput = _summed_project_kpi("throughput", "projects_with_throughput")
compute_wip = _summed_project_kpi("wip", "projects_with_wip")


# ---------- Registry ----------
KPI_DEFINITIONS: tuple[KpiDefinition, ...] = (
    KpiDefinition(
        code="spi",
        name="Schedule Performance Index",
        aggregation="Weighted",
        unit=KpiUnit.RATIO,
        compute=compute_spi,
        required_governance_flag=GovernanceFlag.BASELINES,
    ),
    KpiDefinition(
        code="schedule_variance",
        name="Schedule Variance",
        aggregation="Sum",
        unit=KpiUnit.NUMBER,
        compute=compute_schedule_variance,
        required_governance_flag=GovernanceFlag.BASELINES,
    ),
    KpiDefinition(
        code="budget_burn",
        name="Budget Burn Rate",
        aggregation="Ratio",
        unit=KpiUnit.RATIO,
        compute=compute_budget_burn,
        required_governance_flag=GovernanceFlag.COST_TRACKING,
    ),
    KpiDefinition(
        code="forecast_at_completion",
        name="Forecast at Completion",
        aggregation="Sum",
        unit=KpiUnit.CURRENCY,
        compute=compute_forecast_at_completion,
        required_governance_flag=GovernanceFlag.COST_TRACKING,
    ),
    KpiDefinition(
        code="open_risk_count",
        name="Open Risk Count",
        aggregation="Sum",
        unit=KpiUnit.COUNT,
        compute=compute_open_risk_count,
    ),
    KpiDefinition(
        code="change_request_approval_rate",
        name="Change Request Approval Rate",
        aggregation="Weighted",
        unit=KpiUnit.RATIO,
        compute=compute_change_request_approval_rate,
        required_governance_flag=GovernanceFlag.CHANGE_MANAGEMENT,
    ),
    KpiDefinition(
        code="throughput",
        name="Throughput",
        aggregation="Sum",
        unit=KpiUnit.COUNT,
        compute=compute_throughput,
    ),
    KpiDefinition(
        code="wip",
        name="Work In Progress",
        aggregation="Sum",
        unit=KpiUnit.COUNT,
        compute=compute_wip,
    ),
)


def _ensure_unique_codes(definitions: Sequence[KpiDefinition]) -> None:
    codes = [definition.code for definition in definitions]
    duplicates = sorted({code for code in codes if codes.count(code) > 1})
    if duplicates:
        raise ValueError(f"Duplicate KPI definition codes: {', '.join(duplicates)}")


_ensure_unique_codes(KPI_DEFINITIONS)
