"""Portfolio and program KPI rollup service layer."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime, timezone
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from rollups.repositories.rollup_repository import RollupRepository
from rollups.services.governance import GovernanceFlags, governance_from_portfolio, resolve_program_governance
from rollups.services.kpi_definitions import (
    KPI_DEFINITIONS,
    ROLLUP_ENGINE_VERSION,
    KpiDefinition,
    KpiStatus,
    RollupContext,
)
from rollups.services.rollup_result import (
    COMPUTE_ERROR_MARKER,
    SKIP_REASON_GOVERNANCE_FLAG_DISABLED,
    RollupKpi,
    RollupResult,
    RollupScope,
    SkippedKpi,
    assemble_result,
)

logger = logging.getLogger(__name__)

PORTFOLIO_ROLLUP_ENGINE_VERSION = ROLLUP_ENGINE_VERSION
PROGRAM_ROLLUP_ENGINE_VERSION = ROLLUP_ENGINE_VERSION


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def evaluate_definitions(
    definitions: Sequence[KpiDefinition],
    *,
    context: RollupContext,
    governance: GovernanceFlags,
    scope: RollupScope,
    engine_version: str,
) -> tuple[list[RollupKpi], list[SkippedKpi]]:
    """Gate and compute every definition, in registry order.

    Gated definitions are reported as skipped without being computed. A
    definition that raises is reported as ``NO_DATA`` with an error marker
    so one failing KPI never aborts the batch.
    """

    computed: list[RollupKpi] = []
    skipped: list[SkippedKpi] = []

    for definition in definitions:
        kpi_name = definition.display_name(scope.label)
        flag = definition.required_governance_flag
        if flag is not None and not governance.is_enabled(flag):
            skipped.append(
                SkippedKpi(
                    kpi_code=definition.code,
                    kpi_name=kpi_name,
                    reason=SKIP_REASON_GOVERNANCE_FLAG_DISABLED,
                    governance_flag=flag.value,
                )
            )
            continue

        try:
            result = definition.compute(context)
        except Exception as exc:
            logger.warning("KPI compute error for %s (%s scope): %s", definition.code, scope.value, exc)
            computed.append(
                RollupKpi(
                    kpi_code=definition.code,
                    kpi_name=kpi_name,
                    value=None,
                    unit=definition.unit,
                    status=KpiStatus.NO_DATA,
                    value_json={
                        "error": COMPUTE_ERROR_MARKER,
                        "engine_version": engine_version,
                        "scope": scope.value,
                    },
                )
            )
            continue

        computed.append(
            RollupKpi(
                kpi_code=definition.code,
                kpi_name=kpi_name,
                value=result.value,
                unit=definition.unit,
                status=result.status,
                value_json={
                    **result.detail,
                    "engine_version": engine_version,
                    "scope": scope.value,
                },
            )
        )

    return computed, skipped


class KpiRollupService:
    """Aggregates project-level metrics into portfolio and program KPIs.

    Each call reads the scope record, its member projects and the four
    source collections exactly once, whatever the number of projects.
    """

    def __init__(self, db: Session, repo: RollupRepository | None = None) -> None:
        self.db = db
        self.repo = repo if repo is not None else RollupRepository(db)
        self.definitions = KPI_DEFINITIONS

    def compute_for_portfolio(
        self,
        *,
        workspace_id: UUID,
        portfolio_id: UUID,
        organization_id: UUID,
        as_of_date: date | None = None,
    ) -> RollupResult:
        effective_date = as_of_date or today_utc()

        portfolio = self.repo.get_portfolio(
            portfolio_id,
            organization_id=organization_id,
            workspace_id=workspace_id,
        )
        if portfolio is None:
            logger.info("Portfolio %s not found in workspace %s", portfolio_id, workspace_id)
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Portfolio not found.")

        project_ids = self.repo.list_portfolio_project_ids(
            portfolio_id,
            organization_id=organization_id,
            workspace_id=workspace_id,
        )
        context = self._load_context(
            project_ids,
            workspace_id=workspace_id,
            organization_id=organization_id,
            as_of_date=effective_date,
        )
        return self._rollup(
            scope=RollupScope.PORTFOLIO,
            scope_id=portfolio_id,
            portfolio_id=portfolio_id,
            as_of_date=effective_date,
            engine_version=PORTFOLIO_ROLLUP_ENGINE_VERSION,
            context=context,
            governance=governance_from_portfolio(portfolio),
        )

    def compute_for_program(
        self,
        *,
        workspace_id: UUID,
        program_id: UUID,
        organization_id: UUID,
        as_of_date: date | None = None,
    ) -> RollupResult:
        effective_date = as_of_date or today_utc()

        program = self.repo.get_program(
            program_id,
            organization_id=organization_id,
            workspace_id=workspace_id,
        )
        if program is None:
            logger.info("Program %s not found in workspace %s", program_id, workspace_id)
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Program not found.")

        project_ids = self.repo.list_program_project_ids(
            program_id,
            organization_id=organization_id,
            workspace_id=workspace_id,
        )
        context = self._load_context(
            project_ids,
            workspace_id=workspace_id,
            organization_id=organization_id,
            as_of_date=effective_date,
        )

        parent_portfolio = None
        if program.portfolio_id is not None:
            parent_portfolio = self.repo.get_portfolio_by_id(
                program.portfolio_id,
                organization_id=organization_id,
            )

        return self._rollup(
            scope=RollupScope.PROGRAM,
            scope_id=program_id,
            portfolio_id=program.portfolio_id,
            as_of_date=effective_date,
            engine_version=PROGRAM_ROLLUP_ENGINE_VERSION,
            context=context,
            governance=resolve_program_governance(program, parent_portfolio),
        )

    # ---------- Internals ----------
    def _load_context(
        self,
        project_ids: Sequence[UUID],
        *,
        workspace_id: UUID,
        organization_id: UUID,
        as_of_date: date,
    ) -> RollupContext:
        # One Session, one snapshot; Session is not thread-safe, so loaders run in turn.
        project_kpis = self.repo.load_project_kpis(project_ids, workspace_id=workspace_id, as_of_date=as_of_date)
        budgets = self.repo.list_budgets(project_ids, workspace_id=workspace_id)
        change_requests = self.repo.list_change_requests(project_ids, workspace_id=workspace_id)
        risks = self.repo.list_open_risks(project_ids, organization_id=organization_id)

        return RollupContext(
            project_ids=tuple(project_ids),
            project_kpis=project_kpis,
            budgets=tuple(budgets),
            change_requests=tuple(change_requests),
            risks=tuple(risks),
        )

    def _rollup(
        self,
        *,
        scope: RollupScope,
        scope_id: UUID,
        portfolio_id: UUID | None,
        as_of_date: date,
        engine_version: str,
        context: RollupContext,
        governance: GovernanceFlags,
    ) -> RollupResult:
        computed, skipped = evaluate_definitions(
            self.definitions,
            context=context,
            governance=governance,
            scope=scope,
            engine_version=engine_version,
        )
        result = assemble_result(
            scope=scope,
            scope_id=scope_id,
            portfolio_id=portfolio_id,
            as_of_date=as_of_date,
            engine_version=engine_version,
            context=context,
            computed=computed,
            skipped=skipped,
        )
        logger.debug(
            "%s rollup %s: %d projects, input hash %s",
            scope.label,
            scope_id,
            len(context.project_ids),
            result.input_hash,
        )
        return result
