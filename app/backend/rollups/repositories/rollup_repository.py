"""Read-only repository for scope resolution and rollup source data."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from rollups.models.entities import (
    RISK_STATUS_OPEN,
    ChangeRequest,
    KpiDefinitionRecord,
    Portfolio,
    PortfolioProject,
    Program,
    Project,
    ProjectBudget,
    ProjectKpiValue,
    Risk,
)


@dataclass(frozen=True, slots=True)
class KpiValuePoint:
    """One project-level KPI value joined to its KPI code."""

    id: UUID
    project_id: UUID
    kpi_code: str
    as_of_date: date
    value: Decimal | None


def sorted_ids(ids: Iterable[UUID]) -> list[UUID]:
    """Deduplicate and order ids by their canonical string form."""

    return sorted(set(ids), key=str)


def latest_kpi_values_by_project(
    points: Sequence[KpiValuePoint],
    project_ids: Sequence[UUID],
) -> dict[UUID, tuple[KpiValuePoint, ...]]:
    """Keep the most recent value per KPI code, independently for each project.

    Every requested project gets an entry, empty when it reported nothing.
    Ties on ``as_of_date`` fall back to the id so selection never depends on
    the order rows came back from storage.
    """

    grouped: dict[UUID, list[KpiValuePoint]] = {project_id: [] for project_id in project_ids}
    for point in points:
        if point.project_id in grouped and point.kpi_code:
            grouped[point.project_id].append(point)

    latest: dict[UUID, tuple[KpiValuePoint, ...]] = {}
    for project_id, project_points in grouped.items():
        project_points.sort(key=lambda row: (row.as_of_date, str(row.id)), reverse=True)
        by_code: dict[str, KpiValuePoint] = {}
        for point in project_points:
            by_code.setdefault(point.kpi_code, point)
        latest[project_id] = tuple(by_code[code] for code in sorted(by_code))
    return latest


class RollupRepository:
    """Queries consumed by portfolio and program KPI rollups.

    Every loader issues a single bulk query for the whole project set and
    returns immediately, without touching the database, when the set is empty.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # ---------- Scope records ----------
    def get_portfolio(
        self,
        portfolio_id: UUID,
        *,
        organization_id: UUID,
        workspace_id: UUID,
    ) -> Portfolio | None:
        return self.db.scalar(
            select(Portfolio).where(
                and_(
                    Portfolio.id == portfolio_id,
                    Portfolio.organization_id == organization_id,
                    Portfolio.workspace_id == workspace_id,
                )
            )
        )

    def get_program(
        self,
        program_id: UUID,
        *,
        organization_id: UUID,
        workspace_id: UUID,
    ) -> Program | None:
        return self.db.scalar(
            select(Program).where(
                and_(
                    Program.id == program_id,
                    Program.organization_id == organization_id,
                    Program.workspace_id == workspace_id,
                )
            )
        )

    def get_portfolio_by_id(self, portfolio_id: UUID, *, organization_id: UUID) -> Portfolio | None:
        return self.db.scalar(
            select(Portfolio).where(
                and_(
                    Portfolio.id == portfolio_id,
                    Portfolio.organization_id == organization_id,
                )
            )
        )

    # ---------- Scope membership ----------
    def list_portfolio_project_ids(
        self,
        portfolio_id: UUID,
        *,
        organization_id: UUID,
        workspace_id: UUID,
    ) -> list[UUID]:
        direct_ids = self.db.scalars(
            select(Project.id).where(
                and_(
                    Project.portfolio_id == portfolio_id,
                    Project.organization_id == organization_id,
                    Project.workspace_id == workspace_id,
                )
            )
        ).all()
        linked_ids = self.db.scalars(
            select(PortfolioProject.project_id)
            .join(Project, Project.id == PortfolioProject.project_id)
            .where(
                and_(
                    PortfolioProject.portfolio_id == portfolio_id,
                    PortfolioProject.organization_id == organization_id,
                    Project.workspace_id == workspace_id,
                )
            )
        ).all()
        return sorted_ids([*direct_ids, *linked_ids])

    def list_program_project_ids(
        self,
        program_id: UUID,
        *,
        organization_id: UUID,
        workspace_id: UUID,
    ) -> list[UUID]:
        project_ids = self.db.scalars(
            select(Project.id).where(
                and_(
                    Project.program_id == program_id,
                    Project.organization_id == organization_id,
                    Project.workspace_id == workspace_id,
                )
            )
        ).all()
        return sorted_ids(project_ids)

    # ---------- Loaders ----------
    def list_kpi_value_points(
        self,
        project_ids: Sequence[UUID],
        *,
        workspace_id: UUID,
        as_of_date: date,
    ) -> list[KpiValuePoint]:
        if not project_ids:
            return []

        rows = self.db.execute(
            select(
                ProjectKpiValue.id,
                ProjectKpiValue.project_id,
                KpiDefinitionRecord.code,
                ProjectKpiValue.as_of_date,
                ProjectKpiValue.value_numeric,
            )
            .join(KpiDefinitionRecord, KpiDefinitionRecord.id == ProjectKpiValue.kpi_definition_id)
            .where(
                and_(
                    ProjectKpiValue.workspace_id == workspace_id,
                    ProjectKpiValue.project_id.in_(project_ids),
                    ProjectKpiValue.as_of_date <= as_of_date,
                )
            )
            .order_by(ProjectKpiValue.as_of_date.desc())
        ).all()
        return [
            KpiValuePoint(
                id=row.id,
                project_id=row.project_id,
                kpi_code=row.code,
                as_of_date=row.as_of_date,
                value=row.value_numeric,
            )
            for row in rows
        ]

    def load_project_kpis(
        self,
        project_ids: Sequence[UUID],
        *,
        workspace_id: UUID,
        as_of_date: date,
    ) -> dict[UUID, tuple[KpiValuePoint, ...]]:
        if not project_ids:
            return {}
        points = self.list_kpi_value_points(project_ids, workspace_id=workspace_id, as_of_date=as_of_date)
        return latest_kpi_values_by_project(points, project_ids)

    def list_budgets(self, project_ids: Sequence[UUID], *, workspace_id: UUID) -> Sequence[ProjectBudget]:
        if not project_ids:
            return []
        return self.db.scalars(
            select(ProjectBudget).where(
                and_(
                    ProjectBudget.workspace_id == workspace_id,
                    ProjectBudget.project_id.in_(project_ids),
                )
            )
        ).all()

    def list_change_requests(self, project_ids: Sequence[UUID], *, workspace_id: UUID) -> Sequence[ChangeRequest]:
        if not project_ids:
            return []
        return self.db.scalars(
            select(ChangeRequest).where(
                and_(
                    ChangeRequest.workspace_id == workspace_id,
                    ChangeRequest.project_id.in_(project_ids),
                )
            )
        ).all()

    def list_open_risks(self, project_ids: Sequence[UUID], *, organization_id: UUID) -> Sequence[Risk]:
        if not project_ids:
            return []
        return self.db.scalars(
            select(Risk).where(
                and_(
                    Risk.project_id.in_(project_ids),
                    Risk.organization_id == organization_id,
                    Risk.status == RISK_STATUS_OPEN,
                )
            )
        ).all()
