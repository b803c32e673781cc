"""Portfolio and program KPI rollup endpoints."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from rollups.core.config import Settings, get_settings
from rollups.core.tenancy import TenantContext, get_tenant_context
from rollups.db.dependencies import get_db_session
from rollups.services.kpi_rollup_service import KpiRollupService

router = APIRouter(prefix="/workspaces/{workspace_id}", tags=["rollups"])


def _service(db: Session) -> KpiRollupService:
    return KpiRollupService(db)


def _ensure_enabled(enabled: bool, detail: str) -> None:
    if not enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


@router.get("/portfolios/{portfolio_id}/rollup")
def get_portfolio_rollup(
    workspace_id: UUID,
    portfolio_id: UUID,
    as_of_date: date | None = None,
    tenant: TenantContext = Depends(get_tenant_context),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    _ensure_enabled(settings.portfolio_kpi_rollup_enabled, "Portfolio KPI rollup is not enabled.")
    result = _service(db).compute_for_portfolio(
        workspace_id=workspace_id,
        portfolio_id=portfolio_id,
        organization_id=tenant.organization_id,
        as_of_date=as_of_date,
    )
    return result.to_dict()


@router.get("/programs/{program_id}/rollup")
def get_program_rollup(
    workspace_id: UUID,
    program_id: UUID,
    as_of_date: date | None = None,
    tenant: TenantContext = Depends(get_tenant_context),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    _ensure_enabled(settings.program_kpi_rollup_enabled, "Program KPI rollup is not enabled.")
    result = _service(db).compute_for_program(
        workspace_id=workspace_id,
        program_id=program_id,
        organization_id=tenant.organization_id,
        as_of_date=as_of_date,
    )
    return result.to_dict()
