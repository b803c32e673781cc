from __future__ import annotations

import uuid
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from conftest import ORG_ID, OTHER_ORG_ID, OTHER_WORKSPACE_ID, WORKSPACE_ID, tenant_headers
from rollups.core.config import Settings, get_settings
from rollups.models.entities import Portfolio, Program, Project, ProjectBudget


def _seed_portfolio(db: Session) -> tuple[str, str]:
    portfolio = Portfolio(
        organization_id=ORG_ID,
        workspace_id=WORKSPACE_ID,
        name="Delivery",
        cost_tracking_enabled=True,
        baselines_enabled=False,
        iterations_enabled=False,
        change_management_enabled=True,
    )
    db.add(portfolio)
    db.flush()
    program = Program(
        organization_id=ORG_ID,
        workspace_id=WORKSPACE_ID,
        portfolio_id=portfolio.id,
        name="Platform",
    )
    db.add(program)
    db.flush()
    project = Project(
        organization_id=ORG_ID,
        workspace_id=WORKSPACE_ID,
        portfolio_id=portfolio.id,
        program_id=program.id,
        name="Billing",
    )
    db.add(project)
    db.flush()
    db.add(
        ProjectBudget(
            workspace_id=WORKSPACE_ID,
            project_id=project.id,
            baseline_budget=Decimal("1000"),
            revised_budget=Decimal("1100"),
            forecast_at_completion=Decimal("1200"),
        )
    )
    db.commit()
    return str(portfolio.id), str(program.id)


def test_portfolio_rollup_endpoint_returns_json_result(client: TestClient, db_session: Session) -> None:
    portfolio_id, _ = _seed_portfolio(db_session)

    response = client.get(
        f"/api/v1/workspaces/{WORKSPACE_ID}/portfolios/{portfolio_id}/rollup",
        params={"as_of_date": "2026-02-10"},
        headers=tenant_headers(),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["scope"] == "PORTFOLIO"
    assert body["portfolio_id"] == portfolio_id
    assert body["as_of_date"] == "2026-02-10"
    assert body["engine_version"] == "1.0.0"
    assert len(body["input_hash"]) == 16
    assert body["sources"] == {"project_count": 1, "projects_with_kpis": 0, "budgets_found": 1}

    computed = {row["kpi_code"]: row for row in body["computed"]}
    assert computed["budget_burn"]["value"] == 1.1
    assert computed["budget_burn"]["status"] == "WARNING"
    assert computed["budget_burn"]["unit"] == "ratio"
    assert computed["forecast_at_completion"]["value"] == 1200
    assert [row["kpi_code"] for row in body["skipped"]] == ["schedule_variance", "spi"]


def test_program_rollup_endpoint_inherits_portfolio_flags(client: TestClient, db_session: Session) -> None:
    portfolio_id, program_id = _seed_portfolio(db_session)

    response = client.get(
        f"/api/v1/workspaces/{WORKSPACE_ID}/programs/{program_id}/rollup",
        params={"as_of_date": "2026-02-10"},
        headers=tenant_headers(),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["scope"] == "PROGRAM"
    assert body["program_id"] == program_id
    assert body["portfolio_id"] == portfolio_id
    assert {row["kpi_code"] for row in body["skipped"]} == {"schedule_variance", "spi"}


def test_rollups_are_not_visible_across_workspace_or_organization(client: TestClient, db_session: Session) -> None:
    portfolio_id, program_id = _seed_portfolio(db_session)

    other_workspace = client.get(
        f"/api/v1/workspaces/{OTHER_WORKSPACE_ID}/portfolios/{portfolio_id}/rollup",
        headers=tenant_headers(),
    )
    other_org = client.get(
        f"/api/v1/workspaces/{WORKSPACE_ID}/programs/{program_id}/rollup",
        headers=tenant_headers(OTHER_ORG_ID),
    )
    unknown = client.get(
        f"/api/v1/workspaces/{WORKSPACE_ID}/portfolios/{uuid.uuid4()}/rollup",
        headers=tenant_headers(),
    )

    assert other_workspace.status_code == 404
    assert other_workspace.json()["detail"] == "Portfolio not found."
    assert other_org.status_code == 404
    assert other_org.json()["detail"] == "Program not found."
    assert unknown.status_code == 404


def test_tenant_header_is_required_without_dev_fallback(client: TestClient, db_session: Session) -> None:
    portfolio_id, _ = _seed_portfolio(db_session)
    url = f"/api/v1/workspaces/{WORKSPACE_ID}/portfolios/{portfolio_id}/rollup"

    missing = client.get(url)
    malformed = client.get(url, headers={"X-Organization-Id": "not-a-uuid"})

    assert missing.status_code == 401
    assert malformed.status_code == 400


def test_disabled_rollup_endpoints_answer_not_found(client: TestClient, db_session: Session) -> None:
    portfolio_id, program_id = _seed_portfolio(db_session)
    client.app.dependency_overrides[get_settings] = lambda: Settings(
        portfolio_kpi_rollup_enabled=False,
        program_kpi_rollup_enabled=False,
    )

    portfolio_response = client.get(
        f"/api/v1/workspaces/{WORKSPACE_ID}/portfolios/{portfolio_id}/rollup",
        headers=tenant_headers(),
    )
    program_response = client.get(
        f"/api/v1/workspaces/{WORKSPACE_ID}/programs/{program_id}/rollup",
        headers=tenant_headers(),
    )

    assert portfolio_response.status_code == 404
    assert portfolio_response.json()["detail"] == "Portfolio KPI rollup is not enabled."
    assert program_response.status_code == 404
    assert program_response.json()["detail"] == "Program KPI rollup is not enabled."


def test_dev_organization_fallback_applies_when_enabled(client: TestClient, db_session: Session) -> None:
    settings = Settings(
        portfolio_kpi_rollup_enabled=True,
        tenancy_allow_dev_organization=True,
        tenancy_dev_organization_id=ORG_ID,
    )
    client.app.dependency_overrides[get_settings] = lambda: settings
    portfolio_id, _ = _seed_portfolio(db_session)

    response = client.get(f"/api/v1/workspaces/{WORKSPACE_ID}/portfolios/{portfolio_id}/rollup")

    assert response.status_code == 200
    assert response.json()["portfolio_id"] == portfolio_id
