from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from conftest import WORKSPACE_ID
from rollups.models.entities import Portfolio
from rollups.repositories.rollup_repository import (
    KpiValuePoint,
    RollupRepository,
    latest_kpi_values_by_project,
    sorted_ids,
)


def _point(project_id: uuid.UUID, code: str, as_of: date, value: str) -> KpiValuePoint:
    return KpiValuePoint(
        id=uuid.uuid4(),
        project_id=project_id,
        kpi_code=code,
        as_of_date=as_of,
        value=Decimal(value),
    )


def test_sorted_ids_deduplicates_and_orders_by_string() -> None:
    a = uuid.UUID("00000000-0000-0000-0000-00000000000a")
    b = uuid.UUID("00000000-0000-0000-0000-00000000000b")

    assert sorted_ids([b, a, b]) == [a, b]


def test_latest_value_wins_per_project_and_code_regardless_of_row_order() -> None:
    p1, p2 = uuid.uuid4(), uuid.uuid4()
    old_spi = _point(p1, "spi", date(2026, 1, 1), "0.7")
    new_spi = _point(p1, "spi", date(2026, 2, 1), "0.9")
    p1_wip = _point(p1, "wip", date(2026, 1, 15), "5")
    p2_spi = _point(p2, "spi", date(2025, 12, 1), "1.1")

    latest = latest_kpi_values_by_project([old_spi, p2_spi, p1_wip, new_spi], [p1, p2])

    assert latest[p1] == (new_spi, p1_wip)
    assert latest[p2] == (p2_spi,)


def test_projects_without_values_get_empty_entries() -> None:
    p1, p2 = uuid.uuid4(), uuid.uuid4()

    latest = latest_kpi_values_by_project([_point(p1, "wip", date(2026, 1, 1), "1")], [p1, p2])

    assert latest[p2] == ()


def test_rows_for_unrequested_projects_or_blank_codes_are_ignored() -> None:
    p1, stray = uuid.uuid4(), uuid.uuid4()

    latest = latest_kpi_values_by_project(
        [_point(stray, "wip", date(2026, 1, 1), "1"), _point(p1, "", date(2026, 1, 1), "2")],
        [p1],
    )

    assert latest == {p1: ()}


def test_all_digit_uuids_round_trip_through_storage(db_session: Session) -> None:
    organization_id = uuid.UUID("12345678-1234-1234-1234-123456789012")
    portfolio = Portfolio(organization_id=organization_id, workspace_id=WORKSPACE_ID, name="Digits")
    db_session.add(portfolio)
    db_session.commit()
    portfolio_id = portfolio.id
    db_session.expunge_all()

    loaded = RollupRepository(db_session).get_portfolio(
        portfolio_id,
        organization_id=organization_id,
        workspace_id=WORKSPACE_ID,
    )

    assert loaded is not None
    assert loaded.organization_id == organization_id
