from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rollups.core.config import Settings, get_settings
from rollups.db.base import Base
from rollups.db.dependencies import get_db_session
import rollups.models.entities  # noqa: F401
from rollups.main import create_app
from rollups.models.entities import (
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

TEST_TABLES = [
    Portfolio.__table__,
    Program.__table__,
    Project.__table__,
    PortfolioProject.__table__,
    KpiDefinitionRecord.__table__,
    ProjectKpiValue.__table__,
    ProjectBudget.__table__,
    ChangeRequest.__table__,
    Risk.__table__,
]

ORG_ID = uuid.UUID("dddddddd-1111-1111-1111-111111111111")
OTHER_ORG_ID = uuid.UUID("eeeeeeee-2222-2222-2222-222222222222")
WORKSPACE_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
OTHER_WORKSPACE_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")


@compiles(PG_UUID, "sqlite")
def _uuid_as_text_on_sqlite(type_, compiler, **kw) -> str:
    # A bare UUID column has NUMERIC affinity on SQLite and mangles all-digit hex.
    return "CHAR(32)"


@pytest.fixture()
def db_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine, tables=TEST_TABLES)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine, tables=TEST_TABLES)
        engine.dispose()


@pytest.fixture()
def db_session(db_engine) -> Generator[Session, None, None]:
    TestingSessionLocal = sessionmaker(bind=db_engine, autoflush=False, autocommit=False, future=True)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def rollup_settings() -> Settings:
    return Settings(
        portfolio_kpi_rollup_enabled=True,
        program_kpi_rollup_enabled=True,
        tenancy_allow_dev_organization=False,
    )


@pytest.fixture()
def client(db_session: Session, rollup_settings: Settings) -> Generator[TestClient, None, None]:
    app = create_app()

    def override_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db_session] = override_db
    app.dependency_overrides[get_settings] = lambda: rollup_settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def tenant_headers(organization_id: uuid.UUID = ORG_ID) -> dict[str, str]:
    return {"X-Organization-Id": str(organization_id)}
