"""Health check endpoints."""

from fastapi import APIRouter

from rollups.services.kpi_definitions import ROLLUP_ENGINE_VERSION

router = APIRouter()


@router.get("/health")
def health() -> dict[str, str]:
    """Liveness endpoint reporting the active rollup engine version."""

    return {"status": "ok", "engine_version": ROLLUP_ENGINE_VERSION}
