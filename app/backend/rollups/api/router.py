"""Top-level API router."""

from fastapi import APIRouter

from rollups.api.routes.health import router as health_router
from rollups.api.routes.rollups import router as rollups_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(rollups_router)
