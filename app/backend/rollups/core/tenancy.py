"""Tenant context extraction for rollup requests."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from rollups.core.config import Settings, get_settings


@dataclass(frozen=True)
class TenantContext:
    """Organization the request is scoped to."""

    organization_id: UUID


def _parse_organization_id(raw_value: str) -> UUID:
    try:
        return UUID(raw_value.strip())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Organization-Id header must be a UUID.",
        ) from exc


def get_tenant_context(
    x_organization_id: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> TenantContext:
    """Resolve the organization from headers, or the development fallback."""

    if x_organization_id:
        return TenantContext(organization_id=_parse_organization_id(x_organization_id))

    if settings.tenancy_allow_dev_organization:
        return TenantContext(organization_id=settings.tenancy_dev_organization_id)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Missing tenant header. Expected X-Organization-Id or enable development organization fallback.",
    )
