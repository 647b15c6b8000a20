"""Pydantic schemas for tenants."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Tenant(BaseModel):
    """Row of the ``tenants`` table."""

    model_config = ConfigDict(extra="ignore")

    id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    name: str
    code: str
    owner: str | None = None


class TenantListResponse(BaseModel):
    tenants: list[Tenant]
    current: Tenant | None = None


class SetCurrentTenantRequest(BaseModel):
    """Select a tenant by id; ``None`` clears the selection."""

    tenant_id: int | None = None
