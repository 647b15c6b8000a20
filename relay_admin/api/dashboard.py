"""Dashboard view - row counts for the overview page."""

import asyncio

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from relay_admin.core import StoreClient, get_store
from relay_admin.schemas.auth import SessionUser
from relay_admin.schemas.tenant import Tenant
from relay_admin.services.repository import (
    announcement_repository,
    node_repository,
    rule_repository,
    tunnel_repository,
)
from relay_admin.services.session import SessionClient, get_session_client
from relay_admin.services.tenant import TenantService, get_tenant_service

router = APIRouter(tags=["dashboard"])


class DashboardResponse(BaseModel):
    """Overview counts."""

    nodes: int
    tunnels: int
    rules: int
    announcements: int
    user: SessionUser | None = None
    tenant: Tenant | None = None


@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(
    store: StoreClient = Depends(get_store),
    client: SessionClient = Depends(get_session_client),
    tenants: TenantService = Depends(get_tenant_service),
) -> DashboardResponse:
    nodes, tunnels, rules, announcements = await asyncio.gather(
        node_repository(store).count(),
        tunnel_repository(store).count(),
        rule_repository(store).count(),
        announcement_repository(store).count(),
    )
    session = client.current_session
    return DashboardResponse(
        nodes=nodes,
        tunnels=tunnels,
        rules=rules,
        announcements=announcements,
        user=session.user if session else None,
        tenant=tenants.current_tenant,
    )
