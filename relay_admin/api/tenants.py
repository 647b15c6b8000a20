"""Tenant API endpoints - tenant list and current-tenant switching."""

from fastapi import APIRouter, Depends, HTTPException, status

from relay_admin.core import StoreClient, get_store
from relay_admin.schemas.tenant import SetCurrentTenantRequest, TenantListResponse
from relay_admin.services.tenant import TenantService, get_tenant_service

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.get("", response_model=TenantListResponse)
async def list_tenants(
    store: StoreClient = Depends(get_store),
    service: TenantService = Depends(get_tenant_service),
) -> TenantListResponse:
    """Reload tenants and return them with the current selection."""
    tenants = await service.fetch_tenants(store)
    return TenantListResponse(tenants=tenants, current=service.current_tenant)


@router.put("/current", response_model=TenantListResponse)
async def set_current_tenant(
    data: SetCurrentTenantRequest,
    store: StoreClient = Depends(get_store),
    service: TenantService = Depends(get_tenant_service),
) -> TenantListResponse:
    """Switch the current tenant (``tenant_id: null`` clears it)."""
    if data.tenant_id is None:
        service.set_current_tenant(None)
    else:
        tenants = service.tenants or await service.fetch_tenants(store)
        tenant = next((t for t in tenants if t.id == data.tenant_id), None)
        if tenant is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Tenant {data.tenant_id} not found",
            )
        service.set_current_tenant(tenant)
    return TenantListResponse(tenants=service.tenants, current=service.current_tenant)
