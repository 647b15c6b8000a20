"""Tenant service - tenant list and the operator's current tenant."""

import logging

from relay_admin.core.store import StoreClient, StoreError
from relay_admin.schemas.tenant import Tenant
from relay_admin.services.repository import tenant_repository

logger = logging.getLogger(__name__)


class TenantService:
    """Holds the tenant list and current selection for the process.

    Singleton: the admin service acts for a single operator, so the selected
    tenant is shared by every request.
    """

    _instance: "TenantService | None" = None

    def __init__(self) -> None:
        self.tenants: list[Tenant] = []
        self.current_tenant: Tenant | None = None
        self.loading = False

    @classmethod
    def get_instance(cls) -> "TenantService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    async def fetch_tenants(self, store: StoreClient) -> list[Tenant]:
        """Reload tenants ordered by name; select the first if none is selected.

        A failed load is logged and leaves the previous list in place.
        """
        self.loading = True
        try:
            tenants = await tenant_repository(store).list(order=[("name", True)])
        except StoreError as e:
            logger.error(f"Failed to fetch tenants: {e}")
            return self.tenants
        finally:
            self.loading = False

        self.tenants = tenants
        if self.current_tenant is not None:
            # keep the selection in sync with the reloaded row
            self.current_tenant = next(
                (t for t in tenants if t.id == self.current_tenant.id), self.current_tenant
            )
        elif tenants:
            self.current_tenant = tenants[0]
        return self.tenants

    def set_current_tenant(self, tenant: Tenant | None) -> None:
        self.current_tenant = tenant
        logger.info(f"Current tenant: {tenant.code if tenant else 'none'}")


def get_tenant_service() -> TenantService:
    """Dependency to get the tenant service."""
    return TenantService.get_instance()
