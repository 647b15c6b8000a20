# relay-admin schemas
from relay_admin.schemas.announcement import Announcement
from relay_admin.schemas.common import Page, SortItem
from relay_admin.schemas.node import RelayNode
from relay_admin.schemas.rule import RelayRule
from relay_admin.schemas.tenant import Tenant
from relay_admin.schemas.tunnel import Chain, ChainType, HopConfig, Tunnel

__all__ = [
    "Announcement",
    "Chain",
    "ChainType",
    "HopConfig",
    "Page",
    "RelayNode",
    "RelayRule",
    "SortItem",
    "Tenant",
    "Tunnel",
]
