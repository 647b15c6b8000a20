"""Tunnel service - tunnel rows plus their chains."""

import logging

from relay_admin.core.store import StoreClient, StoreError
from relay_admin.schemas.tunnel import (
    ChainType,
    TunnelCreate,
    TunnelResponse,
    TunnelTopology,
    TunnelUpdate,
)
from relay_admin.services.chain_planner import ChainChanges, ChainPlanner
from relay_admin.services.repository import ChainRepository, tunnel_repository

logger = logging.getLogger(__name__)

_ROLE_ORDER = {ChainType.IN: 0, ChainType.CHAIN: 1, ChainType.OUT: 2}

_METADATA_FIELDS = ("name", "description", "ingress_display_address")


class TunnelService:
    """Service for creating, editing and removing tunnels."""

    def __init__(self, store: StoreClient):
        self.store = store
        self.tunnels = tunnel_repository(store)
        self.chains = ChainRepository(store)
        self.planner = ChainPlanner(store)

    async def get(self, tunnel_id: int) -> TunnelResponse | None:
        """Get a tunnel with its chain rows (ingress, hops by index, egress)."""
        tunnel = await self.tunnels.get(tunnel_id)
        if tunnel is None:
            return None
        chains = await self.chains.list_for_tunnel(tunnel_id)
        chains.sort(key=lambda c: (_ROLE_ORDER[c.chain_type], c.index))
        return TunnelResponse(**tunnel.model_dump(), chains=chains)

    async def _plan_new(self, tunnel_id: int, topology: TunnelTopology) -> ChainChanges:
        if not topology.is_multi_node:
            return await self.planner.create_single_node(tunnel_id, topology.ingress_node_id)
        return await self.planner.create_multi_node(
            tunnel_id,
            topology.ingress_node_id,
            topology.egress_node_id,
            topology.hops,
        )

    async def create(self, data: TunnelCreate) -> TunnelResponse:
        """Create the tunnel row, then its chain.

        If the chain cannot be planned the new tunnel row is removed again
        and the planning error is re-raised.
        """
        tunnel = await self.tunnels.create(data.model_dump(include=set(_METADATA_FIELDS)))
        try:
            await self._plan_new(tunnel.id, data)
        except Exception:
            logger.warning(f"Chain planning failed for new tunnel {tunnel.id}; removing it")
            try:
                await self.tunnels.delete(tunnel.id)
            except StoreError as e:
                logger.error(f"Could not remove tunnel {tunnel.id} after failed planning: {e}")
            raise

        logger.info(f"Created tunnel: {tunnel.name} ({tunnel.id})")
        result = await self.get(tunnel.id)
        assert result is not None
        return result

    async def update(self, tunnel_id: int, data: TunnelUpdate) -> TunnelResponse | None:
        """Update tunnel metadata and reconcile its chain to the new topology."""
        tunnel = await self.tunnels.get(tunnel_id)
        if tunnel is None:
            return None

        values = data.model_dump(include=set(_METADATA_FIELDS), exclude_none=True)
        if values:
            await self.tunnels.update(tunnel_id, values)

        existing = await self.chains.list_for_tunnel(tunnel_id)
        if not data.is_multi_node:
            await self.planner.update_single_node(tunnel_id, data.ingress_node_id, existing)
        else:
            await self.planner.update_multi_node(
                tunnel_id,
                data.ingress_node_id,
                data.egress_node_id,
                data.hops,
                existing,
            )

        logger.info(f"Updated tunnel {tunnel_id}")
        return await self.get(tunnel_id)

    async def delete(self, tunnel_id: int) -> bool:
        """Delete a tunnel and its chain rows."""
        tunnel = await self.tunnels.get(tunnel_id)
        if tunnel is None:
            return False

        removed = await self.chains.delete_for_tunnel(tunnel_id)
        await self.tunnels.delete(tunnel_id)
        logger.info(f"Deleted tunnel: {tunnel.name} ({tunnel_id}), {removed} chain row(s)")
        return True
