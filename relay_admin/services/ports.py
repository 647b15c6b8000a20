"""Port availability - picks a free listening port on a relay node.

The check reads the node's configured ranges and the ports already claimed
by chain rows, then returns the lowest port in the first set but not the
second. It is a check-then-act over the network: a concurrent allocation on
the same node can claim the same port before our write lands. Only a
uniqueness constraint on (node_id, port) in the store can rule that out.
"""

import logging
from collections.abc import Sequence

from relay_admin.core.store import StoreClient, StoreError, eq, not_in, not_null
from relay_admin.schemas.node import RelayNode
from relay_admin.services.port_range import parse_port_range
from relay_admin.services.repository import TableRepository, node_repository

logger = logging.getLogger(__name__)

__all__ = [
    "NodeNotFoundError",
    "PortAllocationError",
    "PortAllocator",
    "PortsExhaustedError",
    "PortsNotConfiguredError",
    "first_free_port",
    "parse_port_range",
]


class PortAllocationError(Exception):
    """Base error for port allocation."""

    pass


class NodeNotFoundError(PortAllocationError):
    """The referenced relay node does not exist."""

    def __init__(self, node_id: int):
        self.node_id = node_id
        super().__init__(f"Relay node {node_id} not found")


class PortsNotConfiguredError(PortAllocationError):
    """The node's port ranges yield no usable port."""

    def __init__(self, node_name: str):
        self.node_name = node_name
        super().__init__(f"Relay node {node_name} has no usable ports configured")


class PortsExhaustedError(PortAllocationError):
    """Every configured port on the node is already claimed."""

    def __init__(self, node_name: str, ports: str):
        self.node_name = node_name
        self.ports = ports
        super().__init__(f"Relay node {node_name} has no free ports (range: {ports})")


def first_free_port(configured: Sequence[int], in_use: set[int]) -> int | None:
    """Lowest configured port not in use; ``configured`` must be ascending."""
    for port in configured:
        if port not in in_use:
            return port
    return None


class PortAllocator:
    """Finds free ports on relay nodes."""

    def __init__(self, store: StoreClient):
        self.store = store
        self.nodes: TableRepository[RelayNode] = node_repository(store)

    async def get_node(self, node_id: int) -> RelayNode:
        node = await self.nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    async def ports_in_use(
        self, node_id: int, exclude_chain_ids: Sequence[int] | None = None
    ) -> set[int]:
        """Ports held by chain rows on ``node_id``, minus the excluded rows."""
        filters = [("node_id", eq(node_id)), ("port", not_null())]
        if exclude_chain_ids:
            filters.append(("id", not_in(exclude_chain_ids)))
        try:
            result = await self.store.select("chains", columns="port", filters=filters)
        except StoreError as e:
            logger.error(f"Failed to read ports in use on node {node_id}: {e}")
            raise
        return {row["port"] for row in result.rows if row.get("port") is not None}

    async def allocate(
        self,
        node_id: int,
        exclude_chain_ids: Sequence[int] | None = None,
        reserved: set[int] | None = None,
    ) -> int:
        """Return the lowest free port on the node.

        ``exclude_chain_ids`` lets a row being updated in place re-check
        without its own port counting against it. ``reserved`` holds ports
        already handed out on this node by the caller but not yet written.

        Raises:
            NodeNotFoundError: no such node
            PortsNotConfiguredError: the node's ranges parse to nothing
            PortsExhaustedError: every configured port is claimed
        """
        node = await self.get_node(node_id)

        configured = parse_port_range(node.ports)
        if not configured:
            raise PortsNotConfiguredError(node.name)

        in_use = await self.ports_in_use(node_id, exclude_chain_ids)
        if reserved:
            in_use |= reserved
        port = first_free_port(configured, in_use)
        if port is None:
            logger.warning(
                f"Ports exhausted on node {node.name} ({node_id}): "
                f"{len(in_use)} in use, range {node.ports}"
            )
            raise PortsExhaustedError(node.name, node.ports)

        logger.debug(f"Allocated port {port} on node {node.name} ({node_id})")
        return port
