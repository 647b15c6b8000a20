"""Chain planner - builds and reconciles the chain rows of a tunnel.

A tunnel is an ingress row (``in``, index 0, port 0), zero or more hop rows
(``chain``, index 1..N) and, for multi-node tunnels, an egress row (``out``,
index 0). Hop and egress rows listen on a port allocated from their node.

Write order when reconciling:

1. rows that survive are updated in place as soon as their port is known
2. removed rows are deleted in one batch
3. new rows are inserted in one batch

All input validation happens before the first write. Allocation failures can
still occur after some in-place updates have been applied; those updates are
not rolled back.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from relay_admin.core.config import settings
from relay_admin.core.store import StoreClient
from relay_admin.schemas.tunnel import Chain, ChainType, HopConfig
from relay_admin.services.ports import PortAllocator
from relay_admin.services.repository import ChainRepository

logger = logging.getLogger(__name__)


class HopValidationError(ValueError):
    """A hop cannot be planned: no node selected, or a stored row lacks its id."""

    def __init__(self, hop_number: int, reason: str):
        self.hop_number = hop_number
        self.reason = reason
        super().__init__(f"Hop {hop_number} {reason}")


@dataclass
class ChainChanges:
    """Row-level result of one planning run."""

    inserted: list[Chain] = field(default_factory=list)
    updated: list[int] = field(default_factory=list)
    deleted: list[int] = field(default_factory=list)


def split_chains(existing: Sequence[Chain]) -> tuple[Chain | None, list[Chain], Chain | None]:
    """Return (ingress, hops ordered by index, egress) from a tunnel's rows."""
    ingress = next((c for c in existing if c.chain_type == ChainType.IN), None)
    egress = next((c for c in existing if c.chain_type == ChainType.OUT), None)
    hops = sorted(
        (c for c in existing if c.chain_type == ChainType.CHAIN),
        key=lambda c: c.index,
    )
    return ingress, hops, egress


def check_hops_selected(hops: Sequence[HopConfig]) -> None:
    for position, hop in enumerate(hops):
        if hop.node_id is None:
            raise HopValidationError(position + 1, "node not selected")


class ChainPlanner:
    """Creates and reconciles chain rows for one tunnel at a time."""

    def __init__(
        self,
        store: StoreClient,
        default_strategy: str | None = None,
        default_transport: str | None = None,
    ):
        self.chains = ChainRepository(store)
        self.allocator = PortAllocator(store)
        self.default_strategy = default_strategy or settings.default_strategy
        self.default_transport = default_transport or settings.default_transport
        # node_id -> ports handed out during the current run but not yet stored
        self._reserved: dict[int, set[int]] = {}

    # -- row builders --

    def _ingress_row(self, tunnel_id: int, node_id: int) -> Chain:
        return Chain(
            tunnel_id=tunnel_id,
            node_id=node_id,
            chain_type=ChainType.IN,
            index=0,
            port=0,
            strategy=self.default_strategy,
            transport=self.default_transport,
        )

    def _egress_row(self, tunnel_id: int, node_id: int, port: int) -> Chain:
        return Chain(
            tunnel_id=tunnel_id,
            node_id=node_id,
            chain_type=ChainType.OUT,
            index=0,
            port=port,
            strategy=self.default_strategy,
            transport=self.default_transport,
        )

    @staticmethod
    def _hop_row(tunnel_id: int, position: int, hop: HopConfig, port: int) -> Chain:
        assert hop.node_id is not None
        return Chain(
            tunnel_id=tunnel_id,
            node_id=hop.node_id,
            chain_type=ChainType.CHAIN,
            index=position + 1,
            port=port,
            strategy=hop.strategy,
            transport=hop.transport,
        )

    async def _allocate(self, node_id: int, exclude_chain_ids: list[int] | None = None) -> int:
        reserved = self._reserved.setdefault(node_id, set())
        port = await self.allocator.allocate(node_id, exclude_chain_ids, reserved=reserved)
        reserved.add(port)
        return port

    async def _apply(self, changes: ChainChanges, pending: list[Chain]) -> ChainChanges:
        """Run the batched delete, then the batched insert."""
        if changes.deleted:
            await self.chains.delete_many(changes.deleted)
        if pending:
            changes.inserted = await self.chains.create_many([c.to_row() for c in pending])
        return changes

    # -- creation --

    async def create_single_node(self, tunnel_id: int, node_id: int) -> ChainChanges:
        """Insert the lone ingress row of a single-node tunnel."""
        self._reserved = {}
        await self.allocator.get_node(node_id)

        changes = await self._apply(ChainChanges(), [self._ingress_row(tunnel_id, node_id)])
        logger.info(f"Created single-node chain for tunnel {tunnel_id} on node {node_id}")
        return changes

    async def create_multi_node(
        self,
        tunnel_id: int,
        ingress_id: int,
        egress_id: int,
        hops: Sequence[HopConfig],
    ) -> ChainChanges:
        """Allocate every hop and the egress, then insert all rows in one batch."""
        self._reserved = {}
        check_hops_selected(hops)
        await self.allocator.get_node(ingress_id)

        pending = [self._ingress_row(tunnel_id, ingress_id)]
        for position, hop in enumerate(hops):
            assert hop.node_id is not None
            port = await self._allocate(hop.node_id)
            pending.append(self._hop_row(tunnel_id, position, hop, port))

        egress_port = await self._allocate(egress_id)
        pending.append(self._egress_row(tunnel_id, egress_id, egress_port))

        changes = await self._apply(ChainChanges(), pending)
        logger.info(
            f"Created chain for tunnel {tunnel_id}: {len(hops)} hop(s), "
            f"egress node {egress_id} port {egress_port}"
        )
        return changes

    # -- reconciliation --

    async def update_single_node(
        self, tunnel_id: int, node_id: int, existing: Sequence[Chain]
    ) -> ChainChanges:
        """Reduce a tunnel to its ingress row, moved to ``node_id``."""
        self._reserved = {}
        ingress, hops, egress = split_chains(existing)
        await self.allocator.get_node(node_id)

        changes = ChainChanges(
            deleted=[c.id for c in [egress, *hops] if c is not None and c.id is not None]
        )
        if ingress is None or ingress.id is None:
            changes = await self._apply(changes, [self._ingress_row(tunnel_id, node_id)])
        else:
            await self._apply(changes, [])
            await self.chains.update(ingress.id, {"node_id": node_id, "port": 0})
            changes.updated.append(ingress.id)

        logger.info(
            f"Reconciled tunnel {tunnel_id} to single node {node_id}: "
            f"{len(changes.updated)} updated, {len(changes.deleted)} deleted, "
            f"{len(changes.inserted)} inserted"
        )
        return changes

    async def update_multi_node(
        self,
        tunnel_id: int,
        ingress_id: int,
        egress_id: int,
        hops: Sequence[HopConfig],
        existing: Sequence[Chain],
    ) -> ChainChanges:
        """Bring a tunnel's rows in line with the desired multi-node topology.

        Hops are matched by position: overlapping positions keep their row
        (updated in place), extra desired hops become inserts, and extra
        stored hops are deleted.
        """
        self._reserved = {}
        ingress, existing_hops, egress = split_chains(existing)

        check_hops_selected(hops)
        for position in range(min(len(hops), len(existing_hops))):
            if existing_hops[position].id is None:
                raise HopValidationError(position + 1, "missing id")
        await self.allocator.get_node(ingress_id)

        changes = ChainChanges()
        pending: list[Chain] = []

        if ingress is not None and ingress.id is not None:
            await self.chains.update(ingress.id, {"node_id": ingress_id, "port": 0})
            changes.updated.append(ingress.id)
        else:
            pending.append(self._ingress_row(tunnel_id, ingress_id))

        for position in range(max(len(hops), len(existing_hops))):
            if position < len(hops) and position < len(existing_hops):
                hop, row = hops[position], existing_hops[position]
                assert hop.node_id is not None and row.id is not None
                port = await self._allocate(hop.node_id, [row.id])
                await self.chains.update(
                    row.id,
                    {
                        "node_id": hop.node_id,
                        "index": position + 1,
                        "port": port,
                        "strategy": hop.strategy,
                        "transport": hop.transport,
                    },
                )
                changes.updated.append(row.id)
            elif position < len(hops):
                hop = hops[position]
                assert hop.node_id is not None
                port = await self._allocate(hop.node_id)
                pending.append(self._hop_row(tunnel_id, position, hop, port))
            else:
                row_id = existing_hops[position].id
                if row_id is not None:
                    changes.deleted.append(row_id)

        if egress is not None and egress.id is not None:
            port = await self._allocate(egress_id, [egress.id])
            await self.chains.update(egress.id, {"node_id": egress_id, "port": port})
            changes.updated.append(egress.id)
        else:
            port = await self._allocate(egress_id)
            pending.append(self._egress_row(tunnel_id, egress_id, port))

        changes = await self._apply(changes, pending)
        logger.info(
            f"Reconciled tunnel {tunnel_id} ({len(hops)} hop(s)): "
            f"{len(changes.updated)} updated, {len(changes.deleted)} deleted, "
            f"{len(changes.inserted)} inserted"
        )
        return changes
