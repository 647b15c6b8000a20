"""Tests for chain creation and reconciliation."""

import pytest

from relay_admin.core.store import StoreError
from relay_admin.schemas.tunnel import Chain, ChainType, HopConfig
from relay_admin.services.chain_planner import (
    ChainPlanner,
    HopValidationError,
    split_chains,
)
from relay_admin.services.ports import NodeNotFoundError, PortsExhaustedError
from relay_admin.services.repository import ChainRepository

pytestmark = pytest.mark.asyncio


@pytest.fixture
def nodes(node_factory):
    return {
        "a": node_factory(name="a", ports="1000-1009")["id"],
        "b": node_factory(name="b", ports="2000-2009")["id"],
        "c": node_factory(name="c", ports="3000-3009")["id"],
    }


@pytest.fixture
def planner(store_client) -> ChainPlanner:
    return ChainPlanner(store_client)


def _stored(fake_store, tunnel_id: int) -> list[dict]:
    rows = [r for r in fake_store.rows("chains") if r["tunnel_id"] == tunnel_id]
    order = {"in": 0, "chain": 1, "out": 2}
    return sorted(rows, key=lambda r: (order[r["chain_type"]], r["index"]))


async def _existing(store_client, tunnel_id: int) -> list[Chain]:
    return await ChainRepository(store_client).list_for_tunnel(tunnel_id)


class TestSplitChains:
    async def test_split_orders_hops_by_index(self):
        rows = [
            Chain(id=3, node_id=1, chain_type=ChainType.CHAIN, index=2, port=5),
            Chain(id=4, node_id=1, chain_type=ChainType.OUT, index=0, port=6),
            Chain(id=1, node_id=1, chain_type=ChainType.IN, index=0, port=0),
            Chain(id=2, node_id=1, chain_type=ChainType.CHAIN, index=1, port=4),
        ]
        ingress, hops, egress = split_chains(rows)
        assert ingress.id == 1
        assert [h.id for h in hops] == [2, 3]
        assert egress.id == 4

    async def test_split_empty(self):
        assert split_chains([]) == (None, [], None)


class TestCreateSingleNode:
    async def test_one_ingress_row(self, planner, fake_store, tunnel_factory, nodes):
        tunnel, _ = tunnel_factory()
        changes = await planner.create_single_node(tunnel["id"], nodes["a"])

        rows = _stored(fake_store, tunnel["id"])
        assert len(rows) == 1
        assert rows[0]["chain_type"] == "in"
        assert rows[0]["port"] == 0
        assert rows[0]["index"] == 0
        assert rows[0]["node_id"] == nodes["a"]
        assert len(changes.inserted) == 1

    async def test_unknown_node_writes_nothing(self, planner, fake_store, tunnel_factory):
        tunnel, _ = tunnel_factory()
        with pytest.raises(NodeNotFoundError):
            await planner.create_single_node(tunnel["id"], 404)
        assert _stored(fake_store, tunnel["id"]) == []


class TestCreateMultiNode:
    async def test_k_hops_give_k_plus_two_rows(
        self, planner, fake_store, tunnel_factory, nodes
    ):
        tunnel, _ = tunnel_factory()
        hops = [HopConfig(node_id=nodes["b"]), HopConfig(node_id=nodes["c"], transport="tls")]

        await planner.create_multi_node(tunnel["id"], nodes["a"], nodes["c"], hops)

        rows = _stored(fake_store, tunnel["id"])
        assert [(r["chain_type"], r["index"]) for r in rows] == [
            ("in", 0),
            ("chain", 1),
            ("chain", 2),
            ("out", 0),
        ]
        assert rows[0]["port"] == 0
        assert rows[1]["port"] == 2000
        assert rows[2]["port"] == 3000
        assert rows[2]["transport"] == "tls"
        # egress shares node c with hop 2
        assert rows[3]["port"] == 3001

    async def test_all_rows_inserted_in_one_batch(
        self, planner, fake_store, tunnel_factory, nodes
    ):
        tunnel, _ = tunnel_factory()
        hops = [HopConfig(node_id=nodes["b"])] * 3
        await planner.create_multi_node(tunnel["id"], nodes["a"], nodes["c"], hops)
        assert fake_store.writes() == [("POST", "chains")]

    async def test_hops_on_same_node_get_distinct_ports(
        self, planner, fake_store, tunnel_factory, nodes
    ):
        tunnel, _ = tunnel_factory()
        hops = [HopConfig(node_id=nodes["b"]), HopConfig(node_id=nodes["b"])]

        await planner.create_multi_node(tunnel["id"], nodes["a"], nodes["b"], hops)

        ports = [r["port"] for r in _stored(fake_store, tunnel["id"])[1:]]
        assert ports == [2000, 2001, 2002]

    async def test_no_hops(self, planner, fake_store, tunnel_factory, nodes):
        tunnel, _ = tunnel_factory()
        await planner.create_multi_node(tunnel["id"], nodes["a"], nodes["b"], [])
        rows = _stored(fake_store, tunnel["id"])
        assert [(r["chain_type"], r["port"]) for r in rows] == [("in", 0), ("out", 2000)]

    async def test_unselected_hop_names_position(
        self, planner, fake_store, tunnel_factory, nodes
    ):
        tunnel, _ = tunnel_factory()
        hops = [HopConfig(node_id=nodes["b"]), HopConfig(node_id=None)]

        with pytest.raises(HopValidationError, match="Hop 2 node not selected"):
            await planner.create_multi_node(tunnel["id"], nodes["a"], nodes["c"], hops)
        assert fake_store.writes() == []

    async def test_exhausted_egress_writes_nothing(
        self, planner, fake_store, tunnel_factory, node_factory, nodes
    ):
        tiny = node_factory(name="tiny", ports="4000")["id"]
        tunnel, _ = tunnel_factory()
        hops = [HopConfig(node_id=tiny)]

        with pytest.raises(PortsExhaustedError):
            await planner.create_multi_node(tunnel["id"], nodes["a"], tiny, hops)
        assert fake_store.writes() == []


class TestUpdateMultiNode:
    async def test_three_hops_down_to_one(
        self, planner, store_client, fake_store, tunnel_factory, nodes
    ):
        a, b, c = nodes["a"], nodes["b"], nodes["c"]
        tunnel, rows = tunnel_factory(
            chains=[
                ("in", a, 0, 0),
                ("chain", b, 1, 2000),
                ("chain", b, 2, 2001),
                ("chain", b, 3, 2002),
                ("out", c, 0, 3000),
            ]
        )
        existing = await _existing(store_client, tunnel["id"])

        changes = await planner.update_multi_node(
            tunnel["id"], a, c, [HopConfig(node_id=b)], existing
        )

        assert sorted(changes.deleted) == [rows[2]["id"], rows[3]["id"]]
        assert rows[1]["id"] in changes.updated
        assert changes.inserted == []

        stored = _stored(fake_store, tunnel["id"])
        assert [(r["chain_type"], r["index"], r["port"]) for r in stored] == [
            ("in", 0, 0),
            ("chain", 1, 2000),
            ("out", 0, 3000),
        ]
        # hop 1 keeps its row
        assert stored[1]["id"] == rows[1]["id"]

    async def test_updates_then_delete(
        self, planner, store_client, fake_store, tunnel_factory, nodes
    ):
        a, b, c = nodes["a"], nodes["b"], nodes["c"]
        tunnel, _ = tunnel_factory(
            chains=[
                ("in", a, 0, 0),
                ("chain", b, 1, 2000),
                ("chain", b, 2, 2001),
                ("out", c, 0, 3000),
            ]
        )
        existing = await _existing(store_client, tunnel["id"])
        fake_store.calls.clear()

        await planner.update_multi_node(tunnel["id"], a, c, [HopConfig(node_id=b)], existing)

        assert fake_store.writes() == [("PATCH", "chains")] * 3 + [("DELETE", "chains")]

    async def test_growing_hops_inserts_after_updates(
        self, planner, store_client, fake_store, tunnel_factory, nodes
    ):
        a, b, c = nodes["a"], nodes["b"], nodes["c"]
        tunnel, _ = tunnel_factory(
            chains=[("in", a, 0, 0), ("chain", b, 1, 2000), ("out", c, 0, 3000)]
        )
        existing = await _existing(store_client, tunnel["id"])
        fake_store.calls.clear()

        hops = [HopConfig(node_id=b), HopConfig(node_id=b), HopConfig(node_id=c)]
        changes = await planner.update_multi_node(tunnel["id"], a, c, hops, existing)

        assert len(changes.inserted) == 2
        assert fake_store.writes() == [("PATCH", "chains")] * 3 + [("POST", "chains")]

        stored = _stored(fake_store, tunnel["id"])
        assert [(r["chain_type"], r["index"], r["port"]) for r in stored] == [
            ("in", 0, 0),
            ("chain", 1, 2000),
            ("chain", 2, 2001),
            ("chain", 3, 3001),
            ("out", 0, 3000),
        ]

    async def test_moving_hop_to_other_node(
        self, planner, store_client, fake_store, tunnel_factory, nodes
    ):
        a, b, c = nodes["a"], nodes["b"], nodes["c"]
        tunnel, rows = tunnel_factory(
            chains=[("in", a, 0, 0), ("chain", b, 1, 2000), ("out", c, 0, 3000)]
        )
        existing = await _existing(store_client, tunnel["id"])

        await planner.update_multi_node(
            tunnel["id"], b, c, [HopConfig(node_id=c, strategy="fifo")], existing
        )

        stored = _stored(fake_store, tunnel["id"])
        assert stored[0]["node_id"] == b
        assert stored[0]["port"] == 0
        assert stored[1]["id"] == rows[1]["id"]
        assert stored[1]["node_id"] == c
        assert stored[1]["strategy"] == "fifo"
        # egress keeps 3000 on node c, so the moved hop takes the next port
        assert stored[1]["port"] == 3001
        assert stored[2]["port"] == 3000

    async def test_adds_missing_ingress_and_egress(
        self, planner, store_client, fake_store, tunnel_factory, nodes
    ):
        tunnel, _ = tunnel_factory()
        changes = await planner.update_multi_node(
            tunnel["id"], nodes["a"], nodes["b"], [], []
        )
        assert len(changes.inserted) == 2
        stored = _stored(fake_store, tunnel["id"])
        assert [(r["chain_type"], r["port"]) for r in stored] == [("in", 0), ("out", 2000)]

    async def test_unselected_hop_writes_nothing(
        self, planner, store_client, fake_store, tunnel_factory, nodes
    ):
        a, b, c = nodes["a"], nodes["b"], nodes["c"]
        tunnel, _ = tunnel_factory(
            chains=[("in", a, 0, 0), ("chain", b, 1, 2000), ("out", c, 0, 3000)]
        )
        existing = await _existing(store_client, tunnel["id"])
        fake_store.calls.clear()

        hops = [HopConfig(node_id=b), HopConfig(node_id=c), HopConfig(node_id=None)]
        with pytest.raises(HopValidationError, match="Hop 3 node not selected"):
            await planner.update_multi_node(tunnel["id"], a, c, hops, existing)
        assert fake_store.writes() == []

    async def test_overlapping_row_without_id(self, planner, fake_store, tunnel_factory, nodes):
        tunnel, _ = tunnel_factory()
        existing = [
            Chain(id=None, node_id=nodes["b"], chain_type=ChainType.CHAIN, index=1, port=2000)
        ]
        with pytest.raises(HopValidationError, match="Hop 1 missing id"):
            await planner.update_multi_node(
                tunnel["id"], nodes["a"], nodes["c"], [HopConfig(node_id=nodes["b"])], existing
            )
        assert fake_store.writes() == []


    async def test_store_failure_mid_update_keeps_earlier_updates(
        self, planner, store_client, fake_store, tunnel_factory, nodes
    ):
        a, b, c = nodes["a"], nodes["b"], nodes["c"]
        tunnel, rows = tunnel_factory(
            chains=[
                ("in", a, 0, 0),
                ("chain", b, 1, 2000),
                ("chain", b, 2, 2001),
                ("chain", b, 3, 2002),
            ]
        )
        existing = await _existing(store_client, tunnel["id"])
        fake_store.calls.clear()
        # ingress and hop 1 updates succeed, hop 2 fails
        fake_store.fail_next("PATCH", "chains", "row-level security violation", status=403, after=2)

        with pytest.raises(StoreError) as exc_info:
            await planner.update_multi_node(
                tunnel["id"], a, c, [HopConfig(node_id=c), HopConfig(node_id=a)], existing
            )

        assert exc_info.value.message == "row-level security violation"
        assert fake_store.writes() == [("PATCH", "chains")] * 3

        stored = {r["id"]: r for r in fake_store.rows("chains")}
        assert (stored[rows[1]["id"]]["node_id"], stored[rows[1]["id"]]["port"]) == (c, 3000)
        assert (stored[rows[2]["id"]]["node_id"], stored[rows[2]["id"]]["port"]) == (b, 2001)
        # neither the hop 3 delete nor the egress insert was sent
        assert rows[3]["id"] in stored
        assert not any(r["chain_type"] == "out" for r in stored.values())


class TestUpdateSingleNode:
    async def test_multi_to_single(
        self, planner, store_client, fake_store, tunnel_factory, nodes
    ):
        a, b, c = nodes["a"], nodes["b"], nodes["c"]
        tunnel, rows = tunnel_factory(
            chains=[("in", a, 0, 0), ("chain", b, 1, 2000), ("out", c, 0, 3000)]
        )
        existing = await _existing(store_client, tunnel["id"])
        fake_store.calls.clear()

        changes = await planner.update_single_node(tunnel["id"], b, existing)

        assert sorted(changes.deleted) == sorted([rows[1]["id"], rows[2]["id"]])
        assert changes.updated == [rows[0]["id"]]
        assert fake_store.writes() == [("DELETE", "chains"), ("PATCH", "chains")]

        stored = _stored(fake_store, tunnel["id"])
        assert len(stored) == 1
        assert stored[0]["id"] == rows[0]["id"]
        assert stored[0]["node_id"] == b
        assert stored[0]["port"] == 0

    async def test_creates_ingress_when_missing(
        self, planner, fake_store, tunnel_factory, nodes
    ):
        tunnel, _ = tunnel_factory()
        changes = await planner.update_single_node(tunnel["id"], nodes["a"], [])
        assert len(changes.inserted) == 1
        stored = _stored(fake_store, tunnel["id"])
        assert [(r["chain_type"], r["index"], r["port"]) for r in stored] == [("in", 0, 0)]

    async def test_unknown_node_writes_nothing(
        self, planner, store_client, fake_store, tunnel_factory, nodes
    ):
        tunnel, _ = tunnel_factory(chains=[("in", nodes["a"], 0, 0)])
        existing = await _existing(store_client, tunnel["id"])
        fake_store.calls.clear()

        with pytest.raises(NodeNotFoundError):
            await planner.update_single_node(tunnel["id"], 404, existing)
        assert fake_store.writes() == []
