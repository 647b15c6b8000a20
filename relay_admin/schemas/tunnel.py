"""Pydantic schemas for tunnels and their chain rows."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from relay_admin.schemas.node import RelayNode


class ChainType(str, Enum):
    """Role of a chain row within its tunnel."""

    IN = "in"  # ingress, port always 0
    CHAIN = "chain"  # intermediate hop, index 1..N
    OUT = "out"  # egress


class Chain(BaseModel):
    """Row of the ``chains`` table (one hop of a tunnel).

    ``id`` is None for rows that have not been stored yet.
    """

    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    tunnel_id: int | None = None
    node_id: int
    chain_type: ChainType
    index: int = 0
    port: int = 0
    strategy: str = "round"
    transport: str = "raw"
    node: RelayNode | None = None

    def to_row(self) -> dict:
        """Column values for an insert."""
        return {
            "tunnel_id": self.tunnel_id,
            "node_id": self.node_id,
            "chain_type": self.chain_type.value,
            "index": self.index,
            "port": self.port,
            "strategy": self.strategy,
            "transport": self.transport,
        }


class HopConfig(BaseModel):
    """Desired configuration of one intermediate hop.

    ``node_id`` may be None while the operator has not picked a node yet;
    the planner rejects such hops.
    """

    node_id: int | None = None
    strategy: str = Field("round", min_length=1, max_length=64)
    transport: str = Field("raw", min_length=1, max_length=64)


class Tunnel(BaseModel):
    """Row of the ``tunnels`` table."""

    model_config = ConfigDict(extra="ignore")

    id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    name: str
    description: str | None = None
    ingress_display_address: str | None = None
    user_id: str | None = None


class TunnelTopology(BaseModel):
    """Desired shape of a tunnel.

    Without an egress node the tunnel is single-node and ``hops`` must be empty.
    """

    ingress_node_id: int
    egress_node_id: int | None = None
    hops: list[HopConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def hops_require_egress(self) -> "TunnelTopology":
        if self.egress_node_id is None and self.hops:
            raise ValueError("Intermediate hops require an egress node")
        return self

    @property
    def is_multi_node(self) -> bool:
        return self.egress_node_id is not None


class TunnelCreate(TunnelTopology):
    """Schema for creating a tunnel together with its chain."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    ingress_display_address: str | None = Field(None, max_length=255)


class TunnelUpdate(TunnelTopology):
    """Schema for editing a tunnel; the topology is always resubmitted in full."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    ingress_display_address: str | None = Field(None, max_length=255)


class TunnelResponse(Tunnel):
    """Tunnel with its chain rows ordered by role and index."""

    chains: list[Chain] = Field(default_factory=list)

