"""Pydantic schemas for relay nodes."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from relay_admin.services.port_range import validate_port_spec


class RelayNode(BaseModel):
    """Row of the ``relay_nodes`` table."""

    model_config = ConfigDict(extra="ignore")

    id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    name: str
    description: str | None = None
    address: str = ""
    display_address: str | None = None
    token: str = ""
    level: int = 0
    is_public: bool = False
    version: str | None = None
    egress_traffic: int = 0
    ingress_traffic: int = 0
    traffic_limit: int = 0
    enlarge_scale: float = 1
    ports: str = ""
    custom_cfg: dict[str, Any] = Field(default_factory=dict)
    user_id: str | None = None
    shadow_user_id: str | None = None


class RelayNodeCreate(BaseModel):
    """Schema for creating a relay node."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    address: str = Field(..., min_length=1, max_length=255)
    display_address: str | None = Field(None, max_length=255)
    level: int = Field(0, ge=0)
    is_public: bool = False
    traffic_limit: int = Field(0, ge=0)
    enlarge_scale: float = Field(1, gt=0)
    ports: str = Field(..., description="Port ranges, e.g. '10000-10100,20000'")
    custom_cfg: dict[str, Any] = Field(default_factory=dict)

    @field_validator("ports")
    @classmethod
    def validate_ports(cls, v: str) -> str:
        return validate_port_spec(v)


class RelayNodeUpdate(BaseModel):
    """Schema for updating a relay node. Omitted fields are left unchanged."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    address: str | None = Field(None, min_length=1, max_length=255)
    display_address: str | None = Field(None, max_length=255)
    level: int | None = Field(None, ge=0)
    is_public: bool | None = None
    traffic_limit: int | None = Field(None, ge=0)
    enlarge_scale: float | None = Field(None, gt=0)
    ports: str | None = None
    custom_cfg: dict[str, Any] | None = None

    @field_validator("ports")
    @classmethod
    def validate_ports(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return validate_port_spec(v)


class AvailablePortResponse(BaseModel):
    """Result of a dry-run port availability check."""

    node_id: int
    port: int
