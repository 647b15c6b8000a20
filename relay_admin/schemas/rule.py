"""Pydantic schemas for forwarding rules."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RelayRule(BaseModel):
    """Row of the ``relay_rules`` table."""

    model_config = ConfigDict(extra="ignore")

    id: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    name: str
    description: str | None = None
    listen_port: int
    tunnel_id: int | None = None
    targets: str = ""
    limit: dict[str, Any] | None = None
    upload_traffic: int = 0
    download_traffic: int = 0
    user_id: str | None = None


def _normalize_targets(v: str) -> str:
    """Targets are a comma/newline separated list of host:port entries."""
    entries = [t.strip() for t in v.replace("\n", ",").split(",") if t.strip()]
    if not entries:
        raise ValueError("At least one target is required")
    for entry in entries:
        host, sep, port = entry.rpartition(":")
        if not sep or not host or not port.isdigit() or not 0 < int(port) <= 65535:
            raise ValueError(f"Invalid target '{entry}': expected host:port")
    return ",".join(entries)


class RelayRuleCreate(BaseModel):
    """Schema for creating a forwarding rule."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    listen_port: int = Field(..., ge=1, le=65535)
    tunnel_id: int | None = None
    targets: str
    limit: dict[str, Any] | None = None

    @field_validator("targets")
    @classmethod
    def validate_targets(cls, v: str) -> str:
        return _normalize_targets(v)


class RelayRuleUpdate(BaseModel):
    """Schema for updating a forwarding rule."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    listen_port: int | None = Field(None, ge=1, le=65535)
    tunnel_id: int | None = None
    targets: str | None = None
    limit: dict[str, Any] | None = None

    @field_validator("targets")
    @classmethod
    def validate_targets(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return _normalize_targets(v)
