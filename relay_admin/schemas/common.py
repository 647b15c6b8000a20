"""Shared schemas: sorting and pagination."""

import math
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, Field

RowT = TypeVar("RowT", bound=BaseModel)


class SortItem(BaseModel):
    """One sort key, e.g. ``created_at`` descending."""

    key: str = Field(..., min_length=1, pattern=r"^[a-z_][a-z0-9_]*$")
    order: Literal["asc", "desc"] = "desc"

    @classmethod
    def parse(cls, value: str) -> "SortItem":
        """Parse ``key`` or ``key:asc|desc``."""
        key, _, order = value.partition(":")
        return cls(key=key.strip(), order=(order.strip() or "desc"))  # type: ignore[arg-type]


DEFAULT_SORT = [SortItem(key="created_at", order="desc")]


class Page(BaseModel, Generic[RowT]):
    """A page of rows together with the exact total row count."""

    items: list[RowT]
    total: int
    page: int
    page_size: int
    pages: int

    @classmethod
    def build(cls, items: list[RowT], total: int, page: int, page_size: int) -> "Page[RowT]":
        pages = max(1, math.ceil(total / page_size)) if page_size else 1
        return cls(items=items, total=total, page=page, page_size=page_size, pages=pages)


class MessageResponse(BaseModel):
    message: str
