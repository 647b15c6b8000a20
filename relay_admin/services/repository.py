"""Typed table access - generic CRUD over the store client.

Each table gets a ``TableRepository`` bound to its row model, so callers work
with pydantic rows instead of loose dicts. Store failures are logged here and
re-raised unchanged for the caller to report.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from relay_admin.core.store import Filters, StoreClient, StoreError, eq, in_
from relay_admin.schemas.announcement import Announcement
from relay_admin.schemas.common import DEFAULT_SORT, Page, SortItem
from relay_admin.schemas.node import RelayNode
from relay_admin.schemas.rule import RelayRule
from relay_admin.schemas.tenant import Tenant
from relay_admin.schemas.tunnel import Chain, Tunnel

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", bound=BaseModel)


class RowNotFoundError(Exception):
    """Raised when a row addressed by id does not exist."""

    def __init__(self, table: str, row_id: int):
        self.table = table
        self.row_id = row_id
        super().__init__(f"{table} row {row_id} not found")


class TableRepository(Generic[RowT]):
    """fetch_page / get / create / update / delete for one table."""

    def __init__(self, store: StoreClient, table: str, model: type[RowT]):
        self.store = store
        self.table = table
        self.model = model

    def _rows(self, rows: list[dict[str, Any]]) -> list[RowT]:
        return [self.model.model_validate(row) for row in rows]

    async def fetch_page(
        self,
        page: int = 1,
        page_size: int = 20,
        sort_by: Sequence[SortItem] | None = None,
    ) -> Page[RowT]:
        """Fetch one page ordered by ``sort_by`` (newest first by default)."""
        sort_by = list(sort_by) if sort_by else DEFAULT_SORT
        try:
            result = await self.store.select(
                self.table,
                order=[(s.key, s.order == "asc") for s in sort_by],
                limit=page_size,
                offset=(page - 1) * page_size,
                count=True,
            )
        except StoreError as e:
            logger.error(f"Failed to fetch {self.table}: {e}")
            raise

        items = self._rows(result.rows)
        total = result.count if result.count is not None else len(items)
        return Page[self.model].build(items, total, page, page_size)  # type: ignore[name-defined]

    async def list(
        self,
        filters: Filters | None = None,
        order: Sequence[tuple[str, bool]] | None = None,
        columns: str = "*",
    ) -> list[RowT]:
        try:
            result = await self.store.select(
                self.table, columns=columns, filters=filters, order=order
            )
        except StoreError as e:
            logger.error(f"Failed to list {self.table}: {e}")
            raise
        return self._rows(result.rows)

    async def get(self, row_id: int) -> RowT | None:
        rows = await self.list(filters=[("id", eq(row_id))])
        return rows[0] if rows else None

    async def count(self, filters: Filters | None = None) -> int:
        try:
            result = await self.store.select(
                self.table, columns="id", filters=filters, limit=1, count=True
            )
        except StoreError as e:
            logger.error(f"Failed to count {self.table}: {e}")
            raise
        return result.count or 0

    async def create(self, data: dict[str, Any]) -> RowT:
        try:
            rows = await self.store.insert(self.table, data)
        except StoreError as e:
            logger.error(f"Failed to create {self.table}: {e}")
            raise
        if not rows:
            raise StoreError(f"Insert into {self.table} returned no row")
        return self.model.model_validate(rows[0])

    async def create_many(self, data: list[dict[str, Any]]) -> list[RowT]:
        """Insert a batch in one request; the store applies it atomically."""
        if not data:
            return []
        try:
            rows = await self.store.insert(self.table, data)
        except StoreError as e:
            logger.error(f"Failed to create {self.table} batch of {len(data)}: {e}")
            raise
        return self._rows(rows)

    async def update(self, row_id: int, data: dict[str, Any]) -> RowT:
        try:
            rows = await self.store.update(self.table, data, [("id", eq(row_id))])
        except StoreError as e:
            logger.error(f"Failed to update {self.table} {row_id}: {e}")
            raise
        if not rows:
            raise RowNotFoundError(self.table, row_id)
        return self.model.model_validate(rows[0])

    async def delete(self, row_id: int) -> bool:
        """Delete one row; returns False when nothing matched."""
        try:
            rows = await self.store.delete(self.table, [("id", eq(row_id))])
        except StoreError as e:
            logger.error(f"Failed to delete {self.table} {row_id}: {e}")
            raise
        return bool(rows)

    async def delete_many(self, row_ids: Sequence[int]) -> int:
        if not row_ids:
            return 0
        try:
            rows = await self.store.delete(self.table, [("id", in_(row_ids))])
        except StoreError as e:
            logger.error(f"Failed to delete {self.table} ids {list(row_ids)}: {e}")
            raise
        return len(rows)


class ChainRepository(TableRepository[Chain]):
    """Chain rows, with the queries the planner needs."""

    def __init__(self, store: StoreClient):
        super().__init__(store, "chains", Chain)

    async def list_for_tunnel(self, tunnel_id: int) -> list[Chain]:
        return await self.list(
            filters=[("tunnel_id", eq(tunnel_id))],
            order=[("index", True), ("id", True)],
        )

    async def delete_for_tunnel(self, tunnel_id: int) -> int:
        try:
            rows = await self.store.delete(self.table, [("tunnel_id", eq(tunnel_id))])
        except StoreError as e:
            logger.error(f"Failed to delete chains of tunnel {tunnel_id}: {e}")
            raise
        return len(rows)


def node_repository(store: StoreClient) -> TableRepository[RelayNode]:
    return TableRepository(store, "relay_nodes", RelayNode)


def tunnel_repository(store: StoreClient) -> TableRepository[Tunnel]:
    return TableRepository(store, "tunnels", Tunnel)


def rule_repository(store: StoreClient) -> TableRepository[RelayRule]:
    return TableRepository(store, "relay_rules", RelayRule)


def announcement_repository(store: StoreClient) -> TableRepository[Announcement]:
    return TableRepository(store, "announcements", Announcement)


def tenant_repository(store: StoreClient) -> TableRepository[Tenant]:
    return TableRepository(store, "tenants", Tenant)
