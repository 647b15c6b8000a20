"""Hosted store client - thin async wrapper over the PostgREST table API.

Rows are plain dicts at this layer; typed access lives in
``relay_admin.services.repository``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from relay_admin.core.config import settings

logger = logging.getLogger(__name__)

# (column, operator-expression) pairs, e.g. ("node_id", "eq.3")
Filters = list[tuple[str, str]]


class StoreError(Exception):
    """Raised when the store rejects a read or write."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        details: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details


# --- Filter helpers ---


def eq(value: Any) -> str:
    return f"eq.{value}"


def not_null() -> str:
    return "not.is.null"


def _value_list(values: Iterable[Any]) -> str:
    return ",".join(str(v) for v in values)


def in_(values: Iterable[Any]) -> str:
    return f"in.({_value_list(values)})"


def not_in(values: Iterable[Any]) -> str:
    return f"not.in.({_value_list(values)})"


def order_clause(order: Sequence[tuple[str, bool]]) -> str:
    """Build a PostgREST ``order`` value from (column, ascending) pairs."""
    return ",".join(f"{column}.{'asc' if ascending else 'desc'}" for column, ascending in order)


def parse_content_range(header: str | None) -> int | None:
    """Extract the total from a ``Content-Range: 0-19/45`` header."""
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1]
    if total == "*":
        return None
    try:
        return int(total)
    except ValueError:
        return None


@dataclass
class SelectResult:
    """Rows returned by a select, plus the exact count when requested."""

    rows: list[dict[str, Any]]
    count: int | None = None


def _current_access_token() -> str | None:
    from relay_admin.services.session import SessionClient

    return SessionClient.get_instance().access_token


class StoreClient:
    """Client for the hosted store's table API.

    One shared httpx.AsyncClient per instance. Requests carry the project API
    key plus the signed-in operator's access token when one is available, so
    row-level security on the store applies to the operator.
    """

    _instance: StoreClient | None = None
    _instance_lock: threading.Lock = threading.Lock()

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        token_provider: Callable[[], str | None] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.token_provider = token_provider
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    @classmethod
    def get_instance(cls) -> StoreClient:
        """Get or create the process-wide client (thread-safe)."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls(
                        settings.rest_url,
                        settings.store_api_key,
                        timeout=settings.http_timeout,
                        token_provider=_current_access_token,
                    )
        return cls._instance

    async def _get_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=self.timeout,
                    transport=self._transport,
                )
            return self._client

    async def aclose(self) -> None:
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    def _get_headers(self, prefer: list[str] | None = None) -> dict[str, str]:
        token = self.token_provider() if self.token_provider else None
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token or self.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = ",".join(prefer)
        return headers

    async def request(
        self,
        method: str,
        table: str,
        *,
        params: Filters | None = None,
        json: Any = None,
        prefer: list[str] | None = None,
    ) -> httpx.Response:
        """Send one request to ``/<table>`` and raise StoreError on failure."""
        client = await self._get_client()
        try:
            response = await client.request(
                method,
                f"/{table}",
                params=params,
                json=json,
                headers=self._get_headers(prefer),
            )
        except httpx.HTTPError as e:
            raise StoreError(f"Store request failed: {e}") from e

        if response.is_success:
            return response

        message = f"HTTP {response.status_code}"
        code = details = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("message") or message
            code = body.get("code")
            details = body.get("details")
        raise StoreError(message, status_code=response.status_code, code=code, details=details)

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Filters | None = None,
        order: Sequence[tuple[str, bool]] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        count: bool = False,
    ) -> SelectResult:
        params: Filters = [("select", columns)]
        params.extend(filters or [])
        if order:
            params.append(("order", order_clause(order)))
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset is not None:
            params.append(("offset", str(offset)))

        response = await self.request(
            "GET", table, params=params, prefer=["count=exact"] if count else None
        )
        total = parse_content_range(response.headers.get("content-range")) if count else None
        return SelectResult(rows=response.json(), count=total)

    async def insert(
        self, table: str, rows: dict[str, Any] | list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Insert one row or a batch in a single request; returns stored rows."""
        response = await self.request(
            "POST", table, json=rows, prefer=["return=representation"]
        )
        result = response.json()
        return result if isinstance(result, list) else [result]

    async def update(
        self, table: str, values: dict[str, Any], filters: Filters
    ) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("Refusing to update without a filter")
        response = await self.request(
            "PATCH", table, params=filters, json=values, prefer=["return=representation"]
        )
        return response.json()

    async def delete(self, table: str, filters: Filters) -> list[dict[str, Any]]:
        if not filters:
            raise ValueError("Refusing to delete without a filter")
        response = await self.request(
            "DELETE", table, params=filters, prefer=["return=representation"]
        )
        return response.json()

    async def ping(self) -> bool:
        """Check that the store answers at all."""
        try:
            await self.request("GET", "")
            return True
        except StoreError as e:
            logger.debug(f"Store ping failed: {e}")
            return False


def get_store() -> StoreClient:
    """Dependency to get the store client."""
    return StoreClient.get_instance()
