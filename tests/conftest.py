"""Pytest configuration and fixtures.

The hosted store is replaced by ``FakeStore``: an in-memory imitation of the
PostgREST table API and the auth API, served through ``httpx.MockTransport``.
Clients under test are the real ``StoreClient`` / ``SessionClient``; only the
network is fake.
"""

import json
import os
import time
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any
from urllib.parse import parse_qsl

# Set test environment variables before importing relay_admin modules
os.environ["STORE_URL"] = "http://store.test"
os.environ["STORE_API_KEY"] = "test-anon-key"
os.environ["LOG_LEVEL"] = "DEBUG"

import httpx
import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from relay_admin.core.store import StoreClient
from relay_admin.services.session import SessionClient, SessionState
from relay_admin.services.tenant import TenantService

TEST_JWT_SECRET = "test-jwt-secret-0123456789abcdef0123456789"
TEST_EMAIL = "operator@example.com"
TEST_PASSWORD = "correct-horse-battery"

REST_PREFIX = "/rest/v1"
AUTH_PREFIX = "/auth/v1"


def _matches(row: dict[str, Any], column: str, expr: str) -> bool:
    value = row.get(column)
    negate = expr.startswith("not.")
    if negate:
        expr = expr[4:]
    op, _, arg = expr.partition(".")
    if op == "eq":
        result = value is not None and str(value) == arg
    elif op == "is":
        result = value is None if arg == "null" else str(value).lower() == arg
    elif op == "in":
        options = set(arg.strip("()").split(",")) if arg.strip("()") else set()
        result = value is not None and str(value) in options
    else:
        raise ValueError(f"Unsupported filter operator: {op}")
    return not result if negate else result


class FakeStore:
    """In-memory stand-in for the hosted backend."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self._next_id: dict[str, int] = {}
        # (method, table) of every table request, in order
        self.calls: list[tuple[str, str]] = []
        # [method, table, status, message, matching requests still to let through]
        self._failures: list[list[Any]] = []
        self.users: dict[str, tuple[str, dict[str, Any]]] = {
            TEST_EMAIL: (
                TEST_PASSWORD,
                {"id": "user-1", "email": TEST_EMAIL, "role": "authenticated"},
            )
        }
        self.refresh_tokens: dict[str, dict[str, Any]] = {}
        self._issued = 0
        self.token_ttl = 3600
        self.logged_out = 0

    # --- seeding / inspection ---

    def seed(self, table: str, **values: Any) -> dict[str, Any]:
        return self._insert_row(table, values)

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.get(table, [])

    def writes(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] != "GET"]

    def fail_next(
        self, method: str, table: str, message: str, status: int = 400, after: int = 0
    ) -> None:
        """Make a matching request fail with a PostgREST error body.

        The first ``after`` matching requests still succeed.
        """
        self._failures.append([method, table, status, message, after])

    def _insert_row(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        next_id = self._next_id.get(table, 1)
        now = datetime.now(UTC).isoformat()
        row = {"id": next_id, "created_at": now, "updated_at": now, **values}
        self._next_id[table] = max(next_id, int(row["id"])) + 1
        self.tables.setdefault(table, []).append(row)
        return dict(row)

    # --- tokens ---

    def issue_token(self, user: dict[str, Any], ttl: int | None = None) -> dict[str, Any]:
        expires_at = int(time.time()) + (self.token_ttl if ttl is None else ttl)
        access_token = jwt.encode(
            {
                "sub": user["id"],
                "email": user["email"],
                "role": user["role"],
                "aud": "authenticated",
                "exp": expires_at,
            },
            TEST_JWT_SECRET,
            algorithm="HS256",
        )
        self._issued += 1
        refresh_token = f"refresh-{self._issued}"
        self.refresh_tokens[refresh_token] = user
        return {
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": self.token_ttl if ttl is None else ttl,
            "expires_at": expires_at,
            "refresh_token": refresh_token,
            "user": user,
        }

    # --- HTTP ---

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith(AUTH_PREFIX):
            return self._handle_auth(request, path[len(AUTH_PREFIX) :])
        if path.startswith(REST_PREFIX):
            return self._handle_rest(request, path[len(REST_PREFIX) :].strip("/"))
        return httpx.Response(404, json={"message": "not found"})

    def _handle_auth(self, request: httpx.Request, path: str) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        if path == "/token":
            grant = request.url.params.get("grant_type")
            if grant == "password":
                entry = self.users.get(body.get("email"))
                if entry is None or entry[0] != body.get("password"):
                    return httpx.Response(
                        400,
                        json={
                            "error": "invalid_grant",
                            "error_description": "Invalid login credentials",
                        },
                    )
                return httpx.Response(200, json=self.issue_token(entry[1]))
            if grant == "refresh_token":
                user = self.refresh_tokens.pop(body.get("refresh_token"), None)
                if user is None:
                    return httpx.Response(
                        400, json={"error": "invalid_grant", "error_description": "Invalid Refresh Token"}
                    )
                return httpx.Response(200, json=self.issue_token(user))
        if path == "/user":
            token = request.headers.get("Authorization", "")[7:]
            try:
                claims = jwt.decode(
                    token, TEST_JWT_SECRET, algorithms=["HS256"], audience="authenticated"
                )
            except jwt.PyJWTError:
                return httpx.Response(401, json={"msg": "invalid JWT"})
            for _, user in self.users.values():
                if user["id"] == claims["sub"]:
                    return httpx.Response(200, json=user)
            return httpx.Response(404, json={"msg": "User not found"})
        if path == "/logout":
            self.logged_out += 1
            return httpx.Response(204)
        if path == "/health":
            return httpx.Response(200, json={"name": "auth", "description": "fake"})
        return httpx.Response(404, json={"msg": "not found"})

    def _handle_rest(self, request: httpx.Request, table: str) -> httpx.Response:
        method = request.method
        if not table:
            return httpx.Response(200, json={})
        self.calls.append((method, table))

        for i, failure in enumerate(self._failures):
            f_method, f_table, status, message, after = failure
            if f_method == method and f_table == table:
                if after:
                    failure[4] -= 1
                    break
                del self._failures[i]
                return httpx.Response(
                    status, json={"code": "P0001", "message": message, "details": None}
                )

        params = parse_qsl(request.url.query.decode(), keep_blank_values=True)
        filters = [(k, v) for k, v in params if k not in {"select", "order", "limit", "offset"}]
        options = dict((k, v) for k, v in params if k in {"select", "order", "limit", "offset"})
        rows = self.tables.setdefault(table, [])
        matched = [r for r in rows if all(_matches(r, c, e) for c, e in filters)]

        if method == "GET":
            return self._select(request, matched, options)
        if method == "POST":
            payload = json.loads(request.content)
            payload = payload if isinstance(payload, list) else [payload]
            inserted = [self._insert_row(table, values) for values in payload]
            return httpx.Response(201, json=inserted)
        if method == "PATCH":
            values = json.loads(request.content)
            now = datetime.now(UTC).isoformat()
            for row in matched:
                row.update(values, updated_at=now)
            return httpx.Response(200, json=[dict(r) for r in matched])
        if method == "DELETE":
            self.tables[table] = [r for r in rows if r not in matched]
            return httpx.Response(200, json=[dict(r) for r in matched])
        return httpx.Response(405, json={"message": "method not allowed"})

    def _select(
        self, request: httpx.Request, matched: list[dict[str, Any]], options: dict[str, str]
    ) -> httpx.Response:
        result = list(matched)
        if options.get("order"):
            for clause in reversed(options["order"].split(",")):
                column, _, direction = clause.partition(".")
                result.sort(
                    key=lambda r: (r.get(column) is None, r.get(column)),
                    reverse=direction == "desc",
                )
        total = len(result)
        offset = int(options.get("offset", 0))
        if options.get("limit") is not None:
            result = result[offset : offset + int(options["limit"])]
        else:
            result = result[offset:]

        columns = options.get("select", "*")
        if columns != "*":
            wanted = [c.strip() for c in columns.split(",")]
            result = [{c: r.get(c) for c in wanted} for r in result]
        else:
            result = [dict(r) for r in result]

        headers = {}
        if "count=exact" in request.headers.get("Prefer", ""):
            if result:
                headers["Content-Range"] = f"{offset}-{offset + len(result) - 1}/{total}"
            else:
                headers["Content-Range"] = f"*/{total}"
        return httpx.Response(200, json=result, headers=headers)


# --- Singleton Reset Fixture ---


def _reset_singletons() -> None:
    StoreClient._instance = None
    SessionClient._instance = None
    SessionState._instance = None
    TenantService._instance = None


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset process-wide clients and state around every test."""
    _reset_singletons()
    yield
    _reset_singletons()


# --- Store Fixtures ---


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def credentials() -> tuple[str, str]:
    return TEST_EMAIL, TEST_PASSWORD


@pytest.fixture
def mock_transport(fake_store: FakeStore) -> httpx.MockTransport:
    return httpx.MockTransport(fake_store.handler)


@pytest_asyncio.fixture
async def session_client(mock_transport) -> AsyncGenerator[SessionClient, None]:
    client = SessionClient(
        "http://store.test/auth/v1", "test-anon-key", transport=mock_transport
    )
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def store_client(mock_transport, session_client) -> AsyncGenerator[StoreClient, None]:
    client = StoreClient(
        "http://store.test/rest/v1",
        "test-anon-key",
        token_provider=lambda: session_client.access_token,
        transport=mock_transport,
    )
    yield client
    await client.aclose()


@pytest.fixture
def node_factory(fake_store: FakeStore):
    """Factory for relay node rows."""

    def _create(name: str = "node", ports: str = "10000-10009", **kwargs: Any) -> dict[str, Any]:
        return fake_store.seed(
            "relay_nodes",
            name=name,
            address=f"{name}.example.net",
            token="t",
            ports=ports,
            **kwargs,
        )

    return _create


@pytest.fixture
def tunnel_factory(fake_store: FakeStore):
    """Factory for a tunnel row plus optional chain rows.

    ``chains`` items are (chain_type, node_id, index, port) tuples.
    """

    def _create(
        name: str = "tunnel",
        chains: list[tuple[str, int, int, int]] | None = None,
    ) -> tuple[dict[str, Any], list[dict[str, Any]]]:
        tunnel = fake_store.seed("tunnels", name=name, description=None)
        rows = [
            fake_store.seed(
                "chains",
                tunnel_id=tunnel["id"],
                node_id=node_id,
                chain_type=chain_type,
                index=index,
                port=port,
                strategy="round",
                transport="raw",
            )
            for chain_type, node_id, index, port in chains or []
        ]
        return tunnel, rows

    return _create


# --- App Fixtures ---


@pytest.fixture
def app(store_client, session_client):
    """The application, wired to the fake store."""
    from relay_admin.main import create_app

    StoreClient._instance = store_client
    SessionClient._instance = session_client
    return create_app()


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app. Keeps the session cookie between requests."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    await SessionState.get_instance().shutdown()


@pytest_asyncio.fixture
async def signed_in_client(async_client: AsyncClient) -> AsyncClient:
    response = await async_client.post(
        "/auth/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD}
    )
    assert response.status_code == 200, response.text
    assert response.json()["access_token"]
    return async_client
