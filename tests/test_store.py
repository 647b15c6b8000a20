"""Tests for the hosted store client."""

import httpx
import pytest

from relay_admin.core.store import (
    StoreClient,
    StoreError,
    eq,
    in_,
    not_in,
    not_null,
    order_clause,
    parse_content_range,
)

pytestmark = pytest.mark.asyncio


class TestFilterHelpers:
    async def test_operators(self):
        assert eq(3) == "eq.3"
        assert not_null() == "not.is.null"
        assert in_([1, 2]) == "in.(1,2)"
        assert not_in([5]) == "not.in.(5)"

    async def test_order_clause(self):
        assert order_clause([("index", True), ("id", False)]) == "index.asc,id.desc"

    @pytest.mark.parametrize(
        "header,expected",
        [("0-19/45", 45), ("*/0", 0), ("0-9/*", None), (None, None), ("garbage", None)],
    )
    async def test_parse_content_range(self, header, expected):
        assert parse_content_range(header) == expected


class TestRequests:
    """Tests for requests against the fake table API."""

    async def test_select_with_count(self, store_client, fake_store):
        for i in range(5):
            fake_store.seed("tenants", name=f"t{i}", code=f"c{i}")

        result = await store_client.select(
            "tenants", order=[("name", False)], limit=2, offset=1, count=True
        )
        assert [r["name"] for r in result.rows] == ["t3", "t2"]
        assert result.count == 5

    async def test_select_filters(self, store_client, fake_store):
        fake_store.seed("chains", node_id=1, port=10)
        fake_store.seed("chains", node_id=1, port=None)
        fake_store.seed("chains", node_id=2, port=11)

        result = await store_client.select(
            "chains", columns="port", filters=[("node_id", eq(1)), ("port", not_null())]
        )
        assert result.rows == [{"port": 10}]
        assert result.count is None

    async def test_insert_batch_is_one_request(self, store_client, fake_store):
        rows = await store_client.insert("tenants", [{"name": "a", "code": "a"}, {"name": "b", "code": "b"}])
        assert [r["id"] for r in rows] == [1, 2]
        assert fake_store.calls == [("POST", "tenants")]

    async def test_update_and_delete_need_filters(self, store_client):
        with pytest.raises(ValueError):
            await store_client.update("tenants", {"name": "x"}, [])
        with pytest.raises(ValueError):
            await store_client.delete("tenants", [])

    async def test_error_body_becomes_store_error(self, store_client, fake_store):
        fake_store.fail_next("POST", "tenants", "duplicate key value", status=409)

        with pytest.raises(StoreError) as exc_info:
            await store_client.insert("tenants", {"name": "a", "code": "a"})
        assert exc_info.value.message == "duplicate key value"
        assert exc_info.value.status_code == 409
        assert exc_info.value.code == "P0001"

    async def test_transport_failure_becomes_store_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = StoreClient(
            "http://store.test/rest/v1", "key", transport=httpx.MockTransport(handler)
        )
        with pytest.raises(StoreError, match="Store request failed"):
            await client.select("tenants")
        assert await client.ping() is False
        await client.aclose()

    async def test_ping(self, store_client):
        assert await store_client.ping() is True


class TestHeaders:
    async def test_api_key_used_without_session(self, store_client):
        headers = store_client._get_headers()
        assert headers["apikey"] == "test-anon-key"
        assert headers["Authorization"] == "Bearer test-anon-key"
        assert "Prefer" not in headers

    async def test_session_token_used_when_signed_in(
        self, store_client, session_client, credentials
    ):
        await session_client.sign_in(*credentials)
        headers = store_client._get_headers(["count=exact"])
        assert headers["Authorization"] == f"Bearer {session_client.access_token}"
        assert headers["Prefer"] == "count=exact"


class TestSingleton:
    async def test_get_instance_uses_settings(self):
        client = StoreClient.get_instance()
        assert client is StoreClient.get_instance()
        assert client.base_url == "http://store.test/rest/v1"
        assert client.api_key == "test-anon-key"
