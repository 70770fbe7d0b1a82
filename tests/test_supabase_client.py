"""Tests for the Supabase REST client: query building and error mapping."""

import json

import httpx
import pytest

from marketchat.core.errors import AuthenticationError, TransientIOError, UniqueViolationError
from marketchat.services.supabase_client import SupabaseClient, build_params


def _client(handler, token=None) -> SupabaseClient:
    return SupabaseClient(
        access_token=token,
        base_url="https://proj.supabase.test",
        api_key="anon-key",
        transport=httpx.MockTransport(handler),
    )


class TestBuildParams:
    def test_filters_order_and_embedded(self) -> None:
        params = build_params(
            "id,messages(content)",
            filters=[("participant_ids", "cs", ["a"]), ("id", "eq", "c1")],
            order="created_at.asc",
            limit=5,
            embedded={"messages": {"order": "created_at.desc", "limit": 1}},
        )

        assert params == [
            ("select", "id,messages(content)"),
            ("participant_ids", "cs.{a}"),
            ("id", "eq.c1"),
            ("order", "created_at.asc"),
            ("limit", "5"),
            ("messages.order", "created_at.desc"),
            ("messages.limit", "1"),
        ]

    def test_repeated_column_is_kept(self) -> None:
        params = build_params(filters=[("p", "cs", ["a", "b"]), ("p", "cd", ["a", "b"])])

        assert ("p", "cs.{a,b}") in params
        assert ("p", "cd.{a,b}") in params


class TestSupabaseClient:
    async def test_select_sends_keys_and_token(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["headers"] = request.headers
            return httpx.Response(200, json=[{"id": "c1"}])

        rows = await _client(handler, token="user-jwt").select("conversations", filters=[("id", "eq", "c1")])

        assert rows == [{"id": "c1"}]
        assert seen["url"].path == "/rest/v1/conversations"
        assert seen["url"].params["id"] == "eq.c1"
        assert seen["headers"]["apikey"] == "anon-key"
        assert seen["headers"]["authorization"] == "Bearer user-jwt"

    async def test_anon_key_used_without_token(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["authorization"] == "Bearer anon-key"
            return httpx.Response(200, json=[])

        assert await _client(handler).select("messages") == []

    async def test_insert_returns_first_row(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.headers["prefer"] == "return=representation"
            assert json.loads(request.content) == {"participant_ids": ["a", "b"]}
            return httpx.Response(201, json=[{"id": "c1", "participant_ids": ["a", "b"]}])

        row = await _client(handler).insert("conversations", {"participant_ids": ["a", "b"]})

        assert row["id"] == "c1"

    @pytest.mark.parametrize(
        "status,body",
        [
            (409, {"code": "23505", "message": "duplicate key"}),
            (400, {"code": "23505", "message": "duplicate key"}),
        ],
    )
    async def test_unique_violation_is_distinguished(self, status, body) -> None:
        client = _client(lambda request: httpx.Response(status, json=body))

        with pytest.raises(UniqueViolationError):
            await client.insert("conversations", {"participant_ids": ["a", "b"]})

    async def test_server_error_is_transient(self) -> None:
        client = _client(lambda request: httpx.Response(503, text="unavailable"))

        with pytest.raises(TransientIOError):
            await client.select("messages")

    async def test_transport_error_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("boom", request=request)

        with pytest.raises(TransientIOError):
            await _client(handler).delete("messages", "m1")

    async def test_update_and_delete_target_id(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, request.url.params["id"]))
            if request.method == "PATCH":
                return httpx.Response(200, json=[{"id": "m1", "content": "x"}])
            return httpx.Response(204)

        client = _client(handler)
        row = await client.update("messages", "m1", {"content": "x"})
        await client.delete("messages", "m1")

        assert row == {"id": "m1", "content": "x"}
        assert calls == [("PATCH", "eq.m1"), ("DELETE", "eq.m1")]

    async def test_upload_returns_public_url(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/storage/v1/object/chat-images/u1/abc"
            assert request.headers["content-type"] == "image/png"
            assert request.content == b"png"
            return httpx.Response(200, json={"Key": "chat-images/u1/abc"})

        url = await _client(handler).upload_blob("chat-images", "u1/abc", b"png", "image/png")

        assert url == "https://proj.supabase.test/storage/v1/object/public/chat-images/u1/abc"

    async def test_get_user_unauthorized(self) -> None:
        client = _client(lambda request: httpx.Response(401, json={"msg": "invalid JWT"}))

        with pytest.raises(AuthenticationError):
            await client.get_user("bad")

    def test_with_token_keeps_config(self) -> None:
        client = _client(lambda request: httpx.Response(200))

        scoped = client.with_token("jwt")

        assert scoped.access_token == "jwt"
        assert scoped.base_url == client.base_url
        assert scoped.api_key == "anon-key"
