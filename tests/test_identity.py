"""Tests for identity resolution and the pending-action auth gate."""

from datetime import timedelta

import httpx
import pytest

from marketchat.core.errors import NotFoundError
from marketchat.schemas.chat import Identity
from marketchat.services.identity import AuthGate, IdentityResolver, bearer_token
from marketchat.services.supabase_client import SupabaseClient


def _resolver(handler) -> IdentityResolver:
    client = SupabaseClient(base_url="https://proj.supabase.test", api_key="anon", transport=httpx.MockTransport(handler))
    return IdentityResolver(client)


class TestBearerToken:
    @pytest.mark.parametrize(
        "header,expected",
        [("Bearer abc", "abc"), ("bearer  abc ", "abc"), ("Basic abc", None), ("Bearer ", None), (None, None)],
    )
    def test_parsing(self, header, expected) -> None:
        assert bearer_token(header) == expected


class TestIdentityResolver:
    async def test_resolves_user_metadata(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["authorization"] == "Bearer jwt"
            return httpx.Response(
                200,
                json={"id": "u1", "email": "u1@test", "user_metadata": {"name": "Ulla", "avatar_url": "https://a"}},
            )

        identity = await _resolver(handler).current_identity("jwt")

        assert identity == Identity(id="u1", email="u1@test", name="Ulla", avatar_url="https://a")

    async def test_rejected_token_is_signed_out(self) -> None:
        resolver = _resolver(lambda request: httpx.Response(401, json={"msg": "bad jwt"}))

        assert await resolver.current_identity("expired") is None

    async def test_no_token_skips_lookup(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        assert await _resolver(handler).current_identity(None) is None


class TestAuthGate:
    def test_signed_in_needs_no_pending_action(self) -> None:
        gate = AuthGate()

        assert gate.require(Identity(id="u1"), "start_chat", {"other_user_id": "u2"}) is None
        assert len(gate) == 0

    def test_pending_action_resumes_once(self) -> None:
        gate = AuthGate()
        action = gate.require(None, "start_chat", {"other_user_id": "u2"})

        resumed = gate.resume(action.token)

        assert resumed.payload == {"other_user_id": "u2"}
        with pytest.raises(NotFoundError):
            gate.resume(action.token)

    def test_expired_action_cannot_resume(self) -> None:
        gate = AuthGate(ttl_seconds=60)
        action = gate.require(None, "start_chat", {"other_user_id": "u2"})
        action.created_at -= timedelta(minutes=5)

        with pytest.raises(NotFoundError):
            gate.resume(action.token)
