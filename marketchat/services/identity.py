import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from marketchat.core.config import settings
from marketchat.core.errors import AuthenticationError, NotFoundError
from marketchat.schemas.chat import Identity, PendingAction
from marketchat.services.supabase_client import SupabaseClient, get_supabase_client

logger = logging.getLogger(__name__)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer ...`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class IdentityResolver:
    def __init__(self, client: SupabaseClient):
        self.client = client

    async def current_identity(self, access_token: Optional[str]) -> Optional[Identity]:
        """Resolve the session's identity; None when signed out."""
        if not access_token:
            return None
        try:
            data = await self.client.get_user(access_token)
        except AuthenticationError:
            logger.info("Token rechazado por Supabase Auth")
            return None
        if not data.get("id"):
            return None
        meta: Dict[str, Any] = data.get("user_metadata") or {}
        return Identity(
            id=data["id"],
            email=data.get("email"),
            name=meta.get("name") or meta.get("full_name"),
            avatar_url=meta.get("avatar_url"),
        )


class AuthGate:
    """Holds actions requested while signed out until the user signs in.

    The client shows its login prompt with the returned token and calls
    ``resume`` once the session exists. Each intent resumes at most once.
    """

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.PENDING_ACTION_TTL_SECONDS)
        self._pending: Dict[str, PendingAction] = {}

    def require(self, identity: Optional[Identity], kind: str, payload: Dict[str, Any]) -> Optional[PendingAction]:
        if identity is not None:
            return None
        self._purge()
        action = PendingAction(
            token=uuid.uuid4().hex,
            kind=kind,
            payload=payload,
            created_at=datetime.now(timezone.utc),
        )
        self._pending[action.token] = action
        logger.info("Accion %s pendiente de login (%s)", kind, action.token)
        return action

    def resume(self, token: str) -> PendingAction:
        self._purge()
        action = self._pending.pop(token, None)
        if action is None:
            raise NotFoundError("Pending action", token)
        return action

    def _purge(self) -> None:
        now = datetime.now(timezone.utc)
        expired = [t for t, a in self._pending.items() if now - a.created_at > self.ttl]
        for t in expired:
            del self._pending[t]

    def __len__(self) -> int:
        return len(self._pending)


_identity_resolver: Optional[IdentityResolver] = None
_auth_gate: Optional[AuthGate] = None


def get_identity_resolver() -> IdentityResolver:
    global _identity_resolver
    if _identity_resolver is None:
        _identity_resolver = IdentityResolver(get_supabase_client())
    return _identity_resolver


def get_auth_gate() -> AuthGate:
    global _auth_gate
    if _auth_gate is None:
        _auth_gate = AuthGate()
    return _auth_gate
