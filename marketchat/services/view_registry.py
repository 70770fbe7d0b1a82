import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from marketchat.core.config import settings
from marketchat.core.errors import AuthenticationError, NotFoundError
from marketchat.schemas.chat import Identity
from marketchat.services.change_feed import ChangeFeed, get_change_feed
from marketchat.services.chat_repository import ChatRepository
from marketchat.services.conversation_view import ConversationViewController

logger = logging.getLogger(__name__)


class ViewRegistry:
    """Mounted conversation views, one per client session.

    A view nobody has touched for ``idle_ttl_seconds`` is unmounted on the
    next ``mount`` or ``get``, so clients that vanish without ``DELETE``
    do not keep their feed subscription.
    """

    def __init__(self, feed: ChangeFeed, idle_ttl_seconds: Optional[int] = None):
        self.feed = feed
        self.idle_ttl = timedelta(
            seconds=idle_ttl_seconds if idle_ttl_seconds is not None else settings.VIEW_IDLE_TTL_SECONDS
        )
        self._views: Dict[str, ConversationViewController] = {}
        self.last_seen: Dict[str, datetime] = {}

    async def mount(self, identity: Identity, repository: ChatRepository) -> ConversationViewController:
        self._expire()
        view = ConversationViewController(identity, repository, self.feed)
        self._views[view.view_id] = view
        self.last_seen[view.view_id] = datetime.now(timezone.utc)
        await view.mount()
        return view

    def get(self, view_id: str, identity: Optional[Identity] = None) -> ConversationViewController:
        self._expire()
        view = self._views.get(view_id)
        if view is None:
            raise NotFoundError("View", view_id)
        if identity is not None and view.user_id != identity.id:
            raise AuthenticationError("View belongs to another session")
        self.last_seen[view_id] = datetime.now(timezone.utc)
        return view

    def unmount(self, view_id: str) -> None:
        view = self._views.pop(view_id, None)
        self.last_seen.pop(view_id, None)
        if view is None:
            raise NotFoundError("View", view_id)
        view.unmount()

    def _expire(self) -> None:
        now = datetime.now(timezone.utc)
        idle = [v for v, seen in self.last_seen.items() if now - seen > self.idle_ttl]
        for view_id in idle:
            logger.info("Vista %s inactiva, se desmonta", view_id)
            self.unmount(view_id)

    def shutdown(self) -> None:
        for view in list(self._views.values()):
            view.unmount()
        count = len(self._views)
        self._views.clear()
        self.last_seen.clear()
        if count:
            logger.info("%s vistas desmontadas al apagar", count)

    def __len__(self) -> int:
        return len(self._views)


_view_registry: Optional[ViewRegistry] = None


def get_view_registry() -> ViewRegistry:
    global _view_registry
    if _view_registry is None:
        _view_registry = ViewRegistry(get_change_feed())
    return _view_registry
