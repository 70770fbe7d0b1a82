import logging
import uuid
from datetime import datetime, timezone
from typing import List

from marketchat.schemas.chat import Notification, NotificationVariant

logger = logging.getLogger(__name__)


class Notifier:
    """Queue of transient, dismissible notifications for one view."""

    def __init__(self, limit: int = 20):
        self.limit = limit
        self._items: List[Notification] = []

    def push(self, title: str, description: str, variant: NotificationVariant = "default") -> Notification:
        note = Notification(
            id=uuid.uuid4().hex,
            title=title,
            description=description,
            variant=variant,
            created_at=datetime.now(timezone.utc),
        )
        self._items.append(note)
        del self._items[:-self.limit]
        log = logger.warning if variant == "destructive" else logger.info
        log("Notificacion [%s] %s: %s", variant, title, description)
        return note

    def error(self, description: str, title: str = "Error") -> Notification:
        return self.push(title, description, "destructive")

    def dismiss(self, notification_id: str) -> bool:
        before = len(self._items)
        self._items = [n for n in self._items if n.id != notification_id]
        return len(self._items) != before

    @property
    def items(self) -> List[Notification]:
        return list(self._items)
