import itertools
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from marketchat.schemas.chat import ChangeEvent

logger = logging.getLogger(__name__)

Handler = Callable[[ChangeEvent], Awaitable[None]]


class Subscription:
    def __init__(self, sub_id: int, table: str, handler: Handler):
        self.id = sub_id
        self.table = table
        self.handler = handler
        self.active = True

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, table={self.table!r}, active={self.active})"


class ChangeFeed:
    """In-process fan-out of row change events.

    The database webhook publishes here; each mounted conversation view holds
    exactly one subscription on the ``messages`` table.
    """

    def __init__(self):
        self._subs: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    def subscribe(self, table: str, handler: Handler) -> Subscription:
        sub = Subscription(next(self._ids), table, handler)
        self._subs[sub.id] = sub
        logger.debug("Suscripcion %s abierta sobre %s", sub.id, table)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        sub.active = False
        if self._subs.pop(sub.id, None) is not None:
            logger.debug("Suscripcion %s cerrada", sub.id)

    def subscribers(self, table: Optional[str] = None) -> List[Subscription]:
        return [s for s in self._subs.values() if table is None or s.table == table]

    async def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event`` to every subscriber of its table.

        Returns the number of handlers that ran without error.
        """
        delivered = 0
        # Copia: un handler puede desuscribirse durante la entrega
        for sub in self.subscribers(event.table):
            if not sub.active:
                continue
            try:
                await sub.handler(event)
                delivered += 1
            except Exception:
                logger.exception("Handler de la suscripcion %s fallo con %s", sub.id, event.kind)
        return delivered


_change_feed: Optional[ChangeFeed] = None


def get_change_feed() -> ChangeFeed:
    global _change_feed
    if _change_feed is None:
        _change_feed = ChangeFeed()
    return _change_feed
