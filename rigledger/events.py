import logging
import threading
from collections import deque
from typing import Optional, Protocol

from .models import Notification

logger = logging.getLogger("events")


class EventSink(Protocol):
    def publish(self, notification: Notification) -> None: ...


class NullEventSink:
    def publish(self, notification: Notification) -> None:
        logger.debug("Dropped notification for %s: %s", notification.user, notification.message)


class InMemoryEventSink:
    """Keeps the most recent notifications so a polling client can fetch them.

    Once ``max_notifications`` are held the oldest ones are dropped.
    """

    def __init__(self, max_notifications: int = 1000):
        self._notifications: deque[Notification] = deque(maxlen=max_notifications)
        self._guard = threading.Lock()

    def publish(self, notification: Notification) -> None:
        with self._guard:
            self._notifications.append(notification)

    def for_user(self, username: str, limit: Optional[int] = None) -> list[Notification]:
        with self._guard:
            items = [n for n in reversed(self._notifications) if n.user == username]
        return items[:limit] if limit is not None else items
