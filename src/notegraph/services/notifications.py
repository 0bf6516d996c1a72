"""User-facing notifications emitted by link mutations."""
import logging
from collections import deque
from typing import Deque, List, Optional, Protocol

from notegraph.models.schema import Notification

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Anything that can surface a notification to the user."""

    def notify(self, notification: Notification) -> None: ...


class NotificationCenter:
    """Keeps the most recent notifications and mirrors them to the log."""

    def __init__(self, capacity: int = 50):
        self._items: Deque[Notification] = deque(maxlen=capacity)

    def notify(self, notification: Notification) -> None:
        self._items.append(notification)
        if notification.level == "error":
            logger.warning(f"Notification: {notification.message}")
        else:
            logger.info(f"Notification: {notification.message}")

    def recent(self, limit: Optional[int] = None) -> List[Notification]:
        items = list(self._items)
        return items[-limit:] if limit else items

    def drain(self) -> List[Notification]:
        """Return and forget everything collected so far."""
        items = list(self._items)
        self._items.clear()
        return items


def success(message: str, undo_token: Optional[str] = None) -> Notification:
    return Notification(
        level="success",
        message=message,
        action_label="Undo" if undo_token else None,
        undo_token=undo_token,
    )


def error(message: str) -> Notification:
    return Notification(level="error", message=message)
