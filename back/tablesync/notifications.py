import itertools
import logging
from collections import deque
from datetime import datetime, timezone

from .models import Notification

logger = logging.getLogger(__name__)


class NotificationCenter:
    """Dismissable operator notifications (the service's toasts)."""

    def __init__(self, max_items: int = 100):
        self._items: deque[Notification] = deque(maxlen=max_items)
        self._ids = itertools.count(1)

    def notify(self, title: str, message: str, level: str = "info") -> Notification:
        notification = Notification(
            id=next(self._ids),
            level=level,
            title=title,
            message=message,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self._items.append(notification)
        log = logger.error if level == "error" else logger.info
        log(f"[{title}] {message}")
        return notification

    def error(self, title: str, message: str) -> Notification:
        return self.notify(title, message, level="error")

    def active(self) -> list[Notification]:
        return list(self._items)

    def dismiss(self, notification_id: int) -> bool:
        for notification in self._items:
            if notification.id == notification_id:
                self._items.remove(notification)
                return True
        return False
