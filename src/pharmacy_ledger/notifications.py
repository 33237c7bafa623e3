"""Transient, auto-expiring user-facing notices.

The emitter keeps notices newest-first and drops them once their time to live
has elapsed. Expiry is evaluated whenever notices are read, so no timer
threads are involved.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Callable, List, Optional

from . import log
from .constants import DEFAULT_NOTIFICATION_TTL_SECONDS, NotificationLevel


@dataclass(frozen=True)
class Notification:
    """A single notice shown to the operator."""

    notification_id: str
    message: str
    level: NotificationLevel
    timestamp: int
    read: bool = False


NotificationListener = Callable[[List[Notification]], None]


def _now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


class NotificationEmitter:
    """Append-only feed of notices with a fixed time to live."""

    def __init__(self, *, ttl_seconds: int = DEFAULT_NOTIFICATION_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._notifications: List[Notification] = []
        self._listeners: List[NotificationListener] = []

    def emit(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> Notification:
        notification = Notification(
            notification_id=uuid.uuid4().hex,
            message=message,
            level=level,
            timestamp=_now_ms(),
        )
        self._notifications.insert(0, notification)
        log.log(_LOG_LEVELS[level], "Notification [%s]: %s", level.value, message)
        self._publish()
        return notification

    def info(self, message: str) -> Notification:
        return self.emit(message, NotificationLevel.INFO)

    def warning(self, message: str) -> Notification:
        return self.emit(message, NotificationLevel.WARNING)

    def alert(self, message: str) -> Notification:
        return self.emit(message, NotificationLevel.ALERT)

    def active(self) -> List[Notification]:
        """Return unexpired notices, newest first."""

        self._purge_expired()
        return list(self._notifications)

    def remove(self, notification_id: str) -> bool:
        remaining = [n for n in self._notifications if n.notification_id != notification_id]
        removed = len(remaining) != len(self._notifications)
        self._notifications = remaining
        if removed:
            self._publish()
        return removed

    def mark_read(self, notification_id: str) -> Optional[Notification]:
        for index, notification in enumerate(self._notifications):
            if notification.notification_id == notification_id:
                updated = replace(notification, read=True)
                self._notifications[index] = updated
                self._publish()
                return updated
        return None

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self.active())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _purge_expired(self) -> None:
        cutoff = _now_ms() - self.ttl_seconds * 1000
        self._notifications = [n for n in self._notifications if n.timestamp > cutoff]

    def _publish(self) -> None:
        if not self._listeners:
            return
        snapshot = self.active()
        for listener in list(self._listeners):
            listener(list(snapshot))


_LOG_LEVELS = {
    NotificationLevel.INFO: logging.INFO,
    NotificationLevel.WARNING: logging.WARNING,
    NotificationLevel.ALERT: logging.WARNING,
}
