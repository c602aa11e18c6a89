import asyncio
from typing import Dict, List, Optional

import structlog

from ..events import EventBus
from ..models import Notification, Severity

log = structlog.get_logger()

DEFAULT_TTL = 5.0


class NotificationChannel:
    """
    Fire-and-forget user-facing messages. Each posted notification removes
    itself after `ttl` seconds unless dismissed first. Nothing is persisted.

    Expiry timers are scheduled on the running event loop, so `post` must be
    called from inside it.
    """

    def __init__(self, bus: Optional[EventBus] = None, ttl: float = DEFAULT_TTL):
        self.bus = bus or EventBus()
        self.ttl = ttl
        self._active: List[Notification] = []
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def post(self, message, severity=Severity.INFO):
        notification = Notification(message=message, severity=Severity(severity))
        while any(n.id == notification.id for n in self._active):
            notification = Notification(message=message, severity=notification.severity)

        loop = asyncio.get_running_loop()
        self._active.append(notification)
        self._timers[notification.id] = loop.call_later(self.ttl, self._expire, notification.id)

        log.info("notification_posted", notification_id=notification.id,
                 severity=notification.severity.value, message=message)
        self.bus.publish("notification.posted", notification.model_dump(mode="json", by_alias=True))
        return notification.id

    def dismiss(self, notification_id):
        if self._remove(notification_id):
            self.bus.publish("notification.dismissed", {"id": notification_id})
            return True
        return False

    def _expire(self, notification_id):
        if self._remove(notification_id):
            log.debug("notification_expired", notification_id=notification_id)
            self.bus.publish("notification.expired", {"id": notification_id})

    def _remove(self, notification_id):
        handle = self._timers.pop(notification_id, None)
        if handle is not None:
            handle.cancel()
        before = len(self._active)
        self._active = [n for n in self._active if n.id != notification_id]
        return len(self._active) != before

    def list(self):
        return list(self._active)

    def close(self):
        """Cancel every pending expiry and drop active notifications."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._active.clear()
