import itertools
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


class ChangeEvent(BaseModel):
    """One state change published by a core component."""

    sequence: int
    topic: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EventBus:
    """
    Explicit subscribe/notify channel shared by the registry, the simulator
    and the notification channel.

    Delivery is synchronous, in subscription order, on the caller's turn of
    the event loop. A failing subscriber is logged and skipped.
    """

    def __init__(self):
        self._subscribers: List[Callable[[ChangeEvent], None]] = []
        self._sequence = itertools.count(1)

    def subscribe(self, callback):
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self):
        return len(self._subscribers)

    def publish(self, topic, payload=None):
        event = ChangeEvent(sequence=next(self._sequence), topic=topic, payload=payload or {})
        # copy so a callback may unsubscribe itself mid-delivery
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                log.error("subscriber_failed", topic=topic, error=str(e))
        return event
