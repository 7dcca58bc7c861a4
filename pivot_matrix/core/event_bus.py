"""Synchronous pub/sub event bus.

The strategy is single-threaded, so delivery happens inline on publish.
A failing subscriber is logged and never interrupts the publisher.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable

from pivot_matrix.core.types import EventType
from pivot_matrix.core.data_types import Event

logger = logging.getLogger(__name__)

EventCallback = Callable[[Event], None]


class EventBus:
    """Per-type subscriber lists with in-order synchronous delivery."""

    def __init__(self) -> None:
        self._subscribers: dict[EventType, list[EventCallback]] = defaultdict(list)
        self._published: int = 0

    @property
    def published_count(self) -> int:
        return self._published

    def subscribe(self, event_type: EventType, callback: EventCallback) -> None:
        """Register a callback for an event type."""
        self._subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: EventType, callback: EventCallback) -> None:
        callbacks = self._subscribers.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def publish(self, event: Event) -> None:
        """Deliver event to every subscriber of its type, in subscription order."""
        self._published += 1
        for callback in list(self._subscribers.get(event.type, [])):
            try:
                callback(event)
            except Exception:
                logger.exception("Error in event handler for %s", event.type.value)

    def emit(self, event_type: EventType, timestamp_ns: int, source: str, **payload) -> None:
        """Shorthand for publish(Event(...))."""
        self.publish(Event(type=event_type, timestamp_ns=timestamp_ns, source=source, payload=payload))
