"""Single-threaded dispatcher for the coarse bar channel, the fine price channel
and broker order-update notifications.

Events are processed strictly in the order the caller pushed them. After every
market event the broker's queued order updates are drained and delivered, so
fire-and-forget order actions resolve before the next market event.
"""

from __future__ import annotations

import logging
from collections import deque
from enum import Enum, auto
from typing import Protocol

from pivot_matrix.core.data_types import Bar, OrderUpdate, PriceTick

logger = logging.getLogger(__name__)


class Channel(Enum):
    COARSE = auto()
    FINE = auto()
    ORDER = auto()


class EventConsumer(Protocol):
    def on_bar(self, bar: Bar) -> None: ...
    def on_tick(self, tick: PriceTick) -> None: ...
    def on_order_update(self, update: OrderUpdate) -> None: ...


class MarketSimulator(Protocol):
    def on_bar(self, bar: Bar) -> None: ...
    def on_price(self, price: float, timestamp_ns: int) -> None: ...
    def drain_updates(self) -> list[OrderUpdate]: ...


class EventDispatcher:
    """FIFO of tagged events feeding one consumer.

    ``simulator`` is optional: hosts that deliver their own order updates push
    them with push_order_update() instead.
    """

    def __init__(self, consumer: EventConsumer, simulator: MarketSimulator | None = None) -> None:
        self._consumer = consumer
        self._simulator = simulator
        self._queue: deque[tuple[Channel, object]] = deque()
        self._processed = {Channel.COARSE: 0, Channel.FINE: 0, Channel.ORDER: 0}

    @property
    def processed(self) -> dict[Channel, int]:
        return dict(self._processed)

    def push_bar(self, bar: Bar) -> None:
        self._queue.append((Channel.COARSE, bar))

    def push_tick(self, tick: PriceTick) -> None:
        self._queue.append((Channel.FINE, tick))

    def push_order_update(self, update: OrderUpdate) -> None:
        self._queue.append((Channel.ORDER, update))

    def run_pending(self) -> int:
        """Process every queued event. Returns the number processed."""
        count = 0
        while self._queue:
            channel, item = self._queue.popleft()
            self._dispatch(channel, item)
            count += 1
        return count

    def dispatch_bar(self, bar: Bar) -> None:
        self.push_bar(bar)
        self.run_pending()

    def dispatch_tick(self, tick: PriceTick) -> None:
        self.push_tick(tick)
        self.run_pending()

    def _dispatch(self, channel: Channel, item) -> None:
        self._processed[channel] += 1
        if channel == Channel.COARSE:
            if self._simulator is not None:
                self._simulator.on_bar(item)
            self._consumer.on_bar(item)
        elif channel == Channel.FINE:
            if self._simulator is not None:
                # Resting orders see the price before the strategy does.
                self._simulator.on_price(item.price, item.timestamp_ns)
                self._drain()
            self._consumer.on_tick(item)
        else:
            self._consumer.on_order_update(item)
        self._drain()

    def _drain(self) -> None:
        if self._simulator is None:
            return
        # Handling one update may trigger further order actions.
        while True:
            updates = self._simulator.drain_updates()
            if not updates:
                return
            for update in updates:
                self._processed[Channel.ORDER] += 1
                self._consumer.on_order_update(update)
