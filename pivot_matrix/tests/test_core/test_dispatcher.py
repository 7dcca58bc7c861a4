"""Tests for EventDispatcher — FIFO order and order-update draining."""

from pivot_matrix.core.dispatcher import Channel, EventDispatcher
from pivot_matrix.core.types import OrderState
from pivot_matrix.core.data_types import Bar, OrderUpdate, PriceTick


class RecordingConsumer:
    def __init__(self):
        self.calls = []

    def on_bar(self, bar):
        self.calls.append(("bar", bar.index))

    def on_tick(self, tick):
        self.calls.append(("tick", tick.price))

    def on_order_update(self, update):
        self.calls.append(("order", update.ref))


class FakeSimulator:
    def __init__(self):
        self.prices = []
        self.pending = []

    def on_bar(self, bar):
        self.prices.append(bar.close)

    def on_price(self, price, timestamp_ns):
        self.prices.append(price)
        if price > 100:
            self.pending.append(OrderUpdate(f"fill@{price}", OrderState.FILLED, price, 1))

    def drain_updates(self):
        updates, self.pending = self.pending, []
        return updates


def make_bar(index, close=100.0):
    return Bar(index=index, timestamp_ns=index, open=close, high=close, low=close, close=close)


class TestEventDispatcher:
    def test_fifo_across_channels(self):
        consumer = RecordingConsumer()
        d = EventDispatcher(consumer)
        d.push_tick(PriceTick(0, 1.0))
        d.push_bar(make_bar(0))
        d.push_order_update(OrderUpdate("A", OrderState.CANCELLED))
        d.push_tick(PriceTick(1, 2.0))
        assert d.run_pending() == 4
        assert consumer.calls == [("tick", 1.0), ("bar", 0), ("order", "A"), ("tick", 2.0)]

    def test_simulator_sees_price_first_and_updates_drain_before_tick(self):
        consumer = RecordingConsumer()
        sim = FakeSimulator()
        d = EventDispatcher(consumer, sim)
        d.dispatch_tick(PriceTick(0, 101.0))
        assert sim.prices == [101.0]
        assert consumer.calls == [("order", "fill@101.0"), ("tick", 101.0)]

    def test_processed_counts(self):
        consumer = RecordingConsumer()
        d = EventDispatcher(consumer, FakeSimulator())
        d.dispatch_bar(make_bar(0))
        d.dispatch_tick(PriceTick(1, 101.0))
        counts = d.processed
        assert counts[Channel.COARSE] == 1
        assert counts[Channel.FINE] == 1
        assert counts[Channel.ORDER] == 1
