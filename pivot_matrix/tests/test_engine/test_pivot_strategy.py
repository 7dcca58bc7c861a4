"""Tests for PivotZoneStrategy driven through the dispatcher and PaperBroker."""

from concurrent.futures import Future

import pytest

from pivot_matrix.engine.pivot_strategy import PivotZoneStrategy
from pivot_matrix.execution.broker import PaperBroker
from pivot_matrix.core.dispatcher import EventDispatcher
from pivot_matrix.core.event_bus import EventBus
from pivot_matrix.core.types import (
    ConfirmationProtocol,
    EntryMode,
    EventType,
    OrderKind,
    PivotKind,
    PositionSide,
    TradeDirection,
)
from pivot_matrix.core.data_types import Bar, PriceTick

DAY_NS = 86_400_000_000_000


def to_bars(arr):
    return [
        Bar(index=i, timestamp_ns=int(r["timestamp_ns"]), open=float(r["open"]), high=float(r["high"]),
            low=float(r["low"]), close=float(r["close"]), volume=float(r["volume"]))
        for i, r in enumerate(arr)
    ]


def make_rig(settings, bracket_service=None):
    broker = PaperBroker()
    bus = EventBus()
    strategy = PivotZoneStrategy(settings, broker, bus, bracket_service=bracket_service)
    dispatcher = EventDispatcher(strategy, broker)
    strategy.on_start()
    return strategy, broker, dispatcher


def feed(dispatcher, bars):
    for bar in bars:
        dispatcher.dispatch_bar(bar)


class TestLifecycle:
    def test_bar_before_start_raises(self, settings, swing_bars):
        strategy = PivotZoneStrategy(settings, PaperBroker())
        with pytest.raises(RuntimeError):
            strategy.on_bar(to_bars(swing_bars)[0])

    def test_restart_clears_state(self, settings, swing_bars):
        strategy, _, dispatcher = make_rig(settings)
        feed(dispatcher, to_bars(swing_bars))
        assert strategy.signals
        strategy.on_stop()
        strategy.on_start()
        assert strategy.signals == []
        assert strategy.tracker.pivots == []
        assert strategy.zones.highs == []

    def test_stop_cancels_working_orders(self, settings, swing_bars):
        strategy, broker, dispatcher = make_rig(settings)
        feed(dispatcher, to_bars(swing_bars))
        assert broker.working_orders
        strategy.on_stop()
        assert broker.working_orders == {}

    def test_warm_up_bars_are_ignored(self, settings, swing_bars):
        strategy, _, dispatcher = make_rig(settings.with_overrides(bars_required_to_trade=8))
        feed(dispatcher, to_bars(swing_bars))
        assert strategy.bars_seen == 8
        assert strategy.tracker.pivots == []
        assert strategy.last_bar is None


class TestBarCloseFlow:
    def test_short_fires_on_retest(self, settings, swing_bars):
        strategy, broker, dispatcher = make_rig(settings)
        pivots = []
        strategy.event_bus.subscribe(EventType.PIVOT_CONFIRMED, lambda e: pivots.append(e.payload))
        feed(dispatcher, to_bars(swing_bars))

        assert [p["kind"] for p in pivots] == ["HIGH", "LOW"]
        [signal] = strategy.signals
        assert signal.direction == TradeDirection.SHORT
        assert signal.pivot_price == 100.0
        assert signal.bar_index == 7
        assert broker.position().side == PositionSide.SHORT
        assert strategy.risk.trade.entry_price == 98.6
        assert strategy.orders.handle(OrderKind.STOP).price == pytest.approx(108.6)

    def test_pivot_fires_only_once(self, settings, swing_bars):
        strategy, broker, dispatcher = make_rig(settings)
        bars = to_bars(swing_bars)
        feed(dispatcher, bars)
        last = bars[-1]
        dispatcher.dispatch_tick(PriceTick(last.timestamp_ns + 1, 83.0))
        assert broker.position().is_flat
        assert strategy.trades[0]["pnl_points"] == pytest.approx(15.0)

        retest = Bar(8, last.timestamp_ns + 60_000_000_000, 98.9, 99.0, 98.5, 98.6)
        dispatcher.dispatch_bar(retest)
        assert len(strategy.signals) == 1
        assert broker.position().is_flat

    def test_daily_halt_blocks_until_next_day(self, settings, swing_bars):
        strategy, broker, dispatcher = make_rig(settings.with_overrides(daily_max_loss_points=20.0))
        bars = to_bars(swing_bars)
        feed(dispatcher, bars[:7])
        strategy.ledger.record(-25.0)
        assert strategy.ledger.halted_today
        assert len(strategy.halts) == 1

        dispatcher.dispatch_bar(bars[7])
        assert strategy.signals == []

        nxt = Bar(8, bars[7].timestamp_ns + DAY_NS, 98.9, 99.0, 98.5, 98.6)
        dispatcher.dispatch_bar(nxt)
        assert not strategy.ledger.halted_today
        assert len(strategy.signals) == 1
        assert broker.position().side == PositionSide.SHORT

    def test_outside_window_blocks(self, settings, swing_bars):
        strategy, _, dispatcher = make_rig(settings.with_overrides(trading_start="10:00",
                                                                   trading_end="16:00"))
        feed(dispatcher, to_bars(swing_bars))
        assert strategy.signals == []


class TestReconciliation:
    def test_host_flatten_cancels_exits(self, settings, swing_bars):
        strategy, broker, dispatcher = make_rig(settings)
        bars = to_bars(swing_bars)
        feed(dispatcher, bars)
        broker.force_flatten()
        dispatcher.dispatch_tick(PriceTick(bars[-1].timestamp_ns + 1, 98.0))
        assert broker.working_orders == {}
        assert not strategy.orders.has_exit_orders
        assert not strategy.orders.reconciling
        assert strategy.risk.trade is None
        assert strategy.orders.stale_count == 1

    def test_exits_cancelled_before_flatten_resumes_trading(self, settings, swing_bars):
        strategy, broker, dispatcher = make_rig(settings)
        bars = to_bars(swing_bars)
        feed(dispatcher, bars)
        broker.reject(strategy.orders.handle(OrderKind.STOP).ref)
        broker.reject(strategy.orders.handle(OrderKind.TARGET).ref)
        for update in broker.drain_updates():
            strategy.on_order_update(update)
        assert not strategy.orders.has_exit_orders
        assert strategy.risk.trade is not None

        broker.force_flatten()
        ts = bars[-1].timestamp_ns
        dispatcher.dispatch_tick(PriceTick(ts + 1, 98.0))
        assert strategy.risk.trade is None
        assert not strategy.orders.reconciling

        # leave the 39 low's zone, then retest it with a bullish bar
        dispatcher.dispatch_bar(Bar(8, ts + 60_000_000_000, 46.0, 50.0, 45.0, 48.0))
        dispatcher.dispatch_bar(Bar(9, ts + 120_000_000_000, 39.5, 41.0, 38.5, 40.8))
        assert len(strategy.signals) == 2
        assert strategy.signals[-1].direction == TradeDirection.LONG
        assert broker.position().side == PositionSide.LONG


class TestTickReversalFlow:
    def test_reversal_distance_entry(self, settings, swing_bars):
        strategy, broker, dispatcher = make_rig(settings.with_overrides(reversal_distance_points=3.0))
        assert strategy.engine.protocol == ConfirmationProtocol.TICK_REVERSAL
        bars = to_bars(swing_bars)
        feed(dispatcher, bars[:7])
        ts = bars[6].timestamp_ns
        for i, price in enumerate((100.5, 101.2, 99.0)):
            dispatcher.dispatch_tick(PriceTick(ts + i + 1, price))
        assert strategy.signals == []
        dispatcher.dispatch_tick(PriceTick(ts + 10, 98.1))
        [signal] = strategy.signals
        assert signal.protocol == ConfirmationProtocol.TICK_REVERSAL
        assert strategy.risk.trade.entry_price == 98.1

    def test_ticks_before_first_bar_ignored(self, settings):
        strategy, _, dispatcher = make_rig(settings.with_overrides(reversal_distance_points=3.0))
        dispatcher.dispatch_tick(PriceTick(1, 100.0))
        assert strategy.signals == []


class TestLimitChaseFlow:
    def make(self, settings):
        return make_rig(settings.with_overrides(entry_mode=EntryMode.LIMIT_ENTRY))

    def test_limit_rests_at_nearest_pivot_and_fills(self, settings, swing_bars):
        strategy, broker, dispatcher = self.make(settings)
        bars = to_bars(swing_bars)
        feed(dispatcher, bars[:7])
        handle = strategy.orders.handle(OrderKind.PENDING_LIMIT_SHORT)
        assert handle.pivot_price == 100.0
        assert handle.price == 98.0
        assert strategy.signals == []

        dispatcher.dispatch_tick(PriceTick(bars[6].timestamp_ns + 1, 98.0))
        assert strategy.zones.is_traded(PivotKind.HIGH, 100.0)
        assert strategy.risk.trade.entry_price == 98.0
        assert strategy.orders.handle(OrderKind.PENDING_LIMIT_SHORT) is None
        assert broker.position().side == PositionSide.SHORT

    def test_gate_cancels_resting_limits(self, settings, swing_bars):
        strategy, broker, dispatcher = self.make(settings)
        bars = to_bars(swing_bars)
        feed(dispatcher, bars[:7])
        strategy.ledger.halted_today = True
        dispatcher.dispatch_bar(bars[7])
        assert strategy.orders.handle(OrderKind.PENDING_LIMIT_SHORT) is None
        assert broker.working_orders == {}


class FakeBracketService:
    def __init__(self):
        self.requests = []

    def submit_bracket(self, template, action, quantity, entry_price, order_id, strategy_id):
        self.requests.append((template, action, entry_price))
        return Future()

    def order_state(self, order_id):
        return None

    def position_side(self, strategy_id):
        return PositionSide.FLAT


class TestBracketMode:
    def test_requires_service(self, settings):
        with pytest.raises(ValueError):
            PivotZoneStrategy(settings.with_overrides(live_mode=True, bracket_template="ES"),
                              PaperBroker())

    def test_signal_goes_to_bracket_service(self, settings, swing_bars):
        service = FakeBracketService()
        strategy, broker, dispatcher = make_rig(
            settings.with_overrides(live_mode=True, bracket_template="ES"), bracket_service=service,
        )
        feed(dispatcher, to_bars(swing_bars))
        assert len(service.requests) == 1
        assert service.requests[0][2] == 98.6
        assert broker.fills == []
        assert strategy.bracket.is_busy
