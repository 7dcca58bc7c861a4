"""PivotZoneStrategy — wires the pivot, zone, entry, risk and order components
to the two event channels.

Coarse bar, per bar:
  1. Warm-up gate (bars_required_to_trade)
  2. Day/week roll (cancels resting limits on a new day)
  3. Pivot tracking
  4. Bar-close entry evaluation (or bracket polling)
  5. Zone invalidation, then support/resistance line state
  6. Limit-chase sync (after invalidation)

Fine price, per event:
  1. Flat-with-exits reconciliation
  2. Tick reversal-distance entry evaluation
  3. Breakeven / trailing stop management
"""

from __future__ import annotations

import logging
from datetime import datetime

import pytz

from pivot_matrix.core.types import (
    ConfirmationProtocol,
    EventType,
    PivotKind,
    StrategyStage,
    TradeDirection,
)
from pivot_matrix.core.data_types import Bar, EntrySignal, Event, OrderUpdate, PriceTick
from pivot_matrix.core.event_bus import EventBus
from pivot_matrix.config.settings import StrategySettings
from pivot_matrix.engine.context import StrategyContext
from pivot_matrix.execution.bracket_delegate import BracketDelegate
from pivot_matrix.execution.order_lifecycle import OrderLifecycleController
from pivot_matrix.risk.loss_ledger import LossLedger
from pivot_matrix.risk.position_risk_manager import PositionRiskManager
from pivot_matrix.strategy.entry_signal_engine import EntrySignalEngine
from pivot_matrix.structure.pivot_tracker import PivotTracker
from pivot_matrix.structure.zone_monitor import ZoneMonitor

logger = logging.getLogger(__name__)


class PivotZoneStrategy:
    def __init__(
        self,
        settings: StrategySettings,
        broker,
        event_bus: EventBus | None = None,
        bracket_service=None,
    ) -> None:
        self._context = StrategyContext()
        self._context.configure(settings)
        self._settings = settings
        self._broker = broker
        self._event_bus = event_bus or EventBus()
        self._tz = pytz.timezone(settings.timezone)

        self.tracker = PivotTracker(settings.deviation_points)
        self.zones = ZoneMonitor(settings.zone_above_points, settings.zone_below_points)
        self.engine = EntrySignalEngine(
            self.zones,
            protocol=settings.protocol,
            reversal_distance_points=settings.reversal_distance_points,
            trading_start=settings.start_time,
            trading_end=settings.end_time,
        )
        self.ledger = LossLedger(
            settings.daily_max_loss_points,
            settings.weekly_max_loss_points,
            event_bus=self._event_bus,
        )
        self.risk = PositionRiskManager(
            self.ledger,
            stop_loss_points=settings.stop_loss_points,
            profit_target_points=settings.profit_target_points,
            breakeven_points=settings.breakeven_points,
            trailing_stop_points=settings.trailing_stop_points,
            tick_size=settings.tick_size,
            event_bus=self._event_bus,
        )
        self.orders = OrderLifecycleController(broker, self.risk, self.zones, self._event_bus)

        self.bracket: BracketDelegate | None = None
        if settings.uses_bracket_delegate:
            if bracket_service is None:
                raise ValueError("bracket_template is set in live mode but no bracket service was given")
            self.bracket = BracketDelegate(bracket_service, settings.bracket_template)

        self._event_bus.subscribe(EventType.TRADING_HALTED, self._on_halted)

        for component in (self.tracker, self.zones, self.engine, self.ledger, self.risk, self.orders):
            self._context.add_reset_hook(component.reset)
        if self.bracket is not None:
            self._context.add_reset_hook(self.bracket.reset)
        self._context.add_reset_hook(self._reset_state)
        self._context.add_teardown_hook(self._teardown)
        self._reset_state()

    @classmethod
    def from_config(cls, config, broker, event_bus: EventBus | None = None,
                    bracket_service=None) -> PivotZoneStrategy:
        return cls(StrategySettings.from_config(config), broker, event_bus, bracket_service)

    def _reset_state(self) -> None:
        self._last_bar: Bar | None = None
        self._signals: list[EntrySignal] = []
        self._halts: list[dict] = []
        self._bars_seen = 0

    # ── Properties ──

    @property
    def settings(self) -> StrategySettings:
        return self._settings

    @property
    def context(self) -> StrategyContext:
        return self._context

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def signals(self) -> list[EntrySignal]:
        return list(self._signals)

    @property
    def trades(self) -> list[dict]:
        return self.orders.trades

    @property
    def halts(self) -> list[dict]:
        return list(self._halts)

    @property
    def last_bar(self) -> Bar | None:
        return self._last_bar

    @property
    def bars_seen(self) -> int:
        return self._bars_seen

    # ── Lifecycle ──

    def on_start(self) -> None:
        if self._context.stage == StrategyStage.STOPPED:
            self._context.configure(self._settings)
        self._context.start()

    def on_stop(self) -> None:
        self._context.stop()

    def _teardown(self) -> None:
        self.orders.cancel_all()
        logger.info(
            "Run summary: %d pivots, %d signals, %d trades, daily %.2f, weekly %.2f",
            len(self.tracker.pivots), len(self._signals), len(self.orders.trades),
            self.ledger.daily_pnl_points, self.ledger.weekly_pnl_points,
        )

    # ── Coarse channel ──

    def on_bar(self, bar: Bar) -> None:
        self._context.require_running()
        self._bars_seen += 1
        if bar.index < self._settings.bars_required_to_trade:
            return

        self._last_bar = bar
        local_dt = self._timestamp_to_datetime(bar.timestamp_ns)

        new_day, _ = self.ledger.roll(local_dt.date(), bar.timestamp_ns)
        if new_day:
            self.orders.cancel_limits("day rollover")

        pivot = self.tracker.update(bar)
        if pivot is not None:
            self.zones.add_pivot(pivot)
            self._event_bus.emit(EventType.PIVOT_CONFIRMED, bar.timestamp_ns, "PivotZoneStrategy",
                                 kind=pivot.kind.name, price=pivot.price,
                                 extremum_index=pivot.extremum_index,
                                 detected_index=pivot.detected_index)

        if self.bracket is not None:
            self.bracket.poll()

        if self.engine.protocol == ConfirmationProtocol.BAR_CLOSE:
            allowed, reason = self._entry_gate(local_dt)
            if allowed:
                signal = self.engine.evaluate_bar(bar)
                if signal is not None:
                    self._act_on_signal(signal)
            else:
                logger.debug("Bar %d entry check skipped: %s", bar.index, reason)

        newly_left, removed = self.zones.invalidate(bar)
        for level in newly_left:
            self._event_bus.emit(EventType.ZONE_LEFT, bar.timestamp_ns, "ZoneMonitor",
                                 kind=level.kind.name, price=level.price, bar_index=bar.index)
        for level in removed:
            self.orders.cancel_limits_for(level.kind, level.price)
            self._event_bus.emit(EventType.ZONE_INVALIDATED, bar.timestamp_ns, "ZoneMonitor",
                                 kind=level.kind.name, price=level.price, bar_index=bar.index)

        self.zones.update_lines(bar)

        if self.engine.protocol == ConfirmationProtocol.LIMIT_CHASE:
            self._chase_limits(bar, local_dt)

    def _chase_limits(self, bar: Bar, local_dt: datetime) -> None:
        allowed, reason = self._entry_gate(local_dt)
        if not allowed:
            self.orders.cancel_limits(reason)
            return
        targets = self.engine.limit_targets(bar.close, bar.index, bar.timestamp_ns)
        for direction in (TradeDirection.SHORT, TradeDirection.LONG):
            self.orders.sync_limit(targets[direction], direction, self._settings.quantity)

    # ── Fine channel ──

    def on_tick(self, tick: PriceTick) -> None:
        self._context.require_running()
        if self._last_bar is None:
            return

        position = self._broker.position()
        self.orders.reconcile(position)

        if self.bracket is not None:
            self.bracket.poll()

        if self.engine.protocol == ConfirmationProtocol.TICK_REVERSAL:
            local_dt = self._timestamp_to_datetime(self._last_bar.timestamp_ns)
            allowed, _ = self._entry_gate(local_dt)
            if allowed:
                signal = self.engine.evaluate_tick(tick.price, tick.timestamp_ns, self._last_bar.index)
                if signal is not None:
                    self._act_on_signal(signal)

        if self.risk.trade is not None and not position.is_flat:
            for action in self.risk.on_price(tick.price, tick.timestamp_ns):
                self.orders.modify_stop(action["new_stop"])

    # ── Order channel ──

    def on_order_update(self, update: OrderUpdate) -> None:
        if self._context.stage == StrategyStage.CREATED:
            raise RuntimeError("Order update before start()")
        self.orders.on_order_update(update)

    # ── Internals ──

    def _entry_gate(self, local_dt: datetime) -> tuple[bool, str]:
        entry_outstanding = self.orders.has_entry_outstanding
        if self.bracket is not None:
            entry_outstanding = entry_outstanding or self.bracket.is_busy
        position_flat = self._broker.position().is_flat and self.risk.trade is None
        return self.engine.entry_allowed(
            local_dt.time(),
            position_flat=position_flat,
            entry_outstanding=entry_outstanding,
            reconciling=self.orders.reconciling,
            halted=self.ledger.is_halted,
        )

    def _act_on_signal(self, signal: EntrySignal) -> None:
        kind = PivotKind.HIGH if signal.direction == TradeDirection.SHORT else PivotKind.LOW
        self.zones.mark_traded(kind, signal.pivot_price)
        self._signals.append(signal)
        self._event_bus.emit(EventType.ENTRY_SIGNAL, signal.timestamp_ns, "EntrySignalEngine",
                             direction=signal.direction.name, pivot_price=signal.pivot_price,
                             entry_price=signal.entry_price, protocol=signal.protocol.value,
                             bar_index=signal.bar_index)
        logger.info("%s signal (%s) at %.2f off pivot %.2f",
                    signal.direction.name, signal.protocol.value, signal.entry_price, signal.pivot_price)

        if self.bracket is not None:
            self.bracket.submit(signal.direction, self._settings.quantity, signal.entry_price)
        else:
            self.orders.submit_entry(signal, self._settings.quantity)

    def _on_halted(self, event: Event) -> None:
        self._halts.append({"timestamp_ns": event.timestamp_ns, **event.payload})

    def _timestamp_to_datetime(self, timestamp_ns: int) -> datetime:
        """Convert nanosecond UTC timestamp to session-local naive datetime."""
        utc_dt = datetime.fromtimestamp(timestamp_ns / 1_000_000_000, tz=pytz.utc)
        return utc_dt.astimezone(self._tz).replace(tzinfo=None)
