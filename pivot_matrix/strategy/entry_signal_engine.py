"""EntrySignalEngine — decides when a revisited pivot zone becomes an entry.

Three confirmation protocols, one active per run:
  BAR_CLOSE      bar range touches the zone and the bar closes reversed
  TICK_REVERSAL  fine-stream retrace of reversal_distance from the in-zone extreme
  LIMIT_CHASE    one resting limit per side at the nearest untraded pivot

The engine reads ZoneMonitor state but never mutates pivot levels; the caller
marks pivots traded once it acts on a signal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import time

from pivot_matrix.core.types import (
    ConfirmationProtocol,
    OrderType,
    PivotKind,
    TradeDirection,
)
from pivot_matrix.core.data_types import Bar, EntrySignal
from pivot_matrix.structure.zone_monitor import PivotLevel, ZoneMonitor

logger = logging.getLogger(__name__)


@dataclass
class ZoneTracker:
    """Per-side tick tracking state, shared by every pivot on that side."""

    in_zone: bool = False
    extremum: float = 0.0

    def reset(self) -> None:
        self.in_zone = False
        self.extremum = 0.0


class EntrySignalEngine:
    def __init__(
        self,
        zone_monitor: ZoneMonitor,
        protocol: ConfirmationProtocol = ConfirmationProtocol.BAR_CLOSE,
        reversal_distance_points: float = 0.0,
        trading_start: time = time(0, 0),
        trading_end: time = time(23, 59),
    ) -> None:
        if protocol == ConfirmationProtocol.TICK_REVERSAL and reversal_distance_points <= 0:
            raise ValueError("tick reversal protocol needs reversal_distance_points > 0")
        self._zones = zone_monitor
        self._protocol = protocol
        self._reversal_distance = reversal_distance_points
        self._start = trading_start
        self._end = trading_end
        self._high_tracker = ZoneTracker()
        self._low_tracker = ZoneTracker()

    @property
    def protocol(self) -> ConfirmationProtocol:
        return self._protocol

    @property
    def high_tracker(self) -> ZoneTracker:
        return self._high_tracker

    @property
    def low_tracker(self) -> ZoneTracker:
        return self._low_tracker

    def reset(self) -> None:
        self._high_tracker.reset()
        self._low_tracker.reset()

    # ── Gates ──

    def in_trading_window(self, local_time: time) -> bool:
        """Inclusive time-of-day window."""
        return self._start <= local_time <= self._end

    def entry_allowed(
        self,
        local_time: time,
        position_flat: bool,
        entry_outstanding: bool = False,
        reconciling: bool = False,
        halted: bool = False,
    ) -> tuple[bool, str]:
        """Common gate for every protocol. Returns (allowed, reason)."""
        if not self.in_trading_window(local_time):
            return False, f"outside trading window ({local_time})"
        if reconciling:
            return False, "flat-to-flat reconciliation pending"
        if halted:
            return False, "loss halt active"
        if not position_flat:
            return False, "position open"
        if entry_outstanding:
            return False, "entry order outstanding"
        return True, "ok"

    # ── BAR_CLOSE ──

    def evaluate_bar(self, bar: Bar) -> EntrySignal | None:
        """First qualifying pivot fires; highs are scanned before lows."""
        if self._protocol != ConfirmationProtocol.BAR_CLOSE:
            return None

        for level in self._zones.eligible(PivotKind.HIGH, bar.index):
            if level.contains(bar.high) and bar.is_bearish:
                return self._market_signal(TradeDirection.SHORT, level, bar.close,
                                           bar.index, bar.timestamp_ns)

        for level in self._zones.eligible(PivotKind.LOW, bar.index):
            if level.contains(bar.low) and bar.is_bullish:
                return self._market_signal(TradeDirection.LONG, level, bar.close,
                                           bar.index, bar.timestamp_ns)
        return None

    # ── TICK_REVERSAL ──

    def evaluate_tick(self, price: float, timestamp_ns: int, bar_index: int) -> EntrySignal | None:
        """Advance the per-side trackers with one fine price.

        ``bar_index`` is the last coarse bar index; activation is judged on it.
        """
        if self._protocol != ConfirmationProtocol.TICK_REVERSAL:
            return None

        tracker = self._high_tracker
        for level in self._zones.eligible(PivotKind.HIGH, bar_index):
            if level.contains(price) and not tracker.in_zone:
                tracker.in_zone = True
                tracker.extremum = price
            if tracker.in_zone and price <= level.zone_top:
                if price > tracker.extremum:
                    tracker.extremum = price
                elif tracker.extremum - price >= self._reversal_distance:
                    logger.info("Short reversal: %.2f -> %.2f in zone of %.2f",
                                tracker.extremum, price, level.price)
                    self.reset()
                    return self._market_signal(TradeDirection.SHORT, level, price,
                                               bar_index, timestamp_ns)
            elif tracker.in_zone and price > level.zone_top:
                tracker.reset()

        tracker = self._low_tracker
        for level in self._zones.eligible(PivotKind.LOW, bar_index):
            if level.contains(price) and not tracker.in_zone:
                tracker.in_zone = True
                tracker.extremum = price
            if tracker.in_zone and price >= level.zone_bottom:
                if price < tracker.extremum:
                    tracker.extremum = price
                elif price - tracker.extremum >= self._reversal_distance:
                    logger.info("Long reversal: %.2f -> %.2f in zone of %.2f",
                                tracker.extremum, price, level.price)
                    self.reset()
                    return self._market_signal(TradeDirection.LONG, level, price,
                                               bar_index, timestamp_ns)
            elif tracker.in_zone and price < level.zone_bottom:
                tracker.reset()

        return None

    # ── LIMIT_CHASE ──

    def limit_targets(
        self,
        current_price: float,
        bar_index: int,
        timestamp_ns: int = 0,
    ) -> dict[TradeDirection, EntrySignal | None]:
        """Desired resting limit per side (None = nothing should rest)."""
        if self._protocol != ConfirmationProtocol.LIMIT_CHASE:
            return {TradeDirection.SHORT: None, TradeDirection.LONG: None}

        targets: dict[TradeDirection, EntrySignal | None] = {}
        for direction, kind in ((TradeDirection.SHORT, PivotKind.HIGH),
                                (TradeDirection.LONG, PivotKind.LOW)):
            level = self._zones.nearest_untraded(kind, current_price, bar_index)
            if level is None:
                targets[direction] = None
                continue
            limit = self._zones.limit_price(level)
            targets[direction] = EntrySignal(
                direction=direction,
                pivot_price=level.price,
                entry_price=limit,
                order_type=OrderType.LIMIT,
                bar_index=bar_index,
                timestamp_ns=timestamp_ns,
                protocol=self._protocol,
                limit_price=limit,
            )
        return targets

    def _market_signal(
        self,
        direction: TradeDirection,
        level: PivotLevel,
        price: float,
        bar_index: int,
        timestamp_ns: int,
    ) -> EntrySignal:
        return EntrySignal(
            direction=direction,
            pivot_price=level.price,
            entry_price=price,
            order_type=OrderType.MARKET,
            bar_index=bar_index,
            timestamp_ns=timestamp_ns,
            protocol=self._protocol,
        )
