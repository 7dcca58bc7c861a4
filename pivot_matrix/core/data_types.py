"""Frozen dataclasses for Pivot Matrix data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pivot_matrix.core.types import (
    ConfirmationProtocol,
    EventType,
    OrderState,
    OrderType,
    PivotKind,
    PositionSide,
    TradeDirection,
)


@dataclass(frozen=True)
class Bar:
    """Coarse-series bar. timestamp_ns is the bar close time (UTC)."""

    index: int
    timestamp_ns: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open


@dataclass(frozen=True)
class PriceTick:
    """Fine-series price event (trade tick or sub-second bar close)."""

    timestamp_ns: int
    price: float
    size: float = 0.0


@dataclass(frozen=True)
class Pivot:
    """Confirmed swing point. Immutable once emitted."""

    kind: PivotKind
    price: float
    extremum_index: int  # bar that printed the extreme
    detected_index: int  # bar on which the deviation rule confirmed it


@dataclass(frozen=True)
class PositionSnapshot:
    """Broker-owned position, read-only to the strategy."""

    side: PositionSide = PositionSide.FLAT
    avg_price: float = 0.0
    quantity: int = 0

    @property
    def is_flat(self) -> bool:
        return self.side == PositionSide.FLAT


@dataclass(frozen=True)
class OrderUpdate:
    """Order-state notification delivered by the broker."""

    ref: str
    state: OrderState
    avg_fill_price: float = 0.0
    filled_qty: int = 0
    timestamp_ns: int = 0


@dataclass(frozen=True)
class EntrySignal:
    """Entry decision produced by EntrySignalEngine."""

    direction: TradeDirection
    pivot_price: float
    entry_price: float
    order_type: OrderType
    bar_index: int
    timestamp_ns: int
    protocol: ConfirmationProtocol
    limit_price: float | None = None


@dataclass(frozen=True)
class BracketResult:
    """Outcome of a delegated bracket-strategy creation request."""

    strategy_id: str
    success: bool
    error: str = ""


@dataclass(frozen=True)
class Event:
    """Event bus message."""

    type: EventType
    timestamp_ns: int
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
