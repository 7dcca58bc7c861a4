"""Broker interface and the in-process PaperBroker used for backtests.

Order actions are fire-and-forget: submit/cancel/modify return immediately and
every outcome is queued as an OrderUpdate, delivered later by the dispatcher.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Protocol

from pivot_matrix.core.types import OrderAction, OrderState, OrderType, PositionSide
from pivot_matrix.core.data_types import Bar, OrderUpdate, PositionSnapshot
from pivot_matrix.execution.fill_engine import PessimisticFillEngine

logger = logging.getLogger(__name__)


class Broker(Protocol):
    def submit(
        self,
        action: OrderAction,
        order_type: OrderType,
        quantity: int,
        price: float | None = None,
        label: str = "",
    ) -> str: ...

    def cancel(self, ref: str) -> None: ...

    def modify(self, ref: str, new_price: float) -> None: ...

    def position(self) -> PositionSnapshot: ...


@dataclass
class PaperOrder:
    ref: str
    action: OrderAction
    order_type: OrderType
    quantity: int
    price: float | None
    label: str = ""

    @property
    def is_buy(self) -> bool:
        return self.action == OrderAction.BUY


class PaperBroker:
    """Single-instrument simulated broker driven by fine price events."""

    def __init__(self, fill_engine: PessimisticFillEngine | None = None) -> None:
        self._fill_engine = fill_engine or PessimisticFillEngine(level=1)
        self._ids = itertools.count(1)
        self._working: dict[str, PaperOrder] = {}
        self._updates: list[OrderUpdate] = []
        self._fills: list[dict] = []
        self._net_qty: int = 0
        self._avg_price: float = 0.0
        self._last_price: float | None = None
        self._last_ts: int = 0

    @property
    def working_orders(self) -> dict[str, PaperOrder]:
        return dict(self._working)

    @property
    def fills(self) -> list[dict]:
        return list(self._fills)

    @property
    def last_price(self) -> float | None:
        return self._last_price

    # ── Broker protocol ──

    def submit(
        self,
        action: OrderAction,
        order_type: OrderType,
        quantity: int,
        price: float | None = None,
        label: str = "",
    ) -> str:
        ref = f"P{next(self._ids)}"
        order = PaperOrder(ref, action, order_type, quantity, price, label)
        self._queue(ref, OrderState.SUBMITTED)

        if order_type == OrderType.MARKET:
            if self._last_price is None:
                logger.warning("Rejecting %s %s: no market price yet", label, ref)
                self._queue(ref, OrderState.REJECTED)
                return ref
            fill = self._fill_engine.apply_slippage(self._last_price, order.is_buy)
            self._fill(order, fill)
            return ref

        if price is None:
            logger.warning("Rejecting %s %s: %s order without price", label, ref, order_type.value)
            self._queue(ref, OrderState.REJECTED)
            return ref

        self._working[ref] = order
        logger.debug("Working %s %s %s x%d @ %.2f", ref, label, action.value, quantity, price)
        return ref

    def cancel(self, ref: str) -> None:
        order = self._working.pop(ref, None)
        if order is None:
            logger.debug("Cancel for %s ignored: not working", ref)
            return
        self._queue(ref, OrderState.CANCELLED)

    def modify(self, ref: str, new_price: float) -> None:
        order = self._working.get(ref)
        if order is None:
            logger.debug("Modify for %s ignored: not working", ref)
            return
        order.price = new_price

    def position(self) -> PositionSnapshot:
        if self._net_qty > 0:
            return PositionSnapshot(PositionSide.LONG, self._avg_price, self._net_qty)
        if self._net_qty < 0:
            return PositionSnapshot(PositionSide.SHORT, self._avg_price, -self._net_qty)
        return PositionSnapshot()

    # ── Market simulation ──

    def on_bar(self, bar: Bar) -> None:
        self._last_price = bar.close
        self._last_ts = bar.timestamp_ns

    def on_price(self, price: float, timestamp_ns: int) -> None:
        """Match working orders against one traded price."""
        self._last_price = price
        self._last_ts = timestamp_ns
        for order in list(self._working.values()):
            if order.ref not in self._working:
                continue
            if order.order_type == OrderType.LIMIT:
                if self._fill_engine.would_fill(order.price, price, price, order.is_buy):
                    del self._working[order.ref]
                    self._fill(order, order.price)
            elif order.order_type == OrderType.STOP_MARKET:
                if self._fill_engine.stop_triggered(order.price, price, order.is_buy):
                    del self._working[order.ref]
                    base = max(order.price, price) if order.is_buy else min(order.price, price)
                    self._fill(order, self._fill_engine.apply_slippage(base, order.is_buy))

    def drain_updates(self) -> list[OrderUpdate]:
        updates, self._updates = self._updates, []
        return updates

    def reject(self, ref: str) -> None:
        """Broker-side rejection of a working order."""
        if self._working.pop(ref, None) is not None:
            self._queue(ref, OrderState.REJECTED)

    def force_flatten(self, reason: str = "session close") -> None:
        """Host-side exit that bypasses the strategy's own orders.

        Working orders are left in place; the strategy must reconcile them.
        """
        if self._net_qty == 0 or self._last_price is None:
            return
        action = OrderAction.SELL if self._net_qty > 0 else OrderAction.BUY
        order = PaperOrder(f"HOST{next(self._ids)}", action, OrderType.MARKET,
                           abs(self._net_qty), None, reason)
        logger.warning("Force flatten (%s) @ %.2f", reason, self._last_price)
        self._fill(order, self._last_price)

    def _fill(self, order: PaperOrder, price: float) -> None:
        signed = order.quantity if order.is_buy else -order.quantity
        new_qty = self._net_qty + signed
        if new_qty == 0:
            self._avg_price = 0.0
        elif self._net_qty == 0 or (self._net_qty > 0) != (new_qty > 0):
            self._avg_price = price
        elif abs(new_qty) > abs(self._net_qty):
            self._avg_price = (self._avg_price * abs(self._net_qty) + price * order.quantity) / abs(new_qty)
        self._net_qty = new_qty

        self._fills.append({
            "ref": order.ref,
            "label": order.label,
            "action": order.action.value,
            "quantity": order.quantity,
            "price": price,
            "timestamp_ns": self._last_ts,
        })
        logger.debug("Filled %s %s %s x%d @ %.2f", order.ref, order.label,
                     order.action.value, order.quantity, price)
        self._queue(order.ref, OrderState.FILLED, price, order.quantity)

    def _queue(self, ref: str, state: OrderState, price: float = 0.0, qty: int = 0) -> None:
        self._updates.append(OrderUpdate(ref, state, price, qty, self._last_ts))
