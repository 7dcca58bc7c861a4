"""OrderLifecycleController — the only owner of live order handles.

One slot per OrderKind, each holding at most one handle. A slot's current
handle ref is the single source of truth: notifications for any other ref are
stale (cancel/fill races, replaced limits) and are ignored.

Slot lifecycle: None -> SUBMITTED -> {FILLED | CANCELLED | REJECTED} -> None.
Nothing is retried after a cancel or reject.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pivot_matrix.core.types import (
    EventType,
    OrderAction,
    OrderKind,
    OrderState,
    OrderType,
    PivotKind,
    TradeDirection,
)
from pivot_matrix.core.data_types import EntrySignal, OrderUpdate, PositionSnapshot
from pivot_matrix.core.price_set import prices_match
from pivot_matrix.risk.position_risk_manager import PositionRiskManager
from pivot_matrix.structure.zone_monitor import ZoneMonitor

logger = logging.getLogger(__name__)

ENTRY_KINDS = (OrderKind.ENTRY, OrderKind.PENDING_LIMIT_LONG, OrderKind.PENDING_LIMIT_SHORT)
EXIT_KINDS = (OrderKind.STOP, OrderKind.TARGET)


@dataclass
class OrderHandle:
    ref: str
    kind: OrderKind
    direction: TradeDirection
    order_type: OrderType
    quantity: int
    price: float | None = None
    state: OrderState = OrderState.SUBMITTED
    pivot_price: float | None = None
    submitted_ns: int = 0


def _entry_action(direction: TradeDirection) -> OrderAction:
    return OrderAction.BUY if direction == TradeDirection.LONG else OrderAction.SELL


def _exit_action(direction: TradeDirection) -> OrderAction:
    return OrderAction.SELL if direction == TradeDirection.LONG else OrderAction.BUY


def _limit_kind(direction: TradeDirection) -> OrderKind:
    if direction == TradeDirection.LONG:
        return OrderKind.PENDING_LIMIT_LONG
    return OrderKind.PENDING_LIMIT_SHORT


def _pivot_kind(direction: TradeDirection) -> PivotKind:
    return PivotKind.LOW if direction == TradeDirection.LONG else PivotKind.HIGH


class OrderLifecycleController:
    def __init__(
        self,
        broker,
        risk_manager: PositionRiskManager,
        zone_monitor: ZoneMonitor,
        event_bus=None,
    ) -> None:
        self._broker = broker
        self._risk = risk_manager
        self._zones = zone_monitor
        self._event_bus = event_bus
        self.reset()

    def reset(self) -> None:
        self._slots: dict[OrderKind, OrderHandle | None] = {kind: None for kind in OrderKind}
        self._pending_cancels: set[str] = set()
        self._stale_count = 0
        self._trades: list[dict] = []

    # ── State queries ──

    def handle(self, kind: OrderKind) -> OrderHandle | None:
        return self._slots[kind]

    @property
    def has_entry_outstanding(self) -> bool:
        return self._slots[OrderKind.ENTRY] is not None

    @property
    def has_exit_orders(self) -> bool:
        return any(self._slots[k] is not None for k in EXIT_KINDS)

    @property
    def reconciling(self) -> bool:
        """True while forced cancels from reconciliation are unacknowledged."""
        return bool(self._pending_cancels)

    @property
    def stale_count(self) -> int:
        return self._stale_count

    @property
    def trades(self) -> list[dict]:
        return list(self._trades)

    # ── Entry submission ──

    def submit_entry(self, signal: EntrySignal, quantity: int) -> OrderHandle | None:
        """Market entry for a confirmed signal. One outstanding entry at a time."""
        if self.has_entry_outstanding:
            logger.debug("Entry for %.2f skipped: entry already outstanding", signal.pivot_price)
            return None
        ref = self._broker.submit(_entry_action(signal.direction), OrderType.MARKET, quantity,
                                  None, label="Entry")
        handle = OrderHandle(ref, OrderKind.ENTRY, signal.direction, OrderType.MARKET, quantity,
                             signal.entry_price, pivot_price=signal.pivot_price,
                             submitted_ns=signal.timestamp_ns)
        self._slots[OrderKind.ENTRY] = handle
        logger.info("%s entry submitted (%s) for pivot %.2f @ ~%.2f",
                    signal.direction.name, ref, signal.pivot_price, signal.entry_price)
        return handle

    def sync_limit(self, signal: EntrySignal | None, direction: TradeDirection, quantity: int) -> None:
        """Make the resting limit on one side match the desired signal.

        None keeps whatever rests; a different pivot cancels and replaces.
        """
        kind = _limit_kind(direction)
        current = self._slots[kind]
        if signal is None:
            return
        if current is not None and prices_match(current.pivot_price, signal.pivot_price):
            return
        if current is not None:
            logger.info("Replacing %s limit at pivot %.2f with closer pivot %.2f",
                        direction.name, current.pivot_price, signal.pivot_price)
            self.cancel(kind)
        ref = self._broker.submit(_entry_action(direction), OrderType.LIMIT, quantity,
                                  signal.limit_price, label=kind.name)
        self._slots[kind] = OrderHandle(ref, kind, direction, OrderType.LIMIT, quantity,
                                        signal.limit_price, pivot_price=signal.pivot_price,
                                        submitted_ns=signal.timestamp_ns)
        logger.info("%s limit resting @ %.2f for pivot %.2f (%s)",
                    direction.name, signal.limit_price, signal.pivot_price, ref)

    def cancel(self, kind: OrderKind) -> None:
        handle = self._slots[kind]
        if handle is None:
            return
        self._slots[kind] = None
        self._broker.cancel(handle.ref)

    def cancel_limits(self, reason: str = "") -> None:
        for kind in (OrderKind.PENDING_LIMIT_LONG, OrderKind.PENDING_LIMIT_SHORT):
            if self._slots[kind] is not None:
                logger.info("Cancelling %s (%s)", kind.name, reason or "requested")
                self.cancel(kind)

    def cancel_limits_for(self, pivot_kind: PivotKind, pivot_price: float) -> None:
        kind = OrderKind.PENDING_LIMIT_SHORT if pivot_kind == PivotKind.HIGH else OrderKind.PENDING_LIMIT_LONG
        handle = self._slots[kind]
        if handle is not None and prices_match(handle.pivot_price, pivot_price):
            logger.info("Cancelling %s: pivot %.2f invalidated", kind.name, pivot_price)
            self.cancel(kind)

    def cancel_all(self) -> None:
        for kind in OrderKind:
            self.cancel(kind)

    # ── Exit management ──

    def modify_stop(self, new_price: float) -> None:
        handle = self._slots[OrderKind.STOP]
        if handle is None:
            return
        handle.price = new_price
        self._broker.modify(handle.ref, new_price)

    def reconcile(self, position: PositionSnapshot) -> bool:
        """Flat position with live exits or a managed trade means the host closed us out.

        Live stop/target orders are force-cancelled and the trade is dropped.
        """
        if not position.is_flat:
            return False
        if not self.has_exit_orders:
            if self._risk.trade is None:
                return False
            logger.warning("Flat with a managed trade and no exit orders: clearing trade")
            self._risk.clear_trade()
            return True
        logger.warning("Flat with live exit orders: force-cancelling stop/target")
        for kind in EXIT_KINDS:
            handle = self._slots[kind]
            if handle is not None:
                self._pending_cancels.add(handle.ref)
                self.cancel(kind)
        self._risk.clear_trade()
        return True

    # ── Notifications ──

    def on_order_update(self, update: OrderUpdate) -> None:
        if update.ref in self._pending_cancels and update.state != OrderState.SUBMITTED:
            self._pending_cancels.discard(update.ref)

        kind = self._slot_for(update.ref)
        if kind is None:
            if update.state == OrderState.FILLED:
                self._stale_count += 1
                logger.warning("Fill for untracked order %s @ %.2f ignored",
                               update.ref, update.avg_fill_price)
            else:
                logger.debug("Stale %s for %s ignored", update.state.value, update.ref)
            return

        handle = self._slots[kind]
        handle.state = update.state
        if update.state == OrderState.SUBMITTED:
            return

        if update.state == OrderState.FILLED:
            if kind in ENTRY_KINDS:
                self._on_entry_filled(kind, handle, update)
            else:
                self._on_exit_filled(kind, handle, update)
            return

        # CANCELLED / REJECTED
        self._slots[kind] = None
        logger.info("%s %s (%s)", kind.name, update.state.value, update.ref)
        if kind in EXIT_KINDS and not self.has_exit_orders and self._risk.trade is not None:
            self._risk.trade.reset_stop_management()

    def _on_entry_filled(self, kind: OrderKind, handle: OrderHandle, update: OrderUpdate) -> None:
        self._slots[kind] = None
        pivot_price = handle.pivot_price

        if kind != OrderKind.ENTRY:
            # Resolve the traded pivot before the other side's limit goes away.
            self._zones.mark_traded(_pivot_kind(handle.direction), pivot_price)
            self.cancel_limits("opposite limit filled")

        qty = update.filled_qty or handle.quantity
        trade = self._risk.open_trade(handle.direction, update.avg_fill_price, qty,
                                      update.timestamp_ns, pivot_price=pivot_price)
        self._emit(EventType.ORDER_FILLED, update.timestamp_ns, kind=kind.name,
                   direction=handle.direction.name, price=update.avg_fill_price,
                   quantity=qty, pivot_price=pivot_price)

        exit_action = _exit_action(handle.direction)
        stop_ref = self._broker.submit(exit_action, OrderType.STOP_MARKET, qty,
                                       trade.stop_price, label="StopLoss")
        self._slots[OrderKind.STOP] = OrderHandle(stop_ref, OrderKind.STOP, handle.direction,
                                                  OrderType.STOP_MARKET, qty, trade.stop_price)
        target_ref = self._broker.submit(exit_action, OrderType.LIMIT, qty,
                                         trade.target_price, label="ProfitTarget")
        self._slots[OrderKind.TARGET] = OrderHandle(target_ref, OrderKind.TARGET, handle.direction,
                                                    OrderType.LIMIT, qty, trade.target_price)

    def _on_exit_filled(self, kind: OrderKind, handle: OrderHandle, update: OrderUpdate) -> None:
        sibling = OrderKind.TARGET if kind == OrderKind.STOP else OrderKind.STOP
        self._slots[kind] = None
        self.cancel(sibling)
        reason = "stop" if kind == OrderKind.STOP else "target"
        self._emit(EventType.ORDER_FILLED, update.timestamp_ns, kind=kind.name,
                   direction=handle.direction.name, price=update.avg_fill_price,
                   quantity=update.filled_qty)
        record = self._risk.close_trade(update.avg_fill_price, update.timestamp_ns, reason)
        if record is not None:
            self._trades.append(record)

    def _slot_for(self, ref: str) -> OrderKind | None:
        for kind, handle in self._slots.items():
            if handle is not None and handle.ref == ref:
                return kind
        return None

    def _emit(self, event_type: EventType, timestamp_ns: int, **payload) -> None:
        if self._event_bus is not None:
            self._event_bus.emit(event_type, timestamp_ns, "OrderLifecycleController", **payload)
