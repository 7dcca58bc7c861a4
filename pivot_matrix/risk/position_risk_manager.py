"""PositionRiskManager — exit prices for the open trade and loss accounting.

On entry fill the stop and target are fixed point offsets from the average
entry price. Breakeven moves the stop one tick past entry, once per trade.
Trailing ratchets the stop by a fixed step each time price reaches the next
trigger and never loosens it.
"""

from __future__ import annotations

import logging

from pivot_matrix.core.types import EventType, TradeDirection
from pivot_matrix.risk.loss_ledger import LossLedger

logger = logging.getLogger(__name__)


class ManagedTrade:
    """Exit state for one position, from entry fill to exit fill."""

    def __init__(
        self,
        direction: TradeDirection,
        entry_price: float,
        quantity: int,
        stop_price: float,
        target_price: float,
        opened_ns: int = 0,
        pivot_price: float | None = None,
    ) -> None:
        self.direction = direction
        self.entry_price = entry_price
        self.quantity = quantity
        self.stop_price = stop_price
        self.initial_stop = stop_price
        self.target_price = target_price
        self.opened_ns = opened_ns
        self.pivot_price = pivot_price
        self.breakeven_set = False
        self.trailing_active = False
        self.next_trailing_trigger: float = 0.0

    @property
    def is_long(self) -> bool:
        return self.direction == TradeDirection.LONG

    def unrealized_points(self, price: float) -> float:
        return price - self.entry_price if self.is_long else self.entry_price - price

    def reset_stop_management(self) -> None:
        self.breakeven_set = False
        self.trailing_active = False
        self.next_trailing_trigger = 0.0


class PositionRiskManager:
    def __init__(
        self,
        ledger: LossLedger,
        stop_loss_points: float = 10.0,
        profit_target_points: float = 15.0,
        breakeven_points: float = 0.0,
        trailing_stop_points: float = 0.0,
        tick_size: float = 0.25,
        event_bus=None,
    ) -> None:
        self._ledger = ledger
        self._stop_loss = stop_loss_points
        self._profit_target = profit_target_points
        self._breakeven = breakeven_points
        self._trailing = trailing_stop_points
        self._tick_size = tick_size
        self._event_bus = event_bus
        self._trade: ManagedTrade | None = None
        self.last_entry_price: float = 0.0

    @property
    def ledger(self) -> LossLedger:
        return self._ledger

    @property
    def trade(self) -> ManagedTrade | None:
        return self._trade

    def reset(self) -> None:
        self._trade = None
        self.last_entry_price = 0.0

    def open_trade(
        self,
        direction: TradeDirection,
        entry_price: float,
        quantity: int,
        timestamp_ns: int = 0,
        pivot_price: float | None = None,
    ) -> ManagedTrade:
        """Record the entry fill and derive the initial stop and target."""
        if direction == TradeDirection.LONG:
            stop = entry_price - self._stop_loss
            target = entry_price + self._profit_target
        else:
            stop = entry_price + self._stop_loss
            target = entry_price - self._profit_target

        trade = ManagedTrade(direction, entry_price, quantity, stop, target,
                             opened_ns=timestamp_ns, pivot_price=pivot_price)
        if self._trailing > 0 and self._breakeven == 0:
            trade.trailing_active = True
            trade.next_trailing_trigger = self._offset(trade, entry_price, self._trailing)

        self._trade = trade
        self.last_entry_price = entry_price
        logger.info("%s entry filled @ %.2f x%d (stop %.2f, target %.2f)",
                    direction.name, entry_price, quantity, stop, target)
        return trade

    def on_price(self, price: float, timestamp_ns: int = 0) -> list[dict]:
        """Evaluate breakeven and trailing for one fine price.

        Returns stop-move action dicts, each with the stop already updated.
        """
        trade = self._trade
        if trade is None:
            return []

        actions = []

        if (self._breakeven > 0 and not trade.breakeven_set
                and trade.unrealized_points(price) >= self._breakeven):
            new_stop = self._offset(trade, trade.entry_price, self._tick_size)
            trade.breakeven_set = True
            if self._tightens(trade, new_stop):
                actions.append(self._move_stop(trade, new_stop, "breakeven", timestamp_ns))
            if self._trailing > 0 and not trade.trailing_active:
                trade.trailing_active = True
                trade.next_trailing_trigger = self._offset(trade, price, self._trailing)

        elif trade.trailing_active and self._trigger_reached(trade, price):
            new_stop = self._offset(trade, trade.stop_price, self._trailing)
            trade.next_trailing_trigger = self._offset(trade, price, self._trailing)
            actions.append(self._move_stop(trade, new_stop, "trailing", timestamp_ns))

        return actions

    def close_trade(self, exit_price: float, timestamp_ns: int = 0, reason: str = "") -> dict | None:
        """Book an exit fill against the last entry price. Returns the trade record."""
        trade = self._trade
        if trade is None:
            logger.warning("Exit fill @ %.2f with no managed trade", exit_price)
            return None

        if trade.is_long:
            pnl_points = exit_price - self.last_entry_price
        else:
            pnl_points = self.last_entry_price - exit_price

        halted = self._ledger.record(pnl_points, timestamp_ns)
        record = {
            "direction": trade.direction.name,
            "pivot_price": trade.pivot_price,
            "entry_price": trade.entry_price,
            "exit_price": exit_price,
            "initial_stop": trade.initial_stop,
            "final_stop": trade.stop_price,
            "target_price": trade.target_price,
            "quantity": trade.quantity,
            "pnl_points": pnl_points,
            "exit_reason": reason,
            "breakeven_set": trade.breakeven_set,
            "opened_ns": trade.opened_ns,
            "closed_ns": timestamp_ns,
            "daily_pnl_points": self._ledger.daily_pnl_points,
            "halted": halted,
        }
        logger.info("%s closed @ %.2f (%s): %+.2f points, daily %.2f",
                    trade.direction.name, exit_price, reason or "exit",
                    pnl_points, self._ledger.daily_pnl_points)
        if self._event_bus is not None:
            self._event_bus.emit(EventType.POSITION_CLOSED, timestamp_ns, "PositionRiskManager", **record)

        self._trade = None
        self.last_entry_price = 0.0
        return record

    def clear_trade(self) -> None:
        """Drop exit state without booking P&L (host-side flatten)."""
        if self._trade is not None:
            logger.warning("Clearing %s trade without an exit fill", self._trade.direction.name)
        self._trade = None

    def _trigger_reached(self, trade: ManagedTrade, price: float) -> bool:
        if trade.is_long:
            return price >= trade.next_trailing_trigger
        return price <= trade.next_trailing_trigger

    def _tightens(self, trade: ManagedTrade, new_stop: float) -> bool:
        return new_stop > trade.stop_price if trade.is_long else new_stop < trade.stop_price

    @staticmethod
    def _offset(trade: ManagedTrade, base: float, distance: float) -> float:
        """base moved ``distance`` in the trade's favourable direction."""
        return base + distance if trade.is_long else base - distance

    def _move_stop(self, trade: ManagedTrade, new_stop: float, reason: str, timestamp_ns: int) -> dict:
        old_stop = trade.stop_price
        trade.stop_price = new_stop
        logger.info("Stop %s: %.2f -> %.2f", reason, old_stop, new_stop)
        if self._event_bus is not None:
            self._event_bus.emit(EventType.STOP_MOVED, timestamp_ns, "PositionRiskManager",
                                 old_stop=old_stop, new_stop=new_stop, reason=reason)
        return {"action": "move_stop", "old_stop": old_stop, "new_stop": new_stop, "reason": reason}
