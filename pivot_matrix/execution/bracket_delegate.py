"""BracketDelegate — hands entries to the host's managed-bracket subsystem.

Used only in live mode with a configured template. Creation is asynchronous:
the host returns a Future that resolves exactly once with a BracketResult
carrying the strategy id it was created for. A failed creation clears both
ids so the next signal can try again.
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import Future
from typing import Protocol

from pivot_matrix.core.types import OrderAction, OrderState, PositionSide, TradeDirection
from pivot_matrix.core.data_types import BracketResult

logger = logging.getLogger(__name__)

TERMINAL_STATES = (OrderState.FILLED, OrderState.CANCELLED, OrderState.REJECTED)


class BracketService(Protocol):
    def submit_bracket(
        self,
        template: str,
        action: OrderAction,
        quantity: int,
        entry_price: float,
        order_id: str,
        strategy_id: str,
    ) -> Future: ...

    def order_state(self, order_id: str) -> OrderState | None: ...

    def position_side(self, strategy_id: str) -> PositionSide: ...


class BracketDelegate:
    def __init__(self, service: BracketService, template: str) -> None:
        if not template:
            raise ValueError("bracket template name is required")
        self._service = service
        self._template = template
        self.reset()

    def reset(self) -> None:
        self.order_id: str = ""
        self.strategy_id: str = ""
        self.is_created: bool = False
        self._future: Future | None = None

    @property
    def is_busy(self) -> bool:
        """True while a bracket is pending, working or holding a position."""
        return bool(self.order_id or self.strategy_id)

    def submit(self, direction: TradeDirection, quantity: int, entry_price: float) -> bool:
        """Request a bracket. Returns False when one is already in flight."""
        if self.is_busy:
            logger.debug("Bracket request skipped: %s still active", self.strategy_id)
            return False

        self.order_id = uuid.uuid4().hex
        self.strategy_id = uuid.uuid4().hex
        self.is_created = False
        action = OrderAction.BUY if direction == TradeDirection.LONG else OrderAction.SELL
        logger.info("Requesting %s bracket '%s' x%d @ %.2f (strategy %s)",
                    direction.name, self._template, quantity, entry_price, self.strategy_id)

        self._future = self._service.submit_bracket(
            self._template, action, quantity, entry_price, self.order_id, self.strategy_id,
        )
        self._future.add_done_callback(self._on_resolved)
        return True

    def _on_resolved(self, future: Future) -> None:
        if future is not self._future:
            return
        exc = future.exception()
        result: BracketResult | None = None if exc is not None else future.result()
        if result is not None and result.success and result.strategy_id == self.strategy_id:
            self.is_created = True
            logger.info("Bracket %s created", self.strategy_id)
            return
        if result is not None and result.strategy_id != self.strategy_id:
            logger.warning("Bracket result for unknown strategy %s ignored", result.strategy_id)
            return
        error = str(exc) if exc is not None else (result.error if result else "no result")
        logger.error("Bracket creation failed for %s: %s", self.strategy_id, error)
        self.reset()

    def poll(self) -> None:
        """Clear the entry id once it is terminal; release everything once flat."""
        if self._future is None or not self._future.done():
            return
        if self.order_id:
            state = self._service.order_state(self.order_id) if self.is_created else None
            if state in TERMINAL_STATES:
                logger.info("Bracket entry %s %s", self.order_id, state.value)
                self.order_id = ""
            return
        if self.strategy_id and self._service.position_side(self.strategy_id) == PositionSide.FLAT:
            logger.info("Bracket %s flat, releasing", self.strategy_id)
            self.reset()
