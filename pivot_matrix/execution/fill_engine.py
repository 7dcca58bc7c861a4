"""Pessimistic Fill Engine — 3-level fill model for paper trading and backtests.

Level 1 (Optimistic): Fills at touch, no slippage.
Level 2 (Standard): 1-tick slippage on market/stop fills, limits need a through-fill.
Level 3 (Conservative): 2-tick slippage, limits need a through-fill.

Limit orders never receive slippage; their fill price is the limit price.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FillConfig:
    """Fill engine configuration for a specific pessimism level."""

    name: str
    level: int
    slippage_ticks: int
    require_through_fill: bool


FILL_LEVELS = {
    1: FillConfig(name="Optimistic", level=1, slippage_ticks=0, require_through_fill=False),
    2: FillConfig(name="Standard", level=2, slippage_ticks=1, require_through_fill=True),
    3: FillConfig(name="Conservative", level=3, slippage_ticks=2, require_through_fill=True),
}


class PessimisticFillEngine:
    def __init__(self, level: int = 2, tick_size: float = 0.25) -> None:
        self._config = FILL_LEVELS.get(level, FILL_LEVELS[2])
        self._tick_size = tick_size

    @property
    def config(self) -> FillConfig:
        return self._config

    def apply_slippage(self, price: float, is_buy: bool) -> float:
        """Apply tick-based slippage to a market or stop fill price."""
        slippage = self._config.slippage_ticks * self._tick_size
        if is_buy:
            return price + slippage  # Buy fills higher
        return price - slippage  # Sell fills lower

    def would_fill(
        self,
        order_price: float,
        market_high: float,
        market_low: float,
        is_buy: bool,
    ) -> bool:
        """Check if a limit order would fill given the traded price range.

        Through-fill: price must trade THROUGH the order price, not just touch it.
        """
        if self._config.require_through_fill:
            if is_buy:
                return market_low < order_price
            return market_high > order_price
        if is_buy:
            return market_low <= order_price
        return market_high >= order_price

    @staticmethod
    def stop_triggered(stop_price: float, price: float, is_buy: bool) -> bool:
        """Stop-market trigger: buy stops at or above, sell stops at or below."""
        if is_buy:
            return price >= stop_price
        return price <= stop_price
