"""Tolerance-aware sorted price set.

Float prices are never compared for exact equality: membership is any stored
price within ``epsilon`` of the query, found by binary search.
"""

from __future__ import annotations

import bisect

PRICE_EPSILON = 1e-2


def prices_match(a: float, b: float, epsilon: float = PRICE_EPSILON) -> bool:
    return abs(a - b) < epsilon


class PriceSet:
    """Sorted sequence of prices with epsilon lookup. Entries are never removed."""

    def __init__(self, epsilon: float = PRICE_EPSILON) -> None:
        self._epsilon = epsilon
        self._prices: list[float] = []

    def __len__(self) -> int:
        return len(self._prices)

    def __iter__(self):
        return iter(self._prices)

    def __contains__(self, price: float) -> bool:
        return self.find(price) is not None

    def find(self, price: float) -> float | None:
        """Return the stored price matching ``price`` within epsilon, or None."""
        lo = bisect.bisect_left(self._prices, price - self._epsilon)
        hi = bisect.bisect_right(self._prices, price + self._epsilon)
        best = None
        for stored in self._prices[lo:hi]:
            if prices_match(stored, price, self._epsilon):
                if best is None or abs(stored - price) < abs(best - price):
                    best = stored
        return best

    def add(self, price: float) -> bool:
        """Insert price unless an equivalent one exists. Returns True if inserted."""
        if price in self:
            return False
        bisect.insort(self._prices, price)
        return True

    def clear(self) -> None:
        self._prices.clear()
