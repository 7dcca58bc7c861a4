"""ZoneMonitor — owns the live pivot set and each pivot's proximity zone.

Zone bounds are asymmetric: ``above`` is measured on the far side of the
pivot (the side price has not visited), ``below`` on the approach side.

    high pivot:  [price - below, price + above]
    low pivot:   [price - above, price + below]

Per bar the strategy evaluates entries first, then calls invalidate(), then
update_lines(). A pivot whose zone is pierced and reversed within one bar can
therefore still trade before it is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pivot_matrix.core.types import PivotKind
from pivot_matrix.core.data_types import Bar, Pivot
from pivot_matrix.core.price_set import PRICE_EPSILON, PriceSet, prices_match

logger = logging.getLogger(__name__)


@dataclass
class PivotLevel:
    """A confirmed pivot plus its mutable zone state."""

    pivot: Pivot
    zone_bottom: float
    zone_top: float
    activation_index: int
    has_left_zone: bool = False
    left_zone_index: int = -1
    line_active: bool = True
    line_end_index: int = -1

    @property
    def kind(self) -> PivotKind:
        return self.pivot.kind

    @property
    def price(self) -> float:
        return self.pivot.price

    @property
    def detected_index(self) -> int:
        return self.pivot.detected_index

    def is_active(self, current_index: int) -> bool:
        return current_index >= self.activation_index

    def contains(self, price: float) -> bool:
        return self.zone_bottom <= price <= self.zone_top


class ZoneMonitor:
    """Pivot store, traded markers and per-bar zone maintenance."""

    def __init__(
        self,
        above_points: float,
        below_points: float,
        epsilon: float = PRICE_EPSILON,
    ) -> None:
        if above_points < 0 or below_points < 0:
            raise ValueError("zone distances must be >= 0")
        self._above = above_points
        self._below = below_points
        self._epsilon = epsilon
        self.reset()

    def reset(self) -> None:
        self._levels: dict[PivotKind, list[PivotLevel]] = {PivotKind.HIGH: [], PivotKind.LOW: []}
        self._traded: dict[PivotKind, PriceSet] = {
            PivotKind.HIGH: PriceSet(self._epsilon),
            PivotKind.LOW: PriceSet(self._epsilon),
        }
        self._invalidated_count = 0

    @property
    def highs(self) -> list[PivotLevel]:
        return list(self._levels[PivotKind.HIGH])

    @property
    def lows(self) -> list[PivotLevel]:
        return list(self._levels[PivotKind.LOW])

    @property
    def invalidated_count(self) -> int:
        return self._invalidated_count

    def levels(self, kind: PivotKind) -> list[PivotLevel]:
        return list(self._levels[kind])

    def zone_bounds(self, kind: PivotKind, price: float) -> tuple[float, float]:
        """(zone_bottom, zone_top) for a pivot of this kind at this price."""
        if kind == PivotKind.HIGH:
            return price - self._below, price + self._above
        return price - self._above, price + self._below

    def add_pivot(self, pivot: Pivot) -> PivotLevel:
        bottom, top = self.zone_bounds(pivot.kind, pivot.price)
        level = PivotLevel(
            pivot=pivot,
            zone_bottom=bottom,
            zone_top=top,
            activation_index=pivot.detected_index + 1,
        )
        self._levels[pivot.kind].append(level)
        logger.debug("%s zone [%.2f, %.2f] active from bar %d",
                     pivot.kind.name, bottom, top, level.activation_index)
        return level

    def find(self, kind: PivotKind, price: float) -> PivotLevel | None:
        """Look up a live level by price within tolerance."""
        for level in self._levels[kind]:
            if prices_match(level.price, price, self._epsilon):
                return level
        return None

    # ── Traded markers ──

    def mark_traded(self, kind: PivotKind, price: float) -> bool:
        added = self._traded[kind].add(price)
        if added:
            logger.info("%s pivot %.2f marked traded", kind.name, price)
        return added

    def is_traded(self, kind: PivotKind, price: float) -> bool:
        return price in self._traded[kind]

    # ── Selection ──

    def eligible(self, kind: PivotKind, current_index: int) -> list[PivotLevel]:
        """Untraded, active levels that have left their zone, oldest first."""
        return [
            level for level in self._levels[kind]
            if level.is_active(current_index)
            and level.has_left_zone
            and not self.is_traded(kind, level.price)
        ]

    def nearest_untraded(
        self,
        kind: PivotKind,
        current_price: float,
        current_index: int,
    ) -> PivotLevel | None:
        """Closest untraded active level, or None if its limit would fill immediately.

        Short limits rest at zone_bottom and must sit above price; long limits
        rest at zone_top and must sit below price. A farther level is never
        used in place of a closest level on the wrong side.
        """
        best: PivotLevel | None = None
        best_distance = 0.0
        for level in self._levels[kind]:
            if not level.is_active(current_index) or self.is_traded(kind, level.price):
                continue
            distance = abs(level.price - current_price)
            if best is None or distance < best_distance:
                best, best_distance = level, distance
        if best is None:
            return None
        limit = self.limit_price(best)
        if kind == PivotKind.HIGH and limit <= current_price:
            return None
        if kind == PivotKind.LOW and limit >= current_price:
            return None
        return best

    def limit_price(self, level: PivotLevel) -> float:
        if level.kind == PivotKind.HIGH:
            return level.price - self._below
        return level.price + self._below

    # ── Per-bar maintenance ──

    def invalidate(self, bar: Bar) -> tuple[list[PivotLevel], list[PivotLevel]]:
        """Update has-left-zone flags and drop pierced zones.

        Returns (newly_left, removed). Traded and not-yet-active levels are
        skipped. Removals are collected first and applied after the scan.
        """
        newly_left: list[PivotLevel] = []
        removed: list[PivotLevel] = []

        for level in self._levels[PivotKind.HIGH]:
            if self.is_traded(PivotKind.HIGH, level.price) or not level.is_active(bar.index):
                continue
            if bar.low < level.zone_bottom and not level.has_left_zone:
                level.has_left_zone = True
                level.left_zone_index = bar.index
                newly_left.append(level)
            if bar.high > level.zone_top and level.left_zone_index != bar.index:
                removed.append(level)

        for level in self._levels[PivotKind.LOW]:
            if self.is_traded(PivotKind.LOW, level.price) or not level.is_active(bar.index):
                continue
            if bar.high > level.zone_top and not level.has_left_zone:
                level.has_left_zone = True
                level.left_zone_index = bar.index
                newly_left.append(level)
            if bar.low < level.zone_bottom and level.left_zone_index != bar.index:
                removed.append(level)

        for level in removed:
            self._levels[level.kind].remove(level)
            self._invalidated_count += 1
            logger.info("%s pivot %.2f invalidated at bar %d",
                        level.kind.name, level.price, bar.index)

        return newly_left, removed

    def update_lines(self, bar: Bar) -> list[PivotLevel]:
        """End support/resistance lines that price has traded through."""
        broken = []
        for level in self._levels[PivotKind.HIGH]:
            if level.line_active and bar.index > level.detected_index and bar.high > level.price:
                level.line_active = False
                level.line_end_index = bar.index
                broken.append(level)
        for level in self._levels[PivotKind.LOW]:
            if level.line_active and bar.index > level.detected_index and bar.low < level.price:
                level.line_active = False
                level.line_end_index = bar.index
                broken.append(level)
        return broken
