"""PivotTracker — non-repainting swing-point detection.

Zigzag-style state machine over the coarse bar stream. A swing is confirmed
once price retraces at least ``deviation_points`` (absolute price units) from
the running extreme. Confirmed pivots are frozen and never redrawn.
"""

from __future__ import annotations

import logging

from pivot_matrix.core.types import PivotKind, TrendDirection
from pivot_matrix.core.data_types import Bar, Pivot

logger = logging.getLogger(__name__)

SEED_BAR_INDEX = 2


class PivotTracker:
    """Emits at most one confirmed Pivot per bar."""

    def __init__(self, deviation_points: float, seed_index: int = SEED_BAR_INDEX) -> None:
        if deviation_points <= 0:
            raise ValueError("deviation_points must be > 0")
        self._deviation = deviation_points
        self._seed_index = seed_index
        self.reset()

    def reset(self) -> None:
        self._trend = TrendDirection.UNKNOWN
        self._extremum: float = 0.0
        self._extremum_index: int = -1
        self._pivots: list[Pivot] = []

    @property
    def trend(self) -> TrendDirection:
        return self._trend

    @property
    def extremum(self) -> float:
        return self._extremum

    @property
    def extremum_index(self) -> int:
        return self._extremum_index

    @property
    def pivots(self) -> list[Pivot]:
        """All confirmed pivots, oldest first."""
        return list(self._pivots)

    def update(self, bar: Bar) -> Pivot | None:
        """Advance the state machine by one closed bar."""
        if self._trend == TrendDirection.UNKNOWN:
            if bar.index < self._seed_index:
                return None
            self._seed(bar)

        if self._trend == TrendDirection.UP:
            if bar.high > self._extremum:
                self._extremum = bar.high
                self._extremum_index = bar.index
                return None
            if self._extremum - bar.low >= self._deviation:
                return self._confirm(PivotKind.HIGH, bar, TrendDirection.DOWN, bar.low)
            return None

        if bar.low < self._extremum:
            self._extremum = bar.low
            self._extremum_index = bar.index
            return None
        if bar.high - self._extremum >= self._deviation:
            return self._confirm(PivotKind.LOW, bar, TrendDirection.UP, bar.high)
        return None

    def _seed(self, bar: Bar) -> None:
        # The seed bar still runs through the trend step, so a bullish seed
        # immediately promotes its own high to the first candidate peak.
        if bar.close > bar.open:
            self._trend = TrendDirection.UP
            self._extremum = bar.low
        else:
            self._trend = TrendDirection.DOWN
            self._extremum = bar.high
        self._extremum_index = bar.index
        logger.debug("Trend seeded %s at bar %d (extremum %.2f)",
                     self._trend.name, bar.index, self._extremum)

    def _confirm(
        self,
        kind: PivotKind,
        bar: Bar,
        next_trend: TrendDirection,
        next_extremum: float,
    ) -> Pivot:
        pivot = Pivot(
            kind=kind,
            price=self._extremum,
            extremum_index=self._extremum_index,
            detected_index=bar.index,
        )
        self._pivots.append(pivot)
        logger.info("%s pivot confirmed at %.2f (extreme bar %d, detected bar %d)",
                    kind.name, pivot.price, pivot.extremum_index, pivot.detected_index)
        self._trend = next_trend
        self._extremum = next_extremum
        self._extremum_index = bar.index
        return pivot
