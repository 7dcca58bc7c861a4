"""LossLedger — realized P&L in points against daily and weekly loss ceilings.

Day and week boundaries come from bar timestamps in the session timezone.
The weekly total is fed from the daily total at each day roll, never per trade.
Halts are sticky until the period rolls and only block new entries.
A limit of 0 disables that halt.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from pivot_matrix.core.types import EventType

logger = logging.getLogger(__name__)


def week_start(day: date) -> date:
    """Monday of the ISO week containing ``day``."""
    return day - timedelta(days=day.weekday())


class LossLedger:
    def __init__(
        self,
        daily_max_loss_points: float = 0.0,
        weekly_max_loss_points: float = 0.0,
        event_bus=None,
    ) -> None:
        self._daily_max = daily_max_loss_points
        self._weekly_max = weekly_max_loss_points
        self._event_bus = event_bus
        self.reset()

    def reset(self) -> None:
        self.daily_pnl_points: float = 0.0
        self.weekly_pnl_points: float = 0.0
        self.halted_today: bool = False
        self.halted_this_week: bool = False
        self.current_day: date | None = None
        self.current_week: date | None = None

    @property
    def is_halted(self) -> bool:
        return self.halted_today or self.halted_this_week

    def roll(self, day: date, timestamp_ns: int = 0) -> tuple[bool, bool]:
        """Advance to ``day``. Returns (new_day, new_week)."""
        if self.current_day is None:
            self.current_day = day
            self.current_week = week_start(day)
            return False, False

        new_day = day != self.current_day
        new_week = week_start(day) != self.current_week

        if new_day:
            self.weekly_pnl_points += self.daily_pnl_points
            logger.info("Day roll %s -> %s: daily %.2f, weekly %.2f",
                        self.current_day, day, self.daily_pnl_points, self.weekly_pnl_points)
            if (self._weekly_max > 0 and not self.halted_this_week
                    and self.weekly_pnl_points <= -self._weekly_max):
                self._halt("weekly", timestamp_ns)
            self.daily_pnl_points = 0.0
            self.halted_today = False
            self.current_day = day
            self._emit(EventType.DAILY_RESET, timestamp_ns, day=day.isoformat())

        if new_week:
            logger.info("Week roll to %s: weekly %.2f reset", week_start(day), self.weekly_pnl_points)
            self.weekly_pnl_points = 0.0
            self.halted_this_week = False
            self.current_week = week_start(day)
            self._emit(EventType.WEEKLY_RESET, timestamp_ns, week=self.current_week.isoformat())

        return new_day, new_week

    def record(self, pnl_points: float, timestamp_ns: int = 0) -> bool:
        """Add a closed trade's points. Returns True if this trade set the daily halt."""
        self.daily_pnl_points += pnl_points
        if self._daily_max > 0 and not self.halted_today and self.daily_pnl_points <= -self._daily_max:
            self._halt("daily", timestamp_ns)
            return True
        return False

    def _halt(self, period: str, timestamp_ns: int) -> None:
        if period == "daily":
            self.halted_today = True
            total, limit = self.daily_pnl_points, self._daily_max
        else:
            self.halted_this_week = True
            total, limit = self.weekly_pnl_points, self._weekly_max
        logger.critical("Trading halted (%s): %.2f points <= -%.2f", period, total, limit)
        self._emit(EventType.TRADING_HALTED, timestamp_ns, period=period, pnl_points=total, limit=limit)

    def _emit(self, event_type: EventType, timestamp_ns: int, **payload) -> None:
        if self._event_bus is not None:
            self._event_bus.emit(event_type, timestamp_ns, "LossLedger", **payload)

    def snapshot(self) -> dict:
        return {
            "daily_pnl_points": self.daily_pnl_points,
            "weekly_pnl_points": self.weekly_pnl_points,
            "halted_today": self.halted_today,
            "halted_this_week": self.halted_this_week,
            "current_day": self.current_day.isoformat() if self.current_day else None,
        }
