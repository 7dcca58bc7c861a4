"""StrategySettings — typed view over the merged config.

Every threshold the strategy reads lives here so StrategyContext can validate
the full set once, before any state is built.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields, replace
from datetime import time

from pivot_matrix.core.types import ConfirmationProtocol, EntryMode

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def parse_time(value: str) -> time:
    """Parse 'HH:MM' or 'HH:MM:SS' into a time object."""
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"invalid time of day: {value!r}")
    hours, minutes, seconds = (int(g) if g else 0 for g in match.groups())
    return time(hours, minutes, seconds)


@dataclass(frozen=True)
class StrategySettings:
    deviation_points: float = 60.0
    zone_above_points: float = 2.0
    zone_below_points: float = 2.0
    entry_mode: EntryMode = EntryMode.BAR_REVERSAL
    reversal_distance_points: float = 0.0
    quantity: int = 1
    trading_start: str = "00:00"
    trading_end: str = "23:59"
    stop_loss_points: float = 10.0
    profit_target_points: float = 15.0
    breakeven_points: float = 20.0
    trailing_stop_points: float = 0.0
    daily_max_loss_points: float = 0.0
    weekly_max_loss_points: float = 0.0
    tick_size: float = 0.25
    point_value: float = 50.0
    bracket_template: str = ""
    bars_required_to_trade: int = 20
    timezone: str = "US/Eastern"
    live_mode: bool = False

    @classmethod
    def from_config(cls, config) -> StrategySettings:
        """Build settings from a loaded ConfigManager (or anything with get())."""
        defaults = cls()
        mode = config.get("entry.mode", defaults.entry_mode.value)
        return cls(
            deviation_points=float(config.get("pivots.deviation_points", defaults.deviation_points)),
            zone_above_points=float(config.get("zones.above_points", defaults.zone_above_points)),
            zone_below_points=float(config.get("zones.below_points", defaults.zone_below_points)),
            entry_mode=mode if isinstance(mode, EntryMode) else EntryMode(mode),
            reversal_distance_points=float(
                config.get("entry.reversal_distance_points", defaults.reversal_distance_points)
            ),
            quantity=int(config.get("entry.quantity", defaults.quantity)),
            trading_start=config.get("entry.trading_start", defaults.trading_start),
            trading_end=config.get("entry.trading_end", defaults.trading_end),
            stop_loss_points=float(config.get("risk.stop_loss_points", defaults.stop_loss_points)),
            profit_target_points=float(
                config.get("risk.profit_target_points", defaults.profit_target_points)
            ),
            breakeven_points=float(config.get("risk.breakeven_points", defaults.breakeven_points)),
            trailing_stop_points=float(
                config.get("risk.trailing_stop_points", defaults.trailing_stop_points)
            ),
            daily_max_loss_points=float(
                config.get("risk.daily_max_loss_points", defaults.daily_max_loss_points)
            ),
            weekly_max_loss_points=float(
                config.get("risk.weekly_max_loss_points", defaults.weekly_max_loss_points)
            ),
            tick_size=float(config.get("execution.tick_size", defaults.tick_size)),
            point_value=float(config.get("execution.point_value", defaults.point_value)),
            bracket_template=config.get("execution.bracket_template", defaults.bracket_template) or "",
            bars_required_to_trade=int(
                config.get("system.bars_required_to_trade", defaults.bars_required_to_trade)
            ),
            timezone=config.get("system.timezone", defaults.timezone),
            live_mode=bool(config.get("system.live_mode", defaults.live_mode)),
        )

    def with_overrides(self, **overrides) -> StrategySettings:
        return replace(self, **overrides)

    @property
    def protocol(self) -> ConfirmationProtocol:
        """Entry confirmation protocol implied by mode and reversal distance."""
        if self.entry_mode == EntryMode.LIMIT_ENTRY:
            return ConfirmationProtocol.LIMIT_CHASE
        if self.reversal_distance_points > 0:
            return ConfirmationProtocol.TICK_REVERSAL
        return ConfirmationProtocol.BAR_CLOSE

    @property
    def uses_bracket_delegate(self) -> bool:
        return bool(self.bracket_template) and self.live_mode

    @property
    def start_time(self) -> time:
        return parse_time(self.trading_start)

    @property
    def end_time(self) -> time:
        return parse_time(self.trading_end)

    def validate(self) -> list[str]:
        """Return list of validation errors (empty when valid)."""
        errors: list[str] = []
        if self.deviation_points <= 0:
            errors.append("pivots.deviation_points must be > 0")
        for name in ("zone_above_points", "zone_below_points", "reversal_distance_points",
                     "breakeven_points", "trailing_stop_points",
                     "daily_max_loss_points", "weekly_max_loss_points"):
            if getattr(self, name) < 0:
                errors.append(f"{name} must be >= 0")
        if self.stop_loss_points <= 0:
            errors.append("risk.stop_loss_points must be > 0")
        if self.profit_target_points <= 0:
            errors.append("risk.profit_target_points must be > 0")
        if self.quantity < 1:
            errors.append("entry.quantity must be >= 1")
        if self.tick_size <= 0:
            errors.append("execution.tick_size must be > 0")
        if self.bars_required_to_trade < 0:
            errors.append("system.bars_required_to_trade must be >= 0")
        for key in ("trading_start", "trading_end"):
            try:
                parse_time(getattr(self, key))
            except ValueError as e:
                errors.append(f"entry.{key}: {e}")
        return errors

    def as_dict(self) -> dict:
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            out[f.name] = value.value if isinstance(value, EntryMode) else value
        return out
