"""Shared fixtures for Pivot Matrix tests."""

from __future__ import annotations

import numpy as np
import pytest

from pivot_matrix.config.config_manager import DEFAULT_CONFIG_PATH, ConfigManager
from pivot_matrix.config.settings import StrategySettings
from pivot_matrix.engine.backtest_runner import BAR_DTYPE


CONFIG_PATH = DEFAULT_CONFIG_PATH

# Monday 2024-01-08 09:30 US/Eastern
BASE_TS_NS = 1_704_724_200_000_000_000
MINUTE_NS = 60_000_000_000


@pytest.fixture
def config():
    """Loaded ConfigManager with futures profile."""
    ConfigManager.reset()
    cm = ConfigManager()
    cm.load(CONFIG_PATH, profile="futures")
    yield cm
    ConfigManager.reset()


@pytest.fixture
def settings():
    """Default settings with no warm-up so bar 0 is live."""
    return StrategySettings(
        deviation_points=60.0,
        zone_above_points=2.0,
        zone_below_points=2.0,
        bars_required_to_trade=0,
    )


@pytest.fixture
def swing_bars():
    """Rally to a 100 high, collapse to 39, then a bearish retest of the zone.

    Index 5 confirms the HIGH pivot at 100 (extreme printed on index 4).
    Index 6 trades below the zone (has-left-zone), index 7 is the retest.
    """
    rows = [
        # open, high, low, close
        (40.0, 45.0, 39.5, 44.0),
        (44.0, 52.0, 43.0, 51.0),
        (51.0, 70.0, 50.0, 69.0),
        (69.0, 90.0, 68.0, 89.0),
        (89.0, 100.0, 88.0, 95.0),
        (95.0, 96.0, 39.0, 41.0),
        (41.0, 60.0, 40.0, 58.0),
        (98.9, 99.0, 98.5, 98.6),
    ]
    bars = np.zeros(len(rows), dtype=BAR_DTYPE)
    for i, (o, h, l, c) in enumerate(rows):
        bars[i]["timestamp_ns"] = BASE_TS_NS + i * MINUTE_NS
        bars[i]["open"] = o
        bars[i]["high"] = h
        bars[i]["low"] = l
        bars[i]["close"] = c
        bars[i]["volume"] = 100.0
    return bars


@pytest.fixture
def synthetic_bars():
    """Generate 400 seeded random-walk 1-min bars."""
    rng = np.random.default_rng(7)
    n = 400
    bars = np.zeros(n, dtype=BAR_DTYPE)
    price = 5000.0
    for i in range(n):
        change = rng.uniform(-3, 3)
        bars[i]["timestamp_ns"] = BASE_TS_NS + i * MINUTE_NS
        bars[i]["open"] = price
        bars[i]["close"] = price + change
        bars[i]["high"] = max(price, price + change) + rng.uniform(0, 1.5)
        bars[i]["low"] = min(price, price + change) - rng.uniform(0, 1.5)
        bars[i]["volume"] = rng.uniform(100, 500)
        price = bars[i]["close"]
    return bars
