"""Backtest Runner — entry point for running Pivot Matrix backtests.

Initialization order:
  1. ConfigManager → 2. EventBus → 3. FillEngine → 4. PaperBroker →
  5. PivotZoneStrategy → 6. TradeLogger → 7. EventDispatcher

Bar timestamps are bar close times. Fine prices inside (previous close, close]
are dispatched before the bar's own close event. Without real ticks each bar
contributes a synthetic open → counter-extreme → extreme → close path.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from pivot_matrix.config.config_manager import DEFAULT_CONFIG_PATH, ConfigManager
from pivot_matrix.core.data_types import Bar, PriceTick
from pivot_matrix.core.dispatcher import EventDispatcher
from pivot_matrix.core.event_bus import EventBus
from pivot_matrix.database.trade_logger import TradeLogger
from pivot_matrix.engine.pivot_strategy import PivotZoneStrategy
from pivot_matrix.execution.broker import PaperBroker
from pivot_matrix.execution.fill_engine import PessimisticFillEngine

logger = logging.getLogger(__name__)


BAR_DTYPE = np.dtype([
    ("timestamp_ns", np.int64),
    ("open", np.float64),
    ("high", np.float64),
    ("low", np.float64),
    ("close", np.float64),
    ("volume", np.float64),
])

TICK_DTYPE = np.dtype([
    ("timestamp_ns", np.int64),
    ("price", np.float64),
    ("size", np.float64),
])

DEFAULT_BAR_NS = 60_000_000_000


def synthetic_path(open_: float, high: float, low: float, close: float) -> np.ndarray:
    """Four-point intrabar path. Bullish bars visit the low first, others the high."""
    if close > open_:
        return np.array([open_, low, high, close], dtype=np.float64)
    return np.array([open_, high, low, close], dtype=np.float64)


def load_bars(path: str | Path) -> np.ndarray:
    """Load BAR_DTYPE bars from .npy or .csv.

    CSV needs a timestamp column (any pandas-parsable format, UTC assumed when
    naive) plus open/high/low/close; volume is optional.
    """
    path = Path(path)
    if path.suffix == ".npy":
        return np.load(str(path))

    df = pd.read_csv(path)
    df.columns = [c.strip().lower() for c in df.columns]
    ts_col = next((c for c in ("timestamp", "time", "datetime", "date") if c in df.columns), None)
    if ts_col is None:
        raise ValueError(f"{path}: no timestamp column")
    timestamps = pd.to_datetime(df[ts_col], utc=True)

    bars = np.zeros(len(df), dtype=BAR_DTYPE)
    bars["timestamp_ns"] = timestamps.dt.as_unit("ns").astype("int64").to_numpy()
    for col in ("open", "high", "low", "close"):
        bars[col] = df[col].to_numpy(dtype=np.float64)
    if "volume" in df.columns:
        bars["volume"] = df["volume"].to_numpy(dtype=np.float64)
    order = np.argsort(bars["timestamp_ns"], kind="stable")
    return bars[order]


def load_ticks(path: str | Path) -> np.ndarray:
    """Load TICK_DTYPE ticks from .npy or .csv (timestamp, price[, size])."""
    path = Path(path)
    if path.suffix == ".npy":
        return np.load(str(path))
    df = pd.read_csv(path)
    df.columns = [c.strip().lower() for c in df.columns]
    ticks = np.zeros(len(df), dtype=TICK_DTYPE)
    ticks["timestamp_ns"] = pd.to_datetime(df["timestamp"], utc=True).dt.as_unit("ns").astype("int64").to_numpy()
    ticks["price"] = df["price"].to_numpy(dtype=np.float64)
    if "size" in df.columns:
        ticks["size"] = df["size"].to_numpy(dtype=np.float64)
    order = np.argsort(ticks["timestamp_ns"], kind="stable")
    return ticks[order]


class BacktestRunner:
    """Sets up all modules in order and replays bars (and ticks) through them."""

    def __init__(
        self,
        config_path: str | Path = DEFAULT_CONFIG_PATH,
        profile: str | None = None,
        instrument: str | None = None,
        fill_level: int | None = None,
        db_dsn: str | None = None,
        overrides: dict | None = None,
    ) -> None:
        self._config_path = Path(config_path)
        self._profile = profile
        self._instrument = instrument
        self._fill_level = fill_level
        self._db_dsn = db_dsn
        self._overrides = overrides or {}
        self._strategy: PivotZoneStrategy | None = None
        self._broker: PaperBroker | None = None
        self._fill_engine: PessimisticFillEngine | None = None
        self._trade_logger: TradeLogger | None = None
        self._dispatcher: EventDispatcher | None = None
        self._synthetic = True

    @property
    def strategy(self) -> PivotZoneStrategy | None:
        return self._strategy

    @property
    def broker(self) -> PaperBroker | None:
        return self._broker

    @property
    def trade_logger(self) -> TradeLogger | None:
        return self._trade_logger

    def setup(self) -> PivotZoneStrategy:
        """Initialize all modules in order."""

        # 1. ConfigManager
        config = ConfigManager()
        config.load(self._config_path, self._profile, self._instrument)
        for key, value in self._overrides.items():
            config.override(key, value)

        # 2. EventBus
        event_bus = EventBus()

        # 3. Fill engine
        level = self._fill_level or config.get("backtest.fill_level", 2)
        self._fill_engine = PessimisticFillEngine(
            level=level,
            tick_size=config.get("execution.tick_size", 0.25),
        )

        # 4. PaperBroker
        self._broker = PaperBroker(self._fill_engine)

        # 5. Strategy
        self._strategy = PivotZoneStrategy.from_config(config, self._broker, event_bus)

        # 6. TradeLogger
        self._trade_logger = TradeLogger(
            dsn=self._db_dsn,
            instrument=config.get("system.instrument", ""),
        )
        self._trade_logger.attach(event_bus)

        # 7. Dispatcher
        self._dispatcher = EventDispatcher(self._strategy, self._broker)
        self._synthetic = bool(config.get("backtest.synthetic_ticks", True))

        logger.info("Backtest ready: %s protocol, fill level %s",
                    self._strategy.settings.protocol.value, self._fill_engine.config.name)
        return self._strategy

    def run(self, bars: np.ndarray, ticks: np.ndarray | None = None) -> dict:
        """Replay bars, optionally with real ticks.

        Args:
            bars: NumPy structured array with BAR_DTYPE, ascending timestamps
            ticks: Optional TICK_DTYPE array of trade ticks

        Returns:
            Results dict with trades, point totals, halts, etc.
        """
        if self._strategy is None:
            self.setup()

        has_real_ticks = ticks is not None and len(ticks) > 0
        bar_ts = bars["timestamp_ns"]
        if has_real_ticks:
            tick_end = np.searchsorted(ticks["timestamp_ns"], bar_ts, side="right")
            logger.info("Real ticks: %d total, feeding into %d bars", len(ticks), len(bars))
        bar_ns = int(np.median(np.diff(bar_ts))) if len(bars) > 1 else DEFAULT_BAR_NS

        self._strategy.on_start()

        tick_start = 0
        for i in range(len(bars)):
            row = bars[i]
            close_ts = int(row["timestamp_ns"])

            if has_real_ticks:
                for t in ticks[tick_start:tick_end[i]]:
                    self._dispatcher.push_tick(PriceTick(int(t["timestamp_ns"]), float(t["price"]),
                                                         float(t["size"])))
                tick_start = tick_end[i]
            elif self._synthetic:
                prev_ts = int(bar_ts[i - 1]) if i > 0 else close_ts - bar_ns
                path = synthetic_path(float(row["open"]), float(row["high"]),
                                      float(row["low"]), float(row["close"]))
                stamps = np.linspace(prev_ts, close_ts, num=len(path) + 1, dtype=np.int64)[1:]
                for ts, price in zip(stamps, path):
                    self._dispatcher.push_tick(PriceTick(int(ts), float(price)))

            self._dispatcher.push_bar(Bar(
                index=i,
                timestamp_ns=close_ts,
                open=float(row["open"]),
                high=float(row["high"]),
                low=float(row["low"]),
                close=float(row["close"]),
                volume=float(row["volume"]),
            ))
            self._dispatcher.run_pending()

        self._strategy.on_stop()

        db_records = self._trade_logger.flush_to_db_sync() if self._trade_logger else 0
        return self._build_results(len(bars), db_records)

    def _build_results(self, bars_processed: int, db_records: int) -> dict:
        strategy = self._strategy
        trades = strategy.trades
        points = [t["pnl_points"] for t in trades]
        wins = [p for p in points if p > 0]

        return {
            "bars_processed": bars_processed,
            "protocol": strategy.settings.protocol.value,
            "fill_level": self._fill_engine.config.name if self._fill_engine else "unknown",
            "pivots_confirmed": len(strategy.tracker.pivots),
            "pivots_invalidated": strategy.zones.invalidated_count,
            "signal_count": len(strategy.signals),
            "trade_count": len(trades),
            "trades": trades,
            "total_points": sum(points),
            "total_dollars": sum(points) * strategy.settings.point_value,
            "win_rate": len(wins) / len(trades) if trades else 0.0,
            "halts": strategy.halts,
            "stale_fills": strategy.orders.stale_count,
            "ledger": strategy.ledger.snapshot(),
            "db_records_written": db_records,
        }

    def shutdown(self) -> None:
        """Stop the strategy if still running and release the config singleton."""
        if self._strategy is not None:
            self._strategy.on_stop()
        ConfigManager.reset()
