"""Integration test: config → runner → dispatcher → strategy → broker → journal."""

import numpy as np
import pytest

from pivot_matrix.config.config_manager import ConfigManager
from pivot_matrix.engine.backtest_runner import (
    TICK_DTYPE,
    BacktestRunner,
    load_bars,
    synthetic_path,
)

SWING_OVERRIDES = {
    "system.bars_required_to_trade": 0,
    "pivots.deviation_points": 60.0,
    "zones.above_points": 2.0,
    "zones.below_points": 2.0,
    "entry.trading_start": "00:00",
    "entry.trading_end": "23:59",
}


@pytest.fixture(autouse=True)
def fresh_config():
    ConfigManager.reset()
    yield
    ConfigManager.reset()


def run(bars, ticks=None, **overrides):
    runner = BacktestRunner(overrides={**SWING_OVERRIDES, **overrides})
    try:
        return runner.run(bars, ticks), runner
    finally:
        runner.shutdown()


class TestBacktestRun:
    @pytest.mark.integration
    def test_swing_bar_close_short(self, swing_bars):
        results, runner = run(swing_bars)
        assert results["bars_processed"] == 8
        assert results["protocol"] == "bar_close"
        assert results["pivots_confirmed"] == 2
        assert results["signal_count"] == 1
        # entry fills at the retest close; the run ends before any exit
        assert results["trade_count"] == 0
        assert runner.broker.fills[0]["price"] == 98.6
        assert runner.broker.working_orders == {}
        assert runner.trade_logger.signals[0]["direction"] == "SHORT"

    @pytest.mark.integration
    def test_real_ticks_reversal_distance(self, swing_bars):
        base = int(swing_bars[6]["timestamp_ns"])
        ticks = np.zeros(4, dtype=TICK_DTYPE)
        for i, price in enumerate((100.5, 101.2, 99.0, 98.1)):
            ticks[i]["timestamp_ns"] = base + (i + 1) * 1_000_000_000
            ticks[i]["price"] = price
            ticks[i]["size"] = 1.0
        results, runner = run(swing_bars, ticks, **{"entry.reversal_distance_points": 3.0})
        assert results["protocol"] == "tick_reversal"
        assert results["signal_count"] == 1
        assert runner.strategy.signals[0].entry_price == 98.1
        assert runner.broker.fills[0]["price"] == 98.1

    @pytest.mark.integration
    def test_random_walk_invariants(self, synthetic_bars):
        results, runner = run(synthetic_bars, **{"pivots.deviation_points": 5.0,
                                                 "risk.stop_loss_points": 4.0,
                                                 "risk.profit_target_points": 6.0,
                                                 "risk.breakeven_points": 3.0})
        assert results["bars_processed"] == 400
        assert results["pivots_confirmed"] > 0
        trades = results["trades"]
        assert results["trade_count"] == len(trades)
        assert results["signal_count"] >= len(trades)
        for t in trades:
            assert t["exit_reason"] in ("stop", "target")
        # one position at a time
        for prev, nxt in zip(trades, trades[1:]):
            assert nxt["opened_ns"] >= prev["closed_ns"]
        assert results["total_points"] == pytest.approx(sum(t["pnl_points"] for t in trades))
        assert results["total_dollars"] == pytest.approx(results["total_points"] * 50.0)

    @pytest.mark.integration
    def test_limit_chase_mode(self, synthetic_bars):
        results, _ = run(synthetic_bars, **{"pivots.deviation_points": 5.0,
                                            "entry.mode": "limit_entry"})
        assert results["protocol"] == "limit_chase"
        assert results["signal_count"] == 0
        for t in results["trades"]:
            assert t["exit_reason"] in ("stop", "target")


class TestLoaders:
    def test_synthetic_path_order(self):
        assert list(synthetic_path(10.0, 12.0, 9.0, 11.0)) == [10.0, 9.0, 12.0, 11.0]
        assert list(synthetic_path(11.0, 12.0, 9.0, 10.0)) == [11.0, 12.0, 9.0, 10.0]

    def test_load_bars_csv_sorted(self, tmp_path):
        path = tmp_path / "bars.csv"
        path.write_text(
            "Timestamp,Open,High,Low,Close\n"
            "2024-01-08 14:32:00,3,4,2,3.5\n"
            "2024-01-08 14:31:00,1,2,0.5,1.5\n"
        )
        bars = load_bars(path)
        assert len(bars) == 2
        assert bars[0]["open"] == 1.0
        assert bars[1]["timestamp_ns"] - bars[0]["timestamp_ns"] == 60_000_000_000
        assert bars[0]["volume"] == 0.0

    def test_load_bars_requires_timestamp(self, tmp_path):
        path = tmp_path / "bars.csv"
        path.write_text("open,high,low,close\n1,2,0,1\n")
        with pytest.raises(ValueError):
            load_bars(path)
