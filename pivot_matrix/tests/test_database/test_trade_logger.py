"""Tests for TradeLogger — event capture, summary, row shaping."""

import numpy as np

from pivot_matrix.database.trade_logger import TradeLogger, TRADE_COLUMNS
from pivot_matrix.core.event_bus import EventBus
from pivot_matrix.core.types import EventType


def closed(pnl, reason="target"):
    return dict(direction="SHORT", pivot_price=100.0, entry_price=98.6, exit_price=98.6 - pnl,
                pnl_points=pnl, exit_reason=reason, quantity=1)


class TestTradeLogger:
    def test_captures_bus_events(self):
        bus = EventBus()
        tl = TradeLogger(instrument="ES")
        tl.attach(bus)
        bus.emit(EventType.ENTRY_SIGNAL, 1, "test", direction="SHORT", pivot_price=100.0)
        bus.emit(EventType.POSITION_CLOSED, 2, "test", **closed(15.0))
        bus.emit(EventType.TRADING_HALTED, 3, "test", period="daily", pnl_points=-25.0, limit=20.0)
        assert len(tl.signals) == 1
        assert tl.trades[0]["pnl_points"] == 15.0
        assert tl.halts == [{"period": "daily", "pnl_points": -25.0, "limit_points": 20.0,
                             "timestamp_ns": 3}]

    def test_summary(self):
        tl = TradeLogger()
        tl.log_trade(closed(15.0))
        tl.log_trade(closed(-10.0, "stop"))
        tl.log_trade(closed(-10.0, "stop"))
        summary = tl.get_trade_summary()
        assert summary["total_trades"] == 3
        assert summary["wins"] == 1
        assert summary["total_points"] == -5.0
        assert summary["largest_loss"] == -10.0
        assert summary["exit_reasons"] == {"target": 1, "stop": 2}

    def test_empty_summary(self):
        assert TradeLogger().get_trade_summary() == {"total_trades": 0, "halts": 0}

    def test_flush_without_dsn_is_noop(self):
        tl = TradeLogger()
        tl.log_trade(closed(15.0))
        assert tl.flush_to_db_sync() == 0

    def test_row_converts_numpy_and_fills_run_fields(self):
        tl = TradeLogger(instrument="NQ", run_id="r1")
        row = tl._row({"pnl_points": np.float64(2.5), "quantity": np.int64(2)}, TRADE_COLUMNS)
        assert row["instrument"] == "NQ"
        assert row["run_id"] == "r1"
        assert type(row["pnl_points"]) is float
        assert type(row["quantity"]) is int
        assert row["exit_reason"] is None

    def test_insert_sql(self):
        sql = TradeLogger._insert_sql("pivot_halts", ("run_id", "period"))
        assert sql == "INSERT INTO pivot_halts (run_id, period) VALUES (%(run_id)s, %(period)s)"
