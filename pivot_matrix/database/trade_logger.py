"""Trade Logger — journal of closed trades, signals and loss halts.

Subscribes to the event bus and keeps everything in memory. When a DSN is
configured, flush_to_db_sync() writes the journal to PostgreSQL at run end.
"""

from __future__ import annotations

import logging

import numpy as np

from pivot_matrix.core.types import EventType
from pivot_matrix.core.data_types import Event

logger = logging.getLogger(__name__)

TRADE_COLUMNS = (
    "run_id", "instrument", "direction", "pivot_price", "entry_price", "exit_price",
    "initial_stop", "final_stop", "target_price", "quantity", "pnl_points",
    "exit_reason", "breakeven_set", "opened_ns", "closed_ns",
)

HALT_COLUMNS = ("run_id", "instrument", "period", "pnl_points", "limit_points", "timestamp_ns")


class TradeLogger:
    def __init__(
        self,
        dsn: str | None = None,
        instrument: str = "",
        run_id: str = "",
    ) -> None:
        self._dsn = dsn
        self._instrument = instrument
        self._run_id = run_id
        self._trades: list[dict] = []
        self._signals: list[dict] = []
        self._halts: list[dict] = []

    @property
    def trades(self) -> list[dict]:
        return self._trades

    @property
    def signals(self) -> list[dict]:
        return self._signals

    @property
    def halts(self) -> list[dict]:
        return self._halts

    def attach(self, event_bus) -> None:
        event_bus.subscribe(EventType.POSITION_CLOSED, self._on_position_closed)
        event_bus.subscribe(EventType.ENTRY_SIGNAL, self._on_signal)
        event_bus.subscribe(EventType.TRADING_HALTED, self._on_halted)

    def _on_position_closed(self, event: Event) -> None:
        self.log_trade(dict(event.payload))

    def _on_signal(self, event: Event) -> None:
        self._signals.append({"timestamp_ns": event.timestamp_ns, **event.payload})

    def _on_halted(self, event: Event) -> None:
        self._halts.append({
            "period": event.payload.get("period"),
            "pnl_points": event.payload.get("pnl_points"),
            "limit_points": event.payload.get("limit"),
            "timestamp_ns": event.timestamp_ns,
        })

    def log_trade(self, trade: dict) -> None:
        self._trades.append(trade)

    def flush_to_db_sync(self) -> int:
        """Write in-memory trades and halts to PostgreSQL. Returns records written."""
        if not self._dsn:
            logger.info("No DSN — skipping DB flush (%d trades in memory)", len(self._trades))
            return 0

        import psycopg

        count = 0
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    for trade in self._trades:
                        row = self._row(trade, TRADE_COLUMNS)
                        try:
                            cur.execute(self._insert_sql("pivot_trades", TRADE_COLUMNS), row)
                            count += 1
                        except psycopg.Error:
                            logger.exception("Failed to insert trade closed at %s", row.get("closed_ns"))
                    for halt in self._halts:
                        cur.execute(self._insert_sql("pivot_halts", HALT_COLUMNS),
                                    self._row(halt, HALT_COLUMNS))
                        count += 1
                conn.commit()
                logger.info("Flushed %d records to PostgreSQL", count)
        except psycopg.Error:
            logger.exception("Failed to flush to PostgreSQL")

        return count

    def get_trade_summary(self) -> dict:
        """Summary stats from logged trades."""
        if not self._trades:
            return {"total_trades": 0, "halts": len(self._halts)}

        points = [t.get("pnl_points", 0.0) for t in self._trades]
        wins = [p for p in points if p > 0]
        losses = [p for p in points if p < 0]
        return {
            "total_trades": len(self._trades),
            "wins": len(wins),
            "losses": len(losses),
            "win_rate": len(wins) / len(self._trades),
            "total_points": sum(points),
            "avg_points": sum(points) / len(points),
            "largest_loss": min(points),
            "exit_reasons": self._exit_reason_distribution(),
            "halts": len(self._halts),
        }

    def _row(self, record: dict, columns: tuple[str, ...]) -> dict:
        base = {"run_id": self._run_id, "instrument": self._instrument}
        base.update(record)
        return {col: self._clean_value(base.get(col)) for col in columns}

    @staticmethod
    def _insert_sql(table: str, columns: tuple[str, ...]) -> str:
        cols = ", ".join(columns)
        params = ", ".join(f"%({c})s" for c in columns)
        return f"INSERT INTO {table} ({cols}) VALUES ({params})"

    @staticmethod
    def _clean_value(v):
        """Convert numpy scalars to Python natives for psycopg."""
        if isinstance(v, np.integer):
            return int(v)
        if isinstance(v, np.floating):
            return float(v)
        if isinstance(v, np.bool_):
            return bool(v)
        return v

    def _exit_reason_distribution(self) -> dict:
        dist: dict[str, int] = {}
        for t in self._trades:
            reason = t.get("exit_reason") or "unknown"
            dist[reason] = dist.get(reason, 0) + 1
        return dist
