"""
Sync journal: append-only JSON lines. One line per persisted trade, open position, and sync run.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from recon_core.contracts import OpenPositionSummary, Trade

if TYPE_CHECKING:
    from sync.orchestrator import SyncResult


def _serialize(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if hasattr(obj, "__dict__") and not isinstance(obj, type):
        return {k: _serialize(v) for k, v in vars(obj).items() if not k.startswith("_")}
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize(x) for x in obj]
    return obj


class JournalWriter:
    """Append-only journal. Each line is a JSON object with event type and payload."""

    def __init__(self, path: str | Path, *, echo_stdout: bool = False) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._echo = echo_stdout
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _write(self, event_type: str, payload: dict) -> None:
        record = {"ts_utc": datetime.now(timezone.utc).isoformat(), "event": event_type, **payload}
        line = json.dumps(_serialize(record)) + "\n"
        with self._lock, open(self._path, "a") as f:
            f.write(line)
        if self._echo:
            print(line.rstrip())

    def trade(self, trade: Trade, **extra: Any) -> None:
        self._write(
            "trade",
            {
                "broker_trade_id": trade.broker_trade_id,
                "composite_id": trade.composite_id,
                "account_id": trade.account_id,
                "symbol": trade.symbol,
                "direction": trade.direction,
                "qty": trade.quantity,
                "entry_price": trade.avg_entry_price,
                "exit_price": trade.avg_exit_price,
                "pnl": trade.realized_pnl,
                "fees": trade.fees,
                "pnl_source": trade.pnl_source,
                "prices_inferred": trade.prices_inferred,
                "r_multiple": trade.r_multiple,
                "pnl_pct": trade.pnl_percentage,
                "entry_ts": trade.entry_timestamp,
                "exit_ts": trade.exit_timestamp,
                "exit_levels": len(trade.exit_levels),
                **extra,
            },
        )

    def open_position(self, position: OpenPositionSummary, **extra: Any) -> None:
        self._write("open_position", {**vars(position), **extra})

    def sync_run(self, result: SyncResult, **extra: Any) -> None:
        self._write(
            "sync_run",
            {
                "connection_id": result.connection_id,
                "account_id": result.account_id,
                "state": result.state,
                "window_start": result.window_start,
                "window_end": result.window_end,
                "fills_fetched": result.fills_fetched,
                "fills_skipped": result.fills_skipped,
                "trades_reconciled": result.trades_reconciled,
                "trades_inserted": result.trades_inserted,
                "trades_skipped": result.trades_skipped,
                "open_positions": len(result.open_positions),
                "replication_failures": result.replication_failures,
                "error": result.error,
                **extra,
            },
        )
