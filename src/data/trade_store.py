"""
Persist reconciled trades, sync cursors and account stats (SQLite). Timestamps in UTC.

broker_trade_id is UNIQUE: the storage constraint is the last line of
defense against two runs inserting the same trade.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, Sequence

from recon_core.contracts import Direction, ExitLevel, PnlSource, Trade
from recon_core.stats import AccountStats

logger = logging.getLogger("recon.store")

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


class PersistenceError(Exception):
    """A read or write failed (constraint violation, locked or unreachable database)."""


@dataclass(frozen=True)
class SyncCursor:
    connection_id: str
    last_sync_at: datetime | None
    last_sync_status: str | None
    last_sync_error: str | None
    updated_at: datetime


class TradeRepository(Protocol):
    """Persistence collaborator used by the dedup layer and the orchestrator."""

    def find_by_broker_trade_id(self, broker_trade_id: str) -> Trade | None: ...

    def insert_batch(self, trades: Sequence[Trade]) -> int: ...

    def upsert_connection_status(
        self,
        connection_id: str,
        last_sync_at: datetime | None,
        status: str,
        error: str | None,
    ) -> None: ...

    def get_sync_cursor(self, connection_id: str) -> SyncCursor | None: ...

    def list_trades(self, account_id: str | None = None, limit: int | None = None) -> list[Trade]: ...

    def save_account_stats(self, stats: AccountStats) -> None: ...

    def get_account_stats(self, account_id: str) -> AccountStats | None: ...


def _utc_iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


def _parse_ts(raw: str | None) -> datetime | None:
    if raw is None:
        return None
    ts = datetime.fromisoformat(raw)
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


_TRADE_COLUMNS = (
    "broker_trade_id, composite_id, account_id, symbol, direction, quantity, "
    "avg_entry_price, avg_exit_price, realized_pnl, fees, entry_ts_utc, exit_ts_utc, "
    "fill_ids, pnl_source, derived_pnl, prices_inferred, r_multiple, pnl_percentage"
)


class SQLiteTradeStore:
    """SQLite-backed trade repository. One file per path; one connection per operation."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def path(self) -> Path:
        return self._path

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._path), timeout=10.0)

    def _init_schema(self) -> None:
        with self._conn() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS trades (
                    broker_trade_id TEXT NOT NULL UNIQUE,
                    composite_id TEXT NOT NULL,
                    account_id TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    quantity REAL NOT NULL,
                    avg_entry_price REAL NOT NULL,
                    avg_exit_price REAL NOT NULL,
                    realized_pnl REAL NOT NULL,
                    fees REAL NOT NULL,
                    entry_ts_utc TEXT NOT NULL,
                    exit_ts_utc TEXT NOT NULL,
                    fill_ids TEXT NOT NULL,
                    pnl_source TEXT NOT NULL,
                    derived_pnl REAL NOT NULL,
                    prices_inferred INTEGER NOT NULL DEFAULT 0,
                    r_multiple REAL,
                    pnl_percentage REAL,
                    created_at TEXT NOT NULL
                )
                """
            )
            columns = {r[1] for r in c.execute("PRAGMA table_info(trades)")}
            if "pnl_percentage" not in columns:
                c.execute("ALTER TABLE trades ADD COLUMN pnl_percentage REAL")
            c.execute("CREATE INDEX IF NOT EXISTS idx_trades_account ON trades (account_id, exit_ts_utc)")
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS exit_levels (
                    broker_trade_id TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    fill_id TEXT NOT NULL,
                    price REAL NOT NULL,
                    quantity REAL NOT NULL,
                    ts_utc TEXT NOT NULL,
                    realized_pnl REAL,
                    PRIMARY KEY (broker_trade_id, seq)
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_cursors (
                    connection_id TEXT PRIMARY KEY,
                    last_sync_at TEXT,
                    last_sync_status TEXT,
                    last_sync_error TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS account_stats (
                    account_id TEXT PRIMARY KEY,
                    total_trades INTEGER NOT NULL,
                    wins INTEGER NOT NULL,
                    losses INTEGER NOT NULL,
                    total_r REAL NOT NULL,
                    total_pnl REAL NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    def _row_to_trade(self, c: sqlite3.Connection, row: tuple) -> Trade:
        levels = c.execute(
            "SELECT fill_id, price, quantity, ts_utc, realized_pnl FROM exit_levels "
            "WHERE broker_trade_id = ? ORDER BY seq",
            (row[0],),
        ).fetchall()
        return Trade(
            broker_trade_id=row[0],
            composite_id=row[1],
            account_id=row[2],
            symbol=row[3],
            direction=Direction(row[4]),
            quantity=row[5],
            avg_entry_price=row[6],
            avg_exit_price=row[7],
            realized_pnl=row[8],
            fees=row[9],
            entry_timestamp=_parse_ts(row[10]),
            exit_timestamp=_parse_ts(row[11]),
            fill_ids=tuple(json.loads(row[12])),
            pnl_source=PnlSource(row[13]),
            derived_pnl=row[14],
            prices_inferred=bool(row[15]),
            r_multiple=row[16],
            pnl_percentage=row[17],
            exit_levels=tuple(
                ExitLevel(fill_id=l[0], price=l[1], quantity=l[2], timestamp=_parse_ts(l[3]), realized_pnl=l[4])
                for l in levels
            ),
        )

    def find_by_broker_trade_id(self, broker_trade_id: str) -> Trade | None:
        try:
            with self._conn() as c:
                row = c.execute(
                    f"SELECT {_TRADE_COLUMNS} FROM trades WHERE broker_trade_id = ?",
                    (broker_trade_id,),
                ).fetchone()
                return self._row_to_trade(c, row) if row else None
        except sqlite3.Error as exc:
            raise PersistenceError(f"Lookup of trade {broker_trade_id} failed: {exc}") from exc

    def insert_batch(self, trades: Sequence[Trade]) -> int:
        """Insert all trades in one transaction. All-or-nothing; raises PersistenceError."""
        if not trades:
            return 0
        created_at = datetime.now(timezone.utc).isoformat()
        try:
            with self._conn() as c:
                for t in trades:
                    c.execute(
                        f"INSERT INTO trades ({_TRADE_COLUMNS}, created_at) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            t.broker_trade_id,
                            t.composite_id,
                            t.account_id,
                            t.symbol,
                            t.direction.value,
                            t.quantity,
                            t.avg_entry_price,
                            t.avg_exit_price,
                            t.realized_pnl,
                            t.fees,
                            _utc_iso(t.entry_timestamp),
                            _utc_iso(t.exit_timestamp),
                            json.dumps(list(t.fill_ids)),
                            t.pnl_source.value,
                            t.derived_pnl,
                            int(t.prices_inferred),
                            t.r_multiple,
                            t.pnl_percentage,
                            created_at,
                        ),
                    )
                    c.executemany(
                        "INSERT INTO exit_levels (broker_trade_id, seq, fill_id, price, quantity, ts_utc, realized_pnl) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        [
                            (t.broker_trade_id, i, l.fill_id, l.price, l.quantity, _utc_iso(l.timestamp), l.realized_pnl)
                            for i, l in enumerate(t.exit_levels)
                        ],
                    )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Batch insert of {len(trades)} trades failed: {exc}") from exc
        logger.info("Inserted %d trades", len(trades))
        return len(trades)

    def list_trades(self, account_id: str | None = None, limit: int | None = None) -> list[Trade]:
        """Trades in ascending exit time (most recent *limit* when limit is given)."""
        q = f"SELECT {_TRADE_COLUMNS} FROM trades"
        params: list = []
        if account_id is not None:
            q += " WHERE account_id = ?"
            params.append(account_id)
        q += " ORDER BY exit_ts_utc DESC, broker_trade_id DESC"
        if limit is not None:
            q += " LIMIT ?"
            params.append(limit)
        try:
            with self._conn() as c:
                rows = c.execute(q, params).fetchall()
                trades = [self._row_to_trade(c, r) for r in rows]
        except sqlite3.Error as exc:
            raise PersistenceError(f"Listing trades failed: {exc}") from exc
        trades.reverse()
        return trades

    def count_trades(self, account_id: str | None = None) -> int:
        try:
            with self._conn() as c:
                if account_id is None:
                    return c.execute("SELECT COUNT(*) FROM trades").fetchone()[0]
                return c.execute("SELECT COUNT(*) FROM trades WHERE account_id = ?", (account_id,)).fetchone()[0]
        except sqlite3.Error as exc:
            raise PersistenceError(f"Counting trades failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Sync cursors
    # ------------------------------------------------------------------

    def upsert_connection_status(
        self,
        connection_id: str,
        last_sync_at: datetime | None,
        status: str,
        error: str | None,
    ) -> None:
        """Record a run outcome. last_sync_at=None keeps the stored value."""
        now = datetime.now(timezone.utc).isoformat()
        ts = _utc_iso(last_sync_at) if last_sync_at is not None else None
        try:
            with self._conn() as c:
                c.execute(
                    """
                    INSERT INTO sync_cursors (connection_id, last_sync_at, last_sync_status, last_sync_error, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(connection_id) DO UPDATE SET
                        last_sync_at = COALESCE(excluded.last_sync_at, sync_cursors.last_sync_at),
                        last_sync_status = excluded.last_sync_status,
                        last_sync_error = excluded.last_sync_error,
                        updated_at = excluded.updated_at
                    """,
                    (connection_id, ts, status, error, now),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Updating sync status for {connection_id} failed: {exc}") from exc

    def get_sync_cursor(self, connection_id: str) -> SyncCursor | None:
        try:
            with self._conn() as c:
                row = c.execute(
                    "SELECT connection_id, last_sync_at, last_sync_status, last_sync_error, updated_at "
                    "FROM sync_cursors WHERE connection_id = ?",
                    (connection_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Reading sync cursor for {connection_id} failed: {exc}") from exc
        if row is None:
            return None
        return SyncCursor(
            connection_id=row[0],
            last_sync_at=_parse_ts(row[1]),
            last_sync_status=row[2],
            last_sync_error=row[3],
            updated_at=_parse_ts(row[4]),
        )

    # ------------------------------------------------------------------
    # Account stats
    # ------------------------------------------------------------------

    def save_account_stats(self, stats: AccountStats) -> None:
        try:
            with self._conn() as c:
                c.execute(
                    "INSERT OR REPLACE INTO account_stats "
                    "(account_id, total_trades, wins, losses, total_r, total_pnl, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        stats.account_id,
                        stats.total_trades,
                        stats.wins,
                        stats.losses,
                        stats.total_r,
                        stats.total_pnl,
                        _utc_iso(stats.updated_at),
                    ),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Saving stats for {stats.account_id} failed: {exc}") from exc

    def get_account_stats(self, account_id: str) -> AccountStats | None:
        try:
            with self._conn() as c:
                row = c.execute(
                    "SELECT account_id, total_trades, wins, losses, total_r, total_pnl, updated_at "
                    "FROM account_stats WHERE account_id = ?",
                    (account_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Reading stats for {account_id} failed: {exc}") from exc
        if row is None:
            return None
        return AccountStats(
            account_id=row[0],
            total_trades=row[1],
            wins=row[2],
            losses=row[3],
            total_r=row[4],
            total_pnl=row[5],
            updated_at=_parse_ts(row[6]),
        )

    def ping(self) -> bool:
        """True when the database file can be opened and queried."""
        try:
            with self._conn() as c:
                c.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            return False
        return True
