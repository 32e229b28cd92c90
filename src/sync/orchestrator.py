"""
Sync orchestrator: one run per broker connection.

  IDLE -> FETCHING -> RECONCILING -> PERSISTING -> SUCCESS | ERROR

Window: first sync looks back first_sync_days (30); later syncs start
overlap_days (7) before the last successful sync. The overlap re-fetches
fills on purpose; the dedup layer makes that free, and it is what recovers
trades that straddled the previous window end.

The cursor (last_sync_at) only moves on SUCCESS, to the window end. Any
failure leaves it where it was, so the next run re-covers the same range.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterator, Sequence

from config.loader import ConnectionConfig
from config.recon_config import ReconConfig
from data.fetcher import FetchResult, FillSource, FillSourceError
from data.projectx_fetcher import ProjectXFillSource
from data.trade_store import STATUS_ERROR, STATUS_SUCCESS, PersistenceError, TradeRepository
from recon_core.contracts import OpenPositionSummary, Trade
from recon_core.reconciler import ReconcileResult, reconcile_fills
from recon_core.stats import AccountStats, compute_account_stats, pnl_percentage, risk_multiple
from sync.dedup import upsert_trades
from sync.errors import ReplicationError, SyncInProgressError
from sync.replication import NullReplicator, ReplicationNotice, TradeReplicator

if TYPE_CHECKING:
    from cli.structured_log import StructuredEventLogger
    from journal.writer import JournalWriter

logger = logging.getLogger("recon.sync")

IN_PROGRESS_MESSAGE = "sync already in progress"


class SyncState(str, Enum):
    IDLE = "IDLE"
    FETCHING = "FETCHING"
    RECONCILING = "RECONCILING"
    PERSISTING = "PERSISTING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


@dataclass
class SyncResult:
    """Outcome of one run for one connection."""

    connection_id: str
    account_id: str
    state: SyncState = SyncState.IDLE
    window_start: datetime | None = None
    window_end: datetime | None = None
    fills_fetched: int = 0
    fills_skipped: int = 0
    trades_reconciled: int = 0
    trades_inserted: int = 0
    trades_skipped: int = 0
    replication_failures: int = 0
    open_positions: list[OpenPositionSummary] = field(default_factory=list)
    stats: AccountStats | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.state is SyncState.SUCCESS


# ---------------------------------------------------------------------------
# Per-connection lock registry
# ---------------------------------------------------------------------------


class ConnectionLocks:
    """Process-wide registry: at most one in-flight run per connection id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, connection_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(connection_id, threading.Lock())

    @contextmanager
    def hold(self, connection_id: str, timeout: float = 0.0) -> Iterator[None]:
        """Hold the connection's lock; raise SyncInProgressError if not acquired within *timeout*."""
        lock = self._lock_for(connection_id)
        acquired = lock.acquire(timeout=timeout) if timeout > 0 else lock.acquire(blocking=False)
        if not acquired:
            raise SyncInProgressError(connection_id)
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, connection_id: str) -> bool:
        return self._lock_for(connection_id).locked()


_DEFAULT_LOCKS = ConnectionLocks()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FillSourceFactory = Callable[[ConnectionConfig], FillSource]


def default_fill_source_factory(conn: ConnectionConfig) -> FillSource:
    """Fresh client per run, built from the connection's broker type."""
    if conn.broker == "projectx":
        return ProjectXFillSource(
            conn.credentials.username,
            conn.credentials.api_key,
            service=conn.service or "topstepx",
            base_url=conn.base_url,
        )
    if conn.broker == "alpaca":
        from data import get_alpaca_fill_source

        return get_alpaca_fill_source(conn.credentials.api_key, conn.credentials.api_secret, paper=conn.paper)
    raise ValueError(f"Unsupported broker: {conn.broker}")


def sync_window(
    last_sync_at: datetime | None,
    now: datetime,
    *,
    first_sync_lookback: timedelta = timedelta(days=30),
    overlap: timedelta = timedelta(days=7),
) -> tuple[datetime, datetime]:
    """(start, end) for the next run."""
    if last_sync_at is None:
        return now - first_sync_lookback, now
    return last_sync_at - overlap, now


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SyncOrchestrator:
    """Runs fetch -> reconcile -> persist -> replicate -> stats for broker connections."""

    def __init__(
        self,
        repository: TradeRepository,
        recon_config: ReconConfig,
        *,
        source_factory: FillSourceFactory = default_fill_source_factory,
        replicator: TradeReplicator | None = None,
        broker_configs: dict[str, ReconConfig] | None = None,
        locks: ConnectionLocks | None = None,
        events: StructuredEventLogger | None = None,
        journal: JournalWriter | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repository
        self._recon_config = recon_config
        self._source_factory = source_factory
        self._replicator = replicator or NullReplicator()
        self._broker_configs = broker_configs or {}
        self._locks = locks or _DEFAULT_LOCKS
        self._events = events
        self._journal = journal
        self._clock = clock

    def config_for(self, broker: str) -> ReconConfig:
        return self._broker_configs.get(broker, self._recon_config)

    # -- public ---------------------------------------------------------

    def sync_connection(self, conn: ConnectionConfig) -> SyncResult:
        """One run for *conn*. Never raises for fetch/persist failures; see SyncResult.state."""
        cfg = self.config_for(conn.broker)
        try:
            with self._locks.hold(conn.id, cfg.sync.lock_timeout_seconds):
                return self._run(conn, cfg)
        except SyncInProgressError:
            logger.warning("[%s] %s; skipping this run", conn.id, IN_PROGRESS_MESSAGE)
            result = SyncResult(conn.id, conn.account_id, state=SyncState.ERROR, error=IN_PROGRESS_MESSAGE)
            if self._events:
                self._events.sync_failed(conn.id, IN_PROGRESS_MESSAGE, stage=SyncState.IDLE.value)
            return result

    def sync_all(self, connections: Sequence[ConnectionConfig], max_workers: int | None = None) -> list[SyncResult]:
        """Sync connections concurrently; results in input order."""
        if not connections:
            return []
        workers = max_workers or self._recon_config.sync.max_workers
        workers = max(1, min(workers, len(connections)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync") as pool:
            return list(pool.map(self.sync_connection, connections))

    # -- run ------------------------------------------------------------

    def _transition(self, conn: ConnectionConfig, result: SyncResult, state: SyncState) -> None:
        logger.info("[%s] %s -> %s", conn.id, result.state.value, state.value)
        result.state = state

    def _run(self, conn: ConnectionConfig, cfg: ReconConfig) -> SyncResult:
        result = SyncResult(conn.id, conn.account_id)
        try:
            cursor = self._repo.get_sync_cursor(conn.id)
        except PersistenceError as exc:
            return self._fail(conn, result, f"cursor read failed: {exc}")
        start, end = sync_window(
            cursor.last_sync_at if cursor else None,
            self._clock(),
            first_sync_lookback=cfg.sync.first_sync_lookback,
            overlap=cfg.sync.overlap,
        )
        result.window_start, result.window_end = start, end

        self._transition(conn, result, SyncState.FETCHING)
        if self._events:
            self._events.sync_start(conn.id, conn.broker, start.isoformat(), end.isoformat())
        try:
            fetched = self._fetch(conn, start, end)
        except (FillSourceError, ValueError, ImportError) as exc:
            return self._fail(conn, result, f"fetch failed: {exc}")
        result.fills_fetched = len(fetched.fills)
        result.fills_skipped = len(fetched.skipped_records)
        if self._events:
            self._events.fills_fetched(conn.id, len(fetched.fills), fetched.raw_count)

        self._transition(conn, result, SyncState.RECONCILING)
        reconciled = self._reconcile(conn, cfg, fetched)
        result.trades_reconciled = len(reconciled.trades)
        result.fills_skipped += len(reconciled.skipped)
        result.open_positions = list(reconciled.open_positions)
        if self._events:
            self._events.trades_reconciled(
                conn.id, len(reconciled.trades), len(reconciled.open_positions), len(reconciled.skipped)
            )

        self._transition(conn, result, SyncState.PERSISTING)
        try:
            upserted = upsert_trades(reconciled.trades, self._repo)
        except PersistenceError as exc:
            return self._fail(conn, result, f"persist failed: {exc}")
        result.trades_inserted = upserted.inserted_count
        result.trades_skipped = upserted.skipped
        if self._events:
            self._events.trades_persisted(conn.id, upserted.inserted_count, upserted.skipped)

        result.replication_failures = self._replicate(conn, upserted.inserted)

        try:
            result.stats = self._refresh_stats(conn)
            self._repo.upsert_connection_status(conn.id, end, STATUS_SUCCESS, None)
        except PersistenceError as exc:
            return self._fail(conn, result, f"persist failed: {exc}")

        self._transition(conn, result, SyncState.SUCCESS)
        self._record(conn, result, upserted.inserted)
        if self._events:
            self._events.sync_complete(
                conn.id, result.trades_inserted, result.trades_skipped, result.replication_failures
            )
        return result

    def _fetch(self, conn: ConnectionConfig, start: datetime, end: datetime) -> FetchResult:
        source = self._source_factory(conn)
        try:
            return source.fetch_fills(conn.account_id, start, end)
        finally:
            source.close()

    def _reconcile(self, conn: ConnectionConfig, cfg: ReconConfig, fetched: FetchResult) -> ReconcileResult:
        reconciled = reconcile_fills(fetched.fills, cfg, id_prefix=conn.broker)
        trades = [
            replace(t, r_multiple=risk_multiple(t, conn.fixed_risk_pct), pnl_percentage=pnl_percentage(t))
            for t in reconciled.trades
        ]
        return ReconcileResult(trades=trades, open_positions=reconciled.open_positions, skipped=reconciled.skipped)

    def _replicate(self, conn: ConnectionConfig, inserted: Sequence[Trade]) -> int:
        failures = 0
        for trade in inserted:
            notice = ReplicationNotice.from_trade(trade)
            try:
                self._replicator.replicate(notice)
            except ReplicationError as exc:
                failures += 1
                logger.warning("[%s] %s", conn.id, exc)
                if self._events:
                    self._events.replication_failed(conn.id, trade.broker_trade_id, str(exc))
            except Exception as exc:
                failures += 1
                logger.exception("[%s] replicator raised for %s", conn.id, trade.broker_trade_id)
                if self._events:
                    self._events.replication_failed(conn.id, trade.broker_trade_id, str(exc))
        return failures

    def _refresh_stats(self, conn: ConnectionConfig) -> AccountStats:
        """Recompute from every stored trade of the account, never incrementally."""
        history = self._repo.list_trades(conn.account_id)
        stats = compute_account_stats(conn.account_id, history, conn.fixed_risk_pct, now=self._clock())
        self._repo.save_account_stats(stats)
        return stats

    def _fail(self, conn: ConnectionConfig, result: SyncResult, message: str) -> SyncResult:
        stage = result.state.value
        logger.error("[%s] sync failed during %s: %s", conn.id, stage, message)
        self._transition(conn, result, SyncState.ERROR)
        result.error = message
        try:
            self._repo.upsert_connection_status(conn.id, None, STATUS_ERROR, message)
        except PersistenceError as exc:
            logger.error("[%s] could not record sync error: %s", conn.id, exc)
        self._record(conn, result, ())
        if self._events:
            self._events.sync_failed(conn.id, message, stage=stage)
        return result

    def _record(self, conn: ConnectionConfig, result: SyncResult, inserted: Sequence[Trade]) -> None:
        if self._journal is None:
            return
        for trade in inserted:
            self._journal.trade(trade, connection_id=conn.id)
        for pos in result.open_positions:
            self._journal.open_position(pos, connection_id=conn.id)
        self._journal.sync_run(result)
