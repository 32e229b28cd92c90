"""Tests for the SQLite trade store: uniqueness, batches, cursors, stats."""

import sqlite3
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from data.trade_store import STATUS_ERROR, STATUS_SUCCESS, PersistenceError, SQLiteTradeStore
from recon_core.reconciler import reconcile_fills
from recon_core.stats import compute_account_stats


def _trades(make_fill, n: int = 2, account_id: str = "ACC-1", tag: str = ""):
    fills = []
    for i in range(n):
        fills.append(make_fill(f"{tag}{i}a", "BUY", 1, 100.0, i * 10, account_id=account_id))
        fills.append(make_fill(f"{tag}{i}b", "SELL", 1, 101.0 + i, i * 10 + 5, account_id=account_id, commission=0.5))
    return reconcile_fills(fills, id_prefix="projectx").trades


def test_insert_and_find(store: SQLiteTradeStore, make_fill) -> None:
    trades = _trades(make_fill)
    assert store.insert_batch(trades) == 2
    got = store.find_by_broker_trade_id(trades[0].broker_trade_id)
    assert got is not None
    assert got == trades[0]
    assert got.exit_levels[0].fill_id == "0b"
    assert store.find_by_broker_trade_id("missing") is None


def test_duplicate_broker_trade_id_rejected(store: SQLiteTradeStore, make_fill) -> None:
    trades = _trades(make_fill, n=1)
    store.insert_batch(trades)
    with pytest.raises(PersistenceError):
        store.insert_batch(trades)
    assert store.count_trades() == 1


def test_batch_is_all_or_nothing(store: SQLiteTradeStore, make_fill) -> None:
    first, second = _trades(make_fill)
    store.insert_batch([first])
    with pytest.raises(PersistenceError):
        store.insert_batch([second, first])
    assert store.count_trades() == 1
    assert store.find_by_broker_trade_id(second.broker_trade_id) is None


def test_empty_batch(store: SQLiteTradeStore) -> None:
    assert store.insert_batch([]) == 0


def test_list_trades_order_limit_and_account(store: SQLiteTradeStore, make_fill) -> None:
    store.insert_batch(_trades(make_fill, n=3))
    store.insert_batch(_trades(make_fill, n=1, account_id="ACC-2", tag="x"))
    all_acc1 = store.list_trades("ACC-1")
    assert len(all_acc1) == 3
    exits = [t.exit_timestamp for t in all_acc1]
    assert exits == sorted(exits)
    last_two = store.list_trades("ACC-1", limit=2)
    assert [t.broker_trade_id for t in last_two] == [t.broker_trade_id for t in all_acc1[1:]]
    assert store.count_trades() == 4
    assert store.count_trades("ACC-2") == 1


def test_sync_cursor_roundtrip(store: SQLiteTradeStore) -> None:
    assert store.get_sync_cursor("px-main") is None
    t1 = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)
    store.upsert_connection_status("px-main", t1, STATUS_SUCCESS, None)
    cur = store.get_sync_cursor("px-main")
    assert cur.last_sync_at == t1
    assert cur.last_sync_status == STATUS_SUCCESS
    assert cur.last_sync_error is None


def test_error_status_keeps_last_sync_at(store: SQLiteTradeStore) -> None:
    t1 = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)
    store.upsert_connection_status("px-main", t1, STATUS_SUCCESS, None)
    store.upsert_connection_status("px-main", None, STATUS_ERROR, "fetch failed: boom")
    cur = store.get_sync_cursor("px-main")
    assert cur.last_sync_at == t1
    assert cur.last_sync_status == STATUS_ERROR
    assert cur.last_sync_error == "fetch failed: boom"


def test_account_stats_roundtrip(store: SQLiteTradeStore, make_fill) -> None:
    now = datetime(2024, 3, 5, tzinfo=timezone.utc)
    stats = compute_account_stats("ACC-1", _trades(make_fill), now=now)
    store.save_account_stats(stats)
    assert store.get_account_stats("ACC-1") == stats
    assert store.get_account_stats("nobody") is None


def test_ping_and_path(tmp_path) -> None:
    s = SQLiteTradeStore(tmp_path / "nested" / "dir" / "t.db")
    assert s.ping() is True
    assert s.path.exists()


def test_pnl_percentage_persisted(store: SQLiteTradeStore, make_fill) -> None:
    trade = replace(_trades(make_fill, n=1)[0], pnl_percentage=0.5)
    store.insert_batch([trade])
    assert store.find_by_broker_trade_id(trade.broker_trade_id).pnl_percentage == 0.5


def test_existing_database_gains_pnl_percentage(tmp_path, make_fill) -> None:
    path = tmp_path / "old.db"
    SQLiteTradeStore(path)
    with sqlite3.connect(str(path)) as c:
        c.execute("ALTER TABLE trades DROP COLUMN pnl_percentage")
    s = SQLiteTradeStore(path)
    trade = _trades(make_fill, n=1)[0]
    s.insert_batch([trade])
    assert s.find_by_broker_trade_id(trade.broker_trade_id).pnl_percentage is None


def test_read_failures_raise_persistence_error(store: SQLiteTradeStore) -> None:
    with sqlite3.connect(str(store.path)) as c:
        c.execute("DROP TABLE trades")
        c.execute("DROP TABLE sync_cursors")
        c.execute("DROP TABLE account_stats")
    with pytest.raises(PersistenceError, match="no such table"):
        store.find_by_broker_trade_id("x")
    with pytest.raises(PersistenceError):
        store.list_trades("ACC-1")
    with pytest.raises(PersistenceError):
        store.count_trades()
    with pytest.raises(PersistenceError):
        store.get_sync_cursor("px-main")
    with pytest.raises(PersistenceError):
        store.get_account_stats("ACC-1")
