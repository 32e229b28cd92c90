"""Tests for dedup/upsert: existing trades are skipped, never updated."""

from unittest.mock import MagicMock

import pytest

from data.trade_store import PersistenceError
from recon_core.reconciler import reconcile_fills
from sync.dedup import stage_new_trades, upsert_trades


@pytest.fixture
def trades(make_fill):
    fills = [
        make_fill("1", "BUY", 1, 100.0, 0),
        make_fill("2", "SELL", 1, 102.0, 1),
        make_fill("3", "SELL", 2, 102.0, 2),
        make_fill("4", "BUY", 2, 101.0, 3),
    ]
    return reconcile_fills(fills, id_prefix="projectx").trades


def test_first_upsert_inserts_all(store, trades) -> None:
    r = upsert_trades(trades, store)
    assert r.inserted_count == 2
    assert r.skipped == 0
    assert store.count_trades() == 2


def test_second_upsert_skips_existing(store, trades) -> None:
    upsert_trades(trades, store)
    original = store.find_by_broker_trade_id(trades[0].broker_trade_id)
    r = upsert_trades(trades, store)
    assert r.inserted == []
    assert r.skipped == 2
    assert store.count_trades() == 2
    assert store.find_by_broker_trade_id(trades[0].broker_trade_id) == original


def test_duplicates_within_batch_staged_once(store, trades) -> None:
    staged, skipped = stage_new_trades([trades[0], trades[0], trades[1]], store)
    assert [t.broker_trade_id for t in staged] == [trades[0].broker_trade_id, trades[1].broker_trade_id]
    assert skipped == 1


def test_persistence_error_propagates(trades) -> None:
    repo = MagicMock()
    repo.find_by_broker_trade_id.return_value = None
    repo.insert_batch.side_effect = PersistenceError("database is locked")
    with pytest.raises(PersistenceError):
        upsert_trades(trades, repo)


def test_nothing_new_skips_insert(trades) -> None:
    repo = MagicMock()
    repo.find_by_broker_trade_id.return_value = trades[0]
    r = upsert_trades(trades, repo)
    repo.insert_batch.assert_not_called()
    assert r.skipped == 2
