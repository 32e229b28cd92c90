"""Tests for the ingestion boundary: raw broker records -> Fill."""

import logging
from datetime import datetime, timezone

import pytest

from data.ingest import MalformedFillError, normalize_fill, normalize_fills, parse_side
from recon_core.contracts import Side
from recon_core.reconciler import reconcile_fills

NOW = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)


def test_projectx_shaped_record() -> None:
    record = {
        "id": 9001,
        "accountId": 555,
        "contractId": "CON.F.US.MNQ.H24",
        "creationTimestamp": "2024-03-01T14:30:05.123+00:00",
        "price": 18000.25,
        "profitAndLoss": 12.5,
        "fees": 0.74,
        "side": 1,
        "size": 2,
        "voided": False,
        "orderId": 77,
    }
    fill = normalize_fill(record, "555", now=NOW)
    assert fill.id == "9001"
    assert fill.account_id == "555"
    assert fill.symbol == "CON.F.US.MNQ.H24"
    assert fill.side is Side.SELL
    assert fill.quantity == 2
    assert fill.price == 18000.25
    assert fill.realized_pnl == 12.5
    assert fill.commission == pytest.approx(0.74)
    assert fill.status == "FILLED"
    assert fill.timestamp == datetime(2024, 3, 1, 14, 30, 5, 123000, tzinfo=timezone.utc)
    assert fill.timestamp_inferred is False


def test_extractor_priority() -> None:
    record = {
        "executionId": "E1",
        "fillId": "F1",
        "symbol": "ES",
        "contractName": "ESH4",
        "action": "Buy",
        "Size": 3,
        "quantity": 99,
        "fillPrice": 5000,
        "executedPrice": 4999,
        "PnL": 1.0,
        "realizedPnl": 2.0,
        "timestamp": 1709303405,
    }
    fill = normalize_fill(record, "A", now=NOW)
    assert fill.id == "E1"
    assert fill.symbol == "ES"
    assert fill.side is Side.BUY
    assert fill.quantity == 3
    assert fill.price == 5000
    assert fill.realized_pnl == 1.0
    assert fill.realized_pnl is not None


def test_negative_size_is_absolute() -> None:
    fill = normalize_fill({"id": "1", "symbol": "X", "side": "S", "qty": -4, "price": 1}, "A", now=NOW)
    assert fill.quantity == 4
    assert fill.side is Side.SELL


@pytest.mark.parametrize(
    "raw, expected",
    [(0, Side.BUY), ("0", Side.BUY), ("Buy", Side.BUY), ("b", Side.BUY), (1, Side.SELL), ("SELL", Side.SELL), ("s", Side.SELL)],
)
def test_parse_side(raw, expected: Side) -> None:
    assert parse_side(raw) is expected


@pytest.mark.parametrize("raw", [None, 2, "hold", True])
def test_parse_side_rejects(raw) -> None:
    with pytest.raises(MalformedFillError):
        parse_side(raw)


@pytest.mark.parametrize(
    "record, message",
    [
        ({"symbol": "X", "side": 0, "size": 1, "price": 1}, "missing fill id"),
        ({"id": "1", "side": 0, "size": 1, "price": 1}, "missing symbol"),
        ({"id": "1", "symbol": "X", "side": 0, "price": 1}, "missing quantity"),
        ({"id": "1", "symbol": "X", "side": 0, "size": 1, "price": "abc"}, "price is not a number"),
    ],
)
def test_malformed_records(record: dict, message: str) -> None:
    with pytest.raises(MalformedFillError, match=message):
        normalize_fill(record, "A", now=NOW)


def test_bad_timestamp_falls_back_to_now() -> None:
    fill = normalize_fill({"id": "1", "symbol": "X", "side": 0, "size": 1, "price": 1, "timestamp": "soon"}, "A", now=NOW)
    assert fill.timestamp == NOW
    assert fill.timestamp_inferred is True


def test_status_normalized() -> None:
    fill = normalize_fill({"id": "1", "symbol": "X", "side": 0, "size": 1, "price": 1, "status": " cancelled "}, "A", now=NOW)
    assert fill.status == "CANCELLED"
    assert fill.is_void()


def test_normalize_fills_skips_bad_records(caplog) -> None:
    records = [
        {"id": "1", "symbol": "X", "side": 0, "size": 1, "price": 10},
        {"symbol": "X", "side": 0, "size": 1, "price": 10},
        "not a record",
        {"id": "2", "symbol": "X", "side": 1, "size": 1, "price": 11},
    ]
    with caplog.at_level(logging.WARNING, logger="recon.ingest"):
        fills, skipped = normalize_fills(records, "A", now=NOW)
    assert [f.id for f in fills] == ["1", "2"]
    assert len(skipped) == 2
    assert "record 1" in skipped[0]
    assert "record 2" in skipped[1]
    assert "Skipping raw fill" in caplog.text


def test_unparseable_timestamp_still_produces_trade() -> None:
    records = [
        {"id": "1", "symbol": "X", "side": "Buy", "size": 1, "price": 10, "creationTimestamp": "2024-03-04T10:00:00Z"},
        {"id": "2", "symbol": "X", "side": "Sell", "size": 1, "price": 11, "creationTimestamp": "??"},
    ]
    fills, _ = normalize_fills(records, "A", now=NOW)
    result = reconcile_fills(fills)
    assert len(result.trades) == 1
    assert result.trades[0].exit_timestamp == NOW


def test_corrupt_timestamps_do_not_abort_batch() -> None:
    records = [
        {"id": "²", "symbol": "X", "side": 0, "size": 1, "price": 10, "creationTimestamp": "²"},
        {"id": "2", "symbol": "X", "side": 1, "size": 1, "price": 11, "creationTimestamp": "9" * 400},
    ]
    fills, skipped = normalize_fills(records, "A", now=NOW)
    assert [f.id for f in fills] == ["²", "2"]
    assert skipped == []
    assert all(f.timestamp == NOW and f.timestamp_inferred for f in fills)
    result = reconcile_fills(fills)
    assert len(result.trades) == 1
