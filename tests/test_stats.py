"""Tests for R-multiples and account statistics."""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from recon_core.contracts import Direction, Trade
from recon_core.stats import compute_account_stats, pnl_percentage, risk_multiple

T0 = datetime(2024, 3, 4, 14, 30, tzinfo=timezone.utc)


def _trade(pnl: float, entry: float = 100.0, qty: float = 10, tid: str = "t") -> Trade:
    return Trade(
        composite_id=tid,
        broker_trade_id=tid,
        account_id="ACC-1",
        symbol="MNQ",
        direction=Direction.LONG,
        quantity=qty,
        avg_entry_price=entry,
        avg_exit_price=entry,
        realized_pnl=pnl,
        fees=0.0,
        entry_timestamp=T0,
        exit_timestamp=T0,
    )


def test_risk_multiple_one_percent() -> None:
    # risk = 100 * 10 * 1% = 10
    assert risk_multiple(_trade(25.0)) == pytest.approx(2.5)
    assert risk_multiple(_trade(-10.0), fixed_risk_pct=2.0) == pytest.approx(-0.5)


def test_risk_multiple_none_without_risk() -> None:
    assert risk_multiple(_trade(5.0, entry=0.0)) is None


def test_pnl_percentage_of_cost_basis() -> None:
    # basis = 100 * 10 = 1000
    assert pnl_percentage(_trade(25.0)) == pytest.approx(2.5)
    assert pnl_percentage(_trade(-50.0)) == pytest.approx(-5.0)
    assert pnl_percentage(_trade(0.0)) == 0.0


def test_pnl_percentage_none_without_basis() -> None:
    assert pnl_percentage(_trade(5.0, entry=0.0)) is None
    assert pnl_percentage(_trade(0.0, entry=-1.0)) is None


def test_account_stats_aggregates() -> None:
    trades = [_trade(25.0, tid="a"), _trade(-10.0, tid="b"), _trade(0.0, tid="c"), _trade(5.0, tid="d")]
    s = compute_account_stats("ACC-1", trades, now=T0)
    assert s.total_trades == 4
    assert s.wins == 2
    assert s.losses == 1
    assert s.win_rate == pytest.approx(0.5)
    assert s.total_pnl == pytest.approx(20.0)
    assert s.total_r == pytest.approx(2.0)
    assert s.updated_at == T0


def test_account_stats_prefers_stored_r_multiple() -> None:
    t = replace(_trade(25.0), r_multiple=1.0)
    assert compute_account_stats("ACC-1", [t]).total_r == pytest.approx(1.0)


def test_account_stats_empty() -> None:
    s = compute_account_stats("ACC-1", [])
    assert s.total_trades == 0
    assert s.win_rate == 0.0
    assert s.total_pnl == 0.0
