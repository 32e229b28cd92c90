"""Tests for P&L resolution and display-price inference."""

from datetime import datetime, timezone

import pytest

from recon_core.contracts import Direction, PnlSource, Trade
from recon_core.pnl import (
    apply_price_fallback,
    derived_pnl,
    infer_entry_exit_prices,
    needs_price_fallback,
    resolve_realized_pnl,
)

T0 = datetime(2024, 3, 4, 14, 30, tzinfo=timezone.utc)


def _trade(direction: Direction, entry: float, exit_price: float, pnl: float, qty: float = 10) -> Trade:
    return Trade(
        composite_id="1_2",
        broker_trade_id="projectx_abc",
        account_id="ACC-1",
        symbol="MNQ",
        direction=direction,
        quantity=qty,
        avg_entry_price=entry,
        avg_exit_price=exit_price,
        realized_pnl=pnl,
        fees=0.0,
        entry_timestamp=T0,
        exit_timestamp=T0,
    )


# ---------------------------------------------------------------------------
# derived / resolved P&L
# ---------------------------------------------------------------------------


def test_derived_pnl_long_and_short() -> None:
    assert derived_pnl(Direction.LONG, 100.0, 108.0, 10) == pytest.approx(80.0)
    assert derived_pnl(Direction.SHORT, 100.0, 108.0, 10) == pytest.approx(-80.0)


def test_broker_pnl_preferred_fees_subtracted() -> None:
    r = resolve_realized_pnl(Direction.LONG, 100.0, 101.0, 1, broker_pnl=1.0, fees=0.25)
    assert r.source is PnlSource.BROKER
    assert r.realized_pnl == pytest.approx(0.75)
    assert r.divergence == pytest.approx(0.0)


def test_derived_used_when_broker_silent() -> None:
    r = resolve_realized_pnl(Direction.SHORT, 50.0, 45.0, 2, broker_pnl=None, fees=1.0)
    assert r.source is PnlSource.DERIVED
    assert r.realized_pnl == pytest.approx(9.0)
    assert r.broker_pnl is None


def test_broker_zero_pnl_is_still_broker() -> None:
    r = resolve_realized_pnl(Direction.LONG, 100.0, 101.0, 1, broker_pnl=0.0, fees=0.0, threshold=5.0)
    assert r.source is PnlSource.BROKER
    assert r.realized_pnl == 0.0


# ---------------------------------------------------------------------------
# price inference
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "direction, pnl, expected",
    [
        (Direction.LONG, 50.0, (97.5, 102.5)),
        (Direction.LONG, -50.0, (102.5, 97.5)),
        (Direction.SHORT, 50.0, (102.5, 97.5)),
        (Direction.SHORT, -50.0, (97.5, 102.5)),
    ],
)
def test_infer_prices_sign_convention(direction: Direction, pnl: float, expected: tuple[float, float]) -> None:
    assert infer_entry_exit_prices(direction, 100.0, 10, pnl) == expected


def test_infer_prices_rounding() -> None:
    entry, exit_price = infer_entry_exit_prices(Direction.LONG, 100.0, 3, 10.0)
    assert entry == 98.33
    assert exit_price == 101.67


def test_fallback_never_changes_pnl() -> None:
    t = apply_price_fallback(_trade(Direction.LONG, 100.0, 100.0, 50.0))
    assert t.realized_pnl == 50.0
    assert (t.avg_entry_price, t.avg_exit_price) == (97.5, 102.5)
    assert t.prices_inferred is True


def test_fallback_not_needed() -> None:
    distinct = _trade(Direction.LONG, 100.0, 101.0, 10.0)
    flat = _trade(Direction.LONG, 100.0, 100.0, 0.0)
    assert not needs_price_fallback(distinct)
    assert not needs_price_fallback(flat)
    assert apply_price_fallback(distinct) is distinct
    assert apply_price_fallback(flat) is flat
