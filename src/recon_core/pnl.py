"""
P&L reconciliation: broker-reported realized P&L vs price-derived P&L.

The broker figure is authoritative. The derived figure is only a
consistency check: weighted-average prices lose information, and futures
P&L depends on a point value the fill stream does not carry. Divergence is
logged, never corrected.

Price inference: some brokers report a net P&L per trade with identical
entry and exit prices. Two distinct display prices are synthesized around
the reported price; the P&L itself is never touched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from recon_core.contracts import Direction, PnlSource, Trade

logger = logging.getLogger("recon.pnl")

DEFAULT_DIVERGENCE_THRESHOLD = 1.0
DEFAULT_PRICE_DECIMALS = 2


@dataclass(frozen=True)
class PnlResolution:
    """Net realized P&L (after fees) and how it was obtained."""

    realized_pnl: float
    source: PnlSource
    derived_pnl: float
    broker_pnl: float | None = None
    divergence: float | None = None


def derived_pnl(direction: Direction, avg_entry: float, avg_exit: float, quantity: float) -> float:
    """Gross P&L from prices alone."""
    if direction is Direction.LONG:
        return (avg_exit - avg_entry) * quantity
    return (avg_entry - avg_exit) * quantity


def resolve_realized_pnl(
    direction: Direction,
    avg_entry: float,
    avg_exit: float,
    quantity: float,
    broker_pnl: float | None,
    fees: float,
    *,
    threshold: float = DEFAULT_DIVERGENCE_THRESHOLD,
    label: str = "",
) -> PnlResolution:
    """Prefer the broker's gross P&L; fall back to the derived figure when none was reported."""
    derived = derived_pnl(direction, avg_entry, avg_exit, quantity)
    if broker_pnl is None:
        return PnlResolution(
            realized_pnl=derived - fees,
            source=PnlSource.DERIVED,
            derived_pnl=derived,
        )

    divergence = broker_pnl - derived
    if abs(divergence) > threshold:
        logger.warning(
            "P&L divergence%s: broker %.2f vs derived %.2f (diff %.2f); keeping broker figure",
            f" on {label}" if label else "",
            broker_pnl,
            derived,
            divergence,
        )
    return PnlResolution(
        realized_pnl=broker_pnl - fees,
        source=PnlSource.BROKER,
        derived_pnl=derived,
        broker_pnl=broker_pnl,
        divergence=divergence,
    )


def infer_entry_exit_prices(
    direction: Direction,
    price: float,
    quantity: float,
    pnl: float,
    *,
    decimals: int = DEFAULT_PRICE_DECIMALS,
) -> tuple[float, float]:
    """Split one reported price into (entry, exit) by half the implied move.

    half = |pnl| / quantity / 2. Exit sits above entry for a winning long or
    a losing short, below it otherwise.
    """
    if quantity <= 0 or pnl == 0:
        return price, price
    half = abs(pnl) / quantity / 2
    exit_above_entry = (pnl > 0) == (direction is Direction.LONG)
    if exit_above_entry:
        entry, exit_price = price - half, price + half
    else:
        entry, exit_price = price + half, price - half
    return round(entry, decimals), round(exit_price, decimals)


def needs_price_fallback(trade: Trade) -> bool:
    return (
        trade.avg_entry_price == trade.avg_exit_price
        and trade.realized_pnl != 0
        and trade.quantity > 0
        and trade.avg_entry_price > 0
    )


def apply_price_fallback(trade: Trade, *, decimals: int = DEFAULT_PRICE_DECIMALS) -> Trade:
    """Return *trade* with synthesized display prices when entry == exit but P&L != 0."""
    if not needs_price_fallback(trade):
        return trade
    entry, exit_price = infer_entry_exit_prices(
        trade.direction,
        trade.avg_entry_price,
        trade.quantity,
        trade.realized_pnl,
        decimals=decimals,
    )
    logger.warning(
        "Entry and exit price both %.4f on %s %s with P&L %.2f; inferred entry %.2f / exit %.2f",
        trade.avg_entry_price,
        trade.symbol,
        trade.direction.value,
        trade.realized_pnl,
        entry,
        exit_price,
    )
    return replace(trade, avg_entry_price=entry, avg_exit_price=exit_price, prices_inferred=True)
