"""
Position reconciler: unordered broker fills -> completed round-trip trades.

FIFO signed-position tracking, one self-contained loop per (account, symbol)
partition. Matching order is (timestamp, fill id) so that re-running over the
same fills always yields the same trades and the same broker trade ids.

Stages (matches the sync flow):
  1. drop void / zero-quantity / non-finite fills
  2. sort by (timestamp, natural fill id), partition by (account, symbol)
  3. walk each partition, opening, scaling, closing, and splitting overshoots
  4. resolve P&L per trade, then infer display prices where needed
Positions still open at the end are reported, not emitted.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Iterable

from recon_core.contracts import (
    DEFAULT_VOID_STATUSES,
    Direction,
    ExitLevel,
    Fill,
    FillSlice,
    OpenPositionSummary,
    SkippedFill,
    Trade,
)
from recon_core.identity import composite_trade_id, derive_broker_trade_id, fill_id_sort_key, ordered_unique
from recon_core.pnl import (
    DEFAULT_DIVERGENCE_THRESHOLD,
    DEFAULT_PRICE_DECIMALS,
    apply_price_fallback,
    resolve_realized_pnl,
)

if TYPE_CHECKING:
    from config.recon_config import ReconConfig

logger = logging.getLogger("recon.reconciler")

QTY_EPSILON = 1e-9


# ---------------------------------------------------------------------------
# Position (the only mutable state during reconciliation)
# ---------------------------------------------------------------------------


@dataclass
class Position:
    """Open exposure in one (account, symbol) partition.

    Invariant: open_quantity == sum(entry slice qty) - sum(exit slice qty).
    """

    direction: Direction
    opened_at: datetime
    last_activity_at: datetime
    open_quantity: float = 0.0
    entered_quantity: float = 0.0
    entry_notional: float = 0.0
    exit_notional: float = 0.0
    accumulated_fees: float = 0.0
    entry_fills: list[FillSlice] = field(default_factory=list)
    exit_fills: list[FillSlice] = field(default_factory=list)

    def add_entry(self, piece: FillSlice) -> None:
        self.entry_fills.append(piece)
        self.open_quantity += piece.quantity
        self.entered_quantity += piece.quantity
        self.entry_notional += piece.notional
        self.accumulated_fees += piece.commission
        self.last_activity_at = piece.fill.timestamp

    def add_exit(self, piece: FillSlice) -> None:
        self.exit_fills.append(piece)
        self.open_quantity -= piece.quantity
        self.exit_notional += piece.notional
        self.accumulated_fees += piece.commission
        self.last_activity_at = piece.fill.timestamp

    def broker_pnl(self) -> float | None:
        """Sum of broker-reported P&L on exits; None when no exit reported any."""
        reported = [s.realized_pnl for s in self.exit_fills if s.realized_pnl is not None]
        return sum(reported) if reported else None

    def fill_ids(self) -> list[str]:
        return ordered_unique(s.fill.id for s in self.entry_fills + self.exit_fills)


@dataclass(frozen=True)
class ReconcileResult:
    trades: list[Trade] = field(default_factory=list)
    open_positions: list[OpenPositionSummary] = field(default_factory=list)
    skipped: list[SkippedFill] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Partition loop
# ---------------------------------------------------------------------------


class PartitionReconciler:
    """FIFO matcher for one (account, symbol). Feed fills in matching order."""

    def __init__(
        self,
        account_id: str,
        symbol: str,
        *,
        id_prefix: str = "",
        divergence_threshold: float = DEFAULT_DIVERGENCE_THRESHOLD,
    ) -> None:
        self.account_id = account_id
        self.symbol = symbol
        self._id_prefix = id_prefix
        self._divergence_threshold = divergence_threshold
        self.net_pos: float = 0.0
        self.current: Position | None = None

    def process(self, fill: Fill) -> list[Trade]:
        """Apply one fill; return any trades it completed (at most one)."""
        emitted: list[Trade] = []
        remaining = fill.signed_quantity

        while abs(remaining) > QTY_EPSILON:
            if self.current is None:
                direction = Direction.LONG if remaining > 0 else Direction.SHORT
                self.current = Position(
                    direction=direction,
                    opened_at=fill.timestamp,
                    last_activity_at=fill.timestamp,
                )

            if self.net_pos == 0 or (remaining > 0) == (self.net_pos > 0):
                qty = abs(remaining)
                self.current.add_entry(self._slice(fill, qty, realized_pnl=None))
                self.net_pos += remaining
                remaining = 0.0
                continue

            qty = min(abs(remaining), abs(self.net_pos))
            self.current.add_exit(self._slice(fill, qty, realized_pnl=fill.realized_pnl))
            step = qty if remaining > 0 else -qty
            self.net_pos += step
            remaining -= step
            if abs(self.net_pos) <= QTY_EPSILON:
                self.net_pos = 0.0
                emitted.append(self._finalize())

        return emitted

    def open_position(self) -> OpenPositionSummary | None:
        pos = self.current
        if pos is None or pos.open_quantity <= QTY_EPSILON:
            return None
        return OpenPositionSummary(
            account_id=self.account_id,
            symbol=self.symbol,
            direction=pos.direction,
            open_quantity=pos.open_quantity,
            avg_entry_price=pos.entry_notional / pos.entered_quantity,
            opened_at=pos.opened_at,
            last_activity_at=pos.last_activity_at,
            fill_ids=tuple(pos.fill_ids()),
        )

    @staticmethod
    def _slice(fill: Fill, qty: float, realized_pnl: float | None) -> FillSlice:
        commission = fill.commission * (qty / fill.quantity)
        return FillSlice(fill=fill, quantity=qty, commission=commission, realized_pnl=realized_pnl)

    def _finalize(self) -> Trade:
        pos = self.current
        assert pos is not None
        qty = pos.entered_quantity
        avg_entry = pos.entry_notional / qty
        avg_exit = pos.exit_notional / qty
        resolution = resolve_realized_pnl(
            pos.direction,
            avg_entry,
            avg_exit,
            qty,
            pos.broker_pnl(),
            pos.accumulated_fees,
            threshold=self._divergence_threshold,
            label=f"{self.account_id}/{self.symbol}",
        )
        ids = pos.fill_ids()
        trade = Trade(
            composite_id=composite_trade_id(ids),
            broker_trade_id=derive_broker_trade_id(ids, self._id_prefix),
            account_id=self.account_id,
            symbol=self.symbol,
            direction=pos.direction,
            quantity=qty,
            avg_entry_price=avg_entry,
            avg_exit_price=avg_exit,
            realized_pnl=resolution.realized_pnl,
            fees=pos.accumulated_fees,
            entry_timestamp=pos.opened_at,
            exit_timestamp=pos.last_activity_at,
            exit_levels=tuple(
                ExitLevel(
                    fill_id=s.fill.id,
                    price=s.fill.price,
                    quantity=s.quantity,
                    timestamp=s.fill.timestamp,
                    realized_pnl=s.realized_pnl,
                )
                for s in pos.exit_fills
            ),
            fill_ids=tuple(ids),
            pnl_source=resolution.source,
            derived_pnl=resolution.derived_pnl,
        )
        self.current = None
        return trade


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def sort_fills(fills: Iterable[Fill]) -> list[Fill]:
    """Global matching order: timestamp, then natural fill id."""
    return sorted(fills, key=lambda f: (f.timestamp, fill_id_sort_key(f.id)))


def partition_fills(fills: Iterable[Fill]) -> dict[tuple[str, str], list[Fill]]:
    """Group by (account, symbol), preserving the incoming order inside each group."""
    groups: dict[tuple[str, str], list[Fill]] = {}
    for f in fills:
        groups.setdefault((f.account_id, f.symbol), []).append(f)
    return groups


def _skip_reason(fill: Fill, void_statuses: frozenset[str]) -> str | None:
    if fill.is_void(void_statuses):
        return f"void status {fill.status}"
    if not math.isfinite(fill.quantity) or fill.quantity <= 0:
        return f"invalid quantity {fill.quantity}"
    if not math.isfinite(fill.price):
        return f"invalid price {fill.price}"
    return None


def reconcile_fills(
    fills: Iterable[Fill],
    config: ReconConfig | None = None,
    *,
    id_prefix: str = "",
) -> ReconcileResult:
    """Turn one account's fills into completed trades.

    Parameters
    ----------
    fills:
        Fills in any order; may span several symbols (and accounts).
    config:
        Reconciliation settings (void statuses, divergence threshold, price
        inference). Defaults apply when omitted.
    id_prefix:
        Prefix for broker trade ids, usually the broker type.
    """
    void_statuses = DEFAULT_VOID_STATUSES
    threshold = DEFAULT_DIVERGENCE_THRESHOLD
    decimals = DEFAULT_PRICE_DECIMALS
    infer_prices = True
    if config is not None:
        void_statuses = config.fills.void_statuses
        threshold = config.pnl.divergence_threshold
        decimals = config.pnl.price_decimals
        infer_prices = config.pnl.infer_prices

    valid: list[Fill] = []
    skipped: list[SkippedFill] = []
    for f in fills:
        reason = _skip_reason(f, void_statuses)
        if reason is not None:
            logger.warning("Skipping fill %s (%s): %s", f.id, f.symbol, reason)
            skipped.append(SkippedFill(fill_id=f.id, symbol=f.symbol, reason=reason))
            continue
        valid.append(f)

    trades: list[Trade] = []
    open_positions: list[OpenPositionSummary] = []
    for (account_id, symbol), group in partition_fills(sort_fills(valid)).items():
        matcher = PartitionReconciler(
            account_id,
            symbol,
            id_prefix=id_prefix,
            divergence_threshold=threshold,
        )
        for f in group:
            trades.extend(matcher.process(f))
        still_open = matcher.open_position()
        if still_open is not None:
            logger.info(
                "Open %s position %s %s qty %g left for a later sync",
                still_open.direction.value,
                account_id,
                symbol,
                still_open.open_quantity,
            )
            open_positions.append(still_open)

    if infer_prices:
        trades = [apply_price_fallback(t, decimals=decimals) for t in trades]

    logger.info(
        "Reconciled %d fills into %d trades (%d open, %d skipped)",
        len(valid),
        len(trades),
        len(open_positions),
        len(skipped),
    )
    return ReconcileResult(trades=trades, open_positions=open_positions, skipped=skipped)
