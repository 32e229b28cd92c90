"""
Account statistics over the persisted trade history.

Always recomputed from the full history, never incrementally: a re-sync of
an overlapping window must not double-count.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from recon_core.contracts import Trade

DEFAULT_FIXED_RISK_PCT = 1.0


@dataclass(frozen=True)
class AccountStats:
    account_id: str
    total_trades: int
    wins: int
    losses: int
    total_r: float
    total_pnl: float
    updated_at: datetime

    @property
    def win_rate(self) -> float:
        """Wins as a fraction of all trades (0.0 when there are none)."""
        return self.wins / self.total_trades if self.total_trades else 0.0


def risk_multiple(trade: Trade, fixed_risk_pct: float = DEFAULT_FIXED_RISK_PCT) -> float | None:
    """R-multiple against a fixed percentage of entry notional.

    risk = avg_entry * quantity * fixed_risk_pct / 100; None when risk <= 0.
    """
    risk_amount = trade.avg_entry_price * trade.quantity * fixed_risk_pct / 100
    if risk_amount <= 0:
        return None
    return trade.realized_pnl / risk_amount


def pnl_percentage(trade: Trade) -> float | None:
    """Return on cost basis (avg_entry * quantity) in percent; None when the basis is not positive."""
    cost_basis = trade.avg_entry_price * trade.quantity
    if cost_basis <= 0:
        return None
    if trade.realized_pnl == 0:
        return 0.0
    return trade.realized_pnl / cost_basis * 100


def compute_account_stats(
    account_id: str,
    trades: Iterable[Trade],
    fixed_risk_pct: float = DEFAULT_FIXED_RISK_PCT,
    now: datetime | None = None,
) -> AccountStats:
    total = wins = losses = 0
    total_r = total_pnl = 0.0
    for t in trades:
        total += 1
        total_pnl += t.realized_pnl
        if t.realized_pnl > 0:
            wins += 1
        elif t.realized_pnl < 0:
            losses += 1
        r = t.r_multiple if t.r_multiple is not None else risk_multiple(t, fixed_risk_pct)
        if r is not None:
            total_r += r
    return AccountStats(
        account_id=account_id,
        total_trades=total,
        wins=wins,
        losses=losses,
        total_r=total_r,
        total_pnl=total_pnl,
        updated_at=now or datetime.now(timezone.utc),
    )
