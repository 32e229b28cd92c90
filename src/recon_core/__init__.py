"""
recon-core: fills in, trades out. Pure logic, no I/O.

Modules:
  contracts  - Fill, Trade, ExitLevel, OpenPositionSummary
  timestamps - raw broker timestamps -> UTC datetimes
  identity   - composite and broker trade ids
  reconciler - FIFO position matching per (account, symbol)
  pnl        - broker vs derived P&L, display price inference
  stats      - R-multiples and account aggregates
"""

from recon_core.contracts import (
    Direction,
    ExitLevel,
    Fill,
    OpenPositionSummary,
    PnlSource,
    Side,
    SkippedFill,
    Trade,
)
from recon_core.reconciler import ReconcileResult, reconcile_fills
from recon_core.stats import AccountStats, compute_account_stats, risk_multiple

__all__ = [
    "AccountStats",
    "Direction",
    "ExitLevel",
    "Fill",
    "OpenPositionSummary",
    "PnlSource",
    "ReconcileResult",
    "Side",
    "SkippedFill",
    "Trade",
    "compute_account_stats",
    "reconcile_fills",
    "risk_multiple",
]
