"""
Data contracts for recon-core: Fill, FillSlice, ExitLevel, Trade, OpenPositionSummary.

recon-core consumes Fills (already normalized at the ingestion boundary) and
produces Trades. No I/O; these are plain dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Side(str, Enum):
    """Side of a single execution."""

    BUY = "BUY"
    SELL = "SELL"


class Direction(str, Enum):
    """Direction of a round-trip trade."""

    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def entry_side(self) -> Side:
        return Side.BUY if self is Direction.LONG else Side.SELL


class PnlSource(str, Enum):
    """Where a trade's realized P&L came from."""

    BROKER = "broker"
    DERIVED = "derived"


DEFAULT_VOID_STATUSES = frozenset({"VOID", "CANCELLED", "CANCELED", "REJECTED", "EXPIRED"})


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Fill:
    """One broker execution; timestamps in UTC. Never mutated, only consumed."""

    id: str
    account_id: str
    symbol: str
    side: Side
    quantity: float
    price: float
    timestamp: datetime
    realized_pnl: float | None = None
    commission: float = 0.0
    status: str = "FILLED"
    timestamp_inferred: bool = False

    @property
    def signed_quantity(self) -> float:
        """+quantity for buys, -quantity for sells."""
        return self.quantity if self.side is Side.BUY else -self.quantity

    def is_void(self, void_statuses: frozenset[str] = DEFAULT_VOID_STATUSES) -> bool:
        return self.status.strip().upper() in void_statuses


@dataclass(frozen=True)
class FillSlice:
    """The part of a fill matched into one position.

    A fill that closes one position and opens the opposite one is split in
    two slices; commission is pro-rated by quantity and the broker-reported
    P&L stays with the closing slice.
    """

    fill: Fill
    quantity: float
    commission: float
    realized_pnl: float | None = None

    @property
    def notional(self) -> float:
        return self.fill.price * self.quantity


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExitLevel:
    """One partial exit within a trade."""

    fill_id: str
    price: float
    quantity: float
    timestamp: datetime
    realized_pnl: float | None = None


@dataclass(frozen=True)
class Trade:
    """A completed round trip. Append-only: created once, never updated."""

    composite_id: str
    broker_trade_id: str
    account_id: str
    symbol: str
    direction: Direction
    quantity: float
    avg_entry_price: float
    avg_exit_price: float
    realized_pnl: float
    fees: float
    entry_timestamp: datetime
    exit_timestamp: datetime
    exit_levels: tuple[ExitLevel, ...] = ()
    fill_ids: tuple[str, ...] = ()
    pnl_source: PnlSource = PnlSource.BROKER
    derived_pnl: float = 0.0
    prices_inferred: bool = False
    r_multiple: float | None = None
    pnl_percentage: float | None = None

    @property
    def side(self) -> Side:
        return self.direction.entry_side

    @property
    def is_win(self) -> bool:
        return self.realized_pnl > 0


@dataclass(frozen=True)
class OpenPositionSummary:
    """A position still open at the end of a fetch window. Logged, never persisted."""

    account_id: str
    symbol: str
    direction: Direction
    open_quantity: float
    avg_entry_price: float
    opened_at: datetime
    last_activity_at: datetime
    fill_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class SkippedFill:
    """A fill rejected before matching (void, zero quantity, bad price)."""

    fill_id: str
    symbol: str
    reason: str
