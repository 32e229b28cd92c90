"""
Human-readable reconciliation output for the terminal.

Every CLI command uses these formatters. Journal receives the same data.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from recon_core.contracts import OpenPositionSummary, SkippedFill, Trade

if TYPE_CHECKING:
    from data.trade_store import SyncCursor
    from recon_core.stats import AccountStats
    from sync.orchestrator import SyncResult


def _fmt_qty(qty: float) -> str:
    return f"{qty:g}"


def _fmt_ts(ts) -> str:
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts is not None else "never"


def format_trade(t: Trade, index: int | None = None) -> str:
    """One trade: direction, size, prices, P&L and where the P&L came from."""
    tag = f"#{index} " if index is not None else ""
    flags = []
    if t.pnl_source.value == "derived":
        flags.append("derived P&L")
    if t.prices_inferred:
        flags.append("inferred prices")
    flag_str = f"  [{', '.join(flags)}]" if flags else ""
    r_str = f"  R {t.r_multiple:+.2f}" if t.r_multiple is not None else ""
    pct_str = f"  {t.pnl_percentage:+.2f}%" if t.pnl_percentage is not None else ""
    lines = [
        f"  {tag}{t.symbol} {t.direction.value} {_fmt_qty(t.quantity)} | "
        f"entry {t.avg_entry_price:.2f} -> exit {t.avg_exit_price:.2f} | "
        f"PnL ${t.realized_pnl:+,.2f} (fees ${t.fees:.2f}){pct_str}{r_str}{flag_str}",
        f"      {_fmt_ts(t.entry_timestamp)} -> {_fmt_ts(t.exit_timestamp)}  "
        f"exits: {len(t.exit_levels)}  id: {t.broker_trade_id}",
    ]
    return "\n".join(lines)


def format_trades(trades: Sequence[Trade], title: str = "Trades") -> str:
    lines = [f"=== {title} ({len(trades)}) ==="]
    if not trades:
        lines.append("  (none)")
    for i, t in enumerate(trades, 1):
        lines.append(format_trade(t, i))
    lines.append("===")
    return "\n".join(lines)


def format_open_positions(positions: Sequence[OpenPositionSummary]) -> str:
    if not positions:
        return "Open positions: none"
    lines = [f"Open positions ({len(positions)}):"]
    for p in positions:
        lines.append(
            f"  {p.symbol} {p.direction.value} {_fmt_qty(p.open_quantity)} @ avg {p.avg_entry_price:.2f} "
            f"(opened {_fmt_ts(p.opened_at)})"
        )
    return "\n".join(lines)


def format_skipped(skipped: Sequence[SkippedFill]) -> str:
    lines = [f"Skipped fills ({len(skipped)}):"]
    for s in skipped:
        lines.append(f"  {s.fill_id} ({s.symbol}): {s.reason}")
    return "\n".join(lines)


def format_sync_result(r: SyncResult) -> str:
    """Summary of one sync run."""
    if r.error:
        return f"[{r.connection_id}] {r.state.value}: {r.error}"
    window = f"{_fmt_ts(r.window_start)} -> {_fmt_ts(r.window_end)}"
    lines = [
        f"[{r.connection_id}] {r.state.value}  account {r.account_id}  window {window}",
        f"  Fills        : {r.fills_fetched} fetched, {r.fills_skipped} skipped",
        f"  Trades       : {r.trades_reconciled} reconciled, {r.trades_inserted} new, {r.trades_skipped} already stored",
        f"  Open         : {len(r.open_positions)} position(s)",
    ]
    if r.replication_failures:
        lines.append(f"  Replication  : {r.replication_failures} failure(s)")
    if r.stats is not None:
        lines.append(f"  {format_stats_line(r.stats)}")
    return "\n".join(lines)


def format_stats_line(s: AccountStats) -> str:
    return (
        f"Stats        : {s.total_trades} trades (W:{s.wins} / L:{s.losses}, {s.win_rate:.0%}) "
        f"PnL ${s.total_pnl:+,.2f}  R {s.total_r:+.2f}"
    )


def format_connection_status(
    connection_id: str,
    broker: str,
    account_id: str,
    cursor: SyncCursor | None,
    stats: AccountStats | None,
) -> str:
    lines = [f"=== {connection_id} ({broker}, account {account_id}) ==="]
    if cursor is None:
        lines.append("Last sync    : never")
    else:
        lines.append(f"Last sync    : {_fmt_ts(cursor.last_sync_at)}")
        lines.append(f"Last status  : {cursor.last_sync_status or '-'}")
        if cursor.last_sync_error:
            lines.append(f"Last error   : {cursor.last_sync_error}")
    lines.append(format_stats_line(stats) if stats else "Stats        : none yet")
    lines.append("===")
    return "\n".join(lines)
