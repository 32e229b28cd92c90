"""
Sync scheduler: fixed-interval loop over auto-sync connections.

Each tick syncs every auto-sync connection concurrently; one connection
failing never stops the others or the loop. Ctrl+C shuts down cleanly.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Sequence

import click

if TYPE_CHECKING:
    from cli.structured_log import StructuredEventLogger
    from config.loader import ConnectionConfig
    from sync.orchestrator import SyncOrchestrator, SyncResult

logger = logging.getLogger("recon.scheduler")

MIN_INTERVAL_SECONDS = 10


def next_run_at(last_started: datetime, interval_seconds: int, now: datetime) -> datetime:
    """Next tick on the fixed grid from *last_started*; a tick that ran long skips missed slots."""
    step = timedelta(seconds=interval_seconds)
    candidate = last_started + step
    if candidate > now:
        return candidate
    missed = int((now - last_started) / step)
    return last_started + step * (missed + 1)


def run_cycle(
    orchestrator: SyncOrchestrator,
    connections: Sequence[ConnectionConfig],
    echo: Callable[[str], None] = click.echo,
) -> list[SyncResult]:
    """One scheduler tick: sync all connections and print a one-line summary each."""
    from cli.output import format_sync_result

    results = orchestrator.sync_all(connections)
    for r in results:
        echo(format_sync_result(r))
    return results


def run_loop(
    orchestrator: SyncOrchestrator,
    connections: Sequence[ConnectionConfig],
    interval_seconds: int,
    *,
    events: StructuredEventLogger | None = None,
    max_cycles: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> int:
    """
    Main loop: sync, sleep until the next tick, repeat.
    Returns the number of completed cycles.
    """
    interval = max(MIN_INTERVAL_SECONDS, interval_seconds)
    cycles = 0

    if not connections:
        click.echo("No auto-sync connections configured. Nothing to do.")
        return 0

    click.echo(f"Sync scheduler started: {len(connections)} connection(s), every {interval}s  |  Ctrl+C to stop\n")

    try:
        while max_cycles is None or cycles < max_cycles:
            started = clock()
            run_cycle(orchestrator, connections)
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break

            now = clock()
            nxt = next_run_at(started, interval, now)
            wait = max(0.0, (nxt - now).total_seconds())
            click.echo(f"[{now:%H:%M:%S} UTC] Next sync at {nxt:%H:%M:%S} UTC (sleeping {wait:.0f}s)")
            sleep(wait)

    except KeyboardInterrupt:
        click.echo(f"\n\nShutting down after {cycles} cycle(s). Goodbye.")

    if events:
        events.shutdown(cycles)
    return cycles
