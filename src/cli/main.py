"""
CLI entry point: recon sync | run | status | trades | reconcile | health.

Every command loads config from --config (default config.yaml),
prints a human-readable summary, and logs sync runs to the journal.
"""

import json
import logging
import sys

import click
from dotenv import load_dotenv

from config import load_config

load_dotenv()

logger = logging.getLogger("recon")


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s  %(message)s",
        stream=sys.stderr,
    )


def _build_orchestrator(cfg):
    """Wire store, reconciliation config, replication, events and journal for *cfg*."""
    from cli.structured_log import StructuredEventLogger
    from config.recon_config import load_recon_config
    from data.trade_store import SQLiteTradeStore
    from journal.writer import JournalWriter
    from sync.orchestrator import SyncOrchestrator
    from sync.replication import build_replicator

    recon_path = cfg.recon_config_path or None
    recon_cfg = load_recon_config(recon_path)
    brokers = sorted({c.broker for c in cfg.connections})
    broker_cfgs = {b: load_recon_config(recon_path, broker=b) for b in brokers}

    events = StructuredEventLogger(
        enabled=cfg.alerting.structured_logs,
        webhook_url=cfg.alerting.webhook_url,
    )
    orchestrator = SyncOrchestrator(
        SQLiteTradeStore(cfg.store.path),
        recon_cfg,
        replicator=build_replicator(
            cfg.replication.enabled,
            cfg.replication.webhook_url,
            cfg.replication.timeout_seconds,
        ),
        broker_configs=broker_cfgs,
        events=events,
        journal=JournalWriter(cfg.journal.path, echo_stdout=cfg.journal.echo_stdout),
    )
    return orchestrator, events


@click.group()
@click.option("--config", "config_path", default="config.yaml", help="Path to config file.")
@click.pass_context
def cli(ctx: click.Context, config_path: str) -> None:
    """fill-recon: rebuild round-trip trades from broker fills and keep them in sync."""
    _setup_logging()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ---------- recon sync ----------


@cli.command()
@click.option("--connection", "connection_ids", multiple=True, help="Connection id to sync (repeatable). Default: all auto-sync connections.")
@click.pass_context
def sync(ctx: click.Context, connection_ids: tuple[str, ...]) -> None:
    """Run one sync for the selected connections and print a summary."""
    from cli.output import format_sync_result

    cfg = load_config(ctx.obj["config_path"])
    if connection_ids:
        try:
            connections = [cfg.connection(cid) for cid in connection_ids]
        except KeyError as exc:
            raise click.BadParameter(str(exc.args[0]), param_hint="--connection")
    else:
        connections = list(cfg.auto_sync_connections)

    if not connections:
        click.echo("No connections to sync. Add connections to the config file.")
        return

    orchestrator, _ = _build_orchestrator(cfg)
    results = orchestrator.sync_all(connections)
    for r in results:
        click.echo(format_sync_result(r))
    if not all(r.ok for r in results):
        raise SystemExit(1)


# ---------- recon run ----------


@cli.command()
@click.option("--interval", default=None, type=int, help="Seconds between syncs (default: scheduler.interval_seconds).")
@click.option("--once", is_flag=True, default=False, help="Run a single cycle and exit.")
@click.pass_context
def run(ctx: click.Context, interval: int | None, once: bool) -> None:
    """Sync all auto-sync connections on a fixed interval. Ctrl+C to stop."""
    from cli.scheduler import run_loop

    cfg = load_config(ctx.obj["config_path"])
    orchestrator, events = _build_orchestrator(cfg)
    run_loop(
        orchestrator,
        cfg.auto_sync_connections,
        interval or cfg.scheduler.interval_seconds,
        events=events,
        max_cycles=1 if once else None,
    )


# ---------- recon status ----------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show sync cursor and account stats per connection."""
    from cli.output import format_connection_status
    from data.trade_store import SQLiteTradeStore

    cfg = load_config(ctx.obj["config_path"])
    if not cfg.connections:
        click.echo("No connections configured.")
        return

    store = SQLiteTradeStore(cfg.store.path)
    for conn in cfg.connections:
        click.echo(format_connection_status(
            conn.id,
            conn.broker,
            conn.account_id,
            store.get_sync_cursor(conn.id),
            store.get_account_stats(conn.account_id),
        ))


# ---------- recon trades ----------


@cli.command()
@click.option("--account", "account_id", default=None, help="Only trades for this account id.")
@click.option("--limit", default=20, help="Number of most recent trades to show.")
@click.pass_context
def trades(ctx: click.Context, account_id: str | None, limit: int) -> None:
    """List persisted trades, oldest first."""
    from cli.output import format_trades
    from data.trade_store import SQLiteTradeStore

    cfg = load_config(ctx.obj["config_path"])
    store = SQLiteTradeStore(cfg.store.path)
    rows = store.list_trades(account_id, limit=limit)
    title = f"Trades for {account_id}" if account_id else "Trades"
    click.echo(format_trades(rows, title=title))


# ---------- recon reconcile ----------


@cli.command()
@click.argument("fills_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--broker", default=None, help="Broker type: id prefix and per-broker reconciliation overrides.")
@click.option("--account", "account_id", default="offline", help="Account id to assign to the fills.")
def reconcile(fills_file: str, broker: str | None, account_id: str) -> None:
    """Reconcile a JSON file of raw fill records offline. Nothing is persisted."""
    from cli.output import format_open_positions, format_skipped, format_trades
    from config.recon_config import load_recon_config
    from data.fetcher import FillSourceError
    from data.ingest import normalize_fills
    from data.projectx_fetcher import extract_records
    from recon_core.reconciler import reconcile_fills

    try:
        with open(fills_file) as f:
            payload = json.load(f)
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"{fills_file} is not valid JSON: {exc}")
    try:
        records = extract_records(payload)
    except FillSourceError as exc:
        raise click.ClickException(str(exc))

    recon_cfg = load_recon_config(broker=broker)
    fills, bad_records = normalize_fills(records, account_id, max_future_skew=recon_cfg.timestamps.max_future_skew)
    result = reconcile_fills(fills, recon_cfg, id_prefix=(broker or "").lower())

    click.echo(f"Reconciled {len(fills)} fill(s) from {fills_file} ({len(bad_records)} malformed record(s) skipped)")
    click.echo(format_trades(result.trades))
    click.echo(format_open_positions(result.open_positions))
    if result.skipped:
        click.echo(format_skipped(result.skipped))


# ---------- recon health ----------


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check system health: config, reconciliation config, trade store.

    Exit code 0 = healthy, 1 = unhealthy. Designed for Docker HEALTHCHECK.
    """
    checks: list[tuple[str, bool, str]] = []

    try:
        cfg = load_config(ctx.obj["config_path"])
        checks.append(("config", True, f"loaded ({len(cfg.connections)} connection(s))"))
    except Exception as e:
        checks.append(("config", False, str(e)))
        _print_health(checks)
        raise SystemExit(1)

    try:
        from config.recon_config import load_recon_config
        recon_cfg = load_recon_config(cfg.recon_config_path or None)
        checks.append(("recon_config", True, f"validated (version {recon_cfg.version})"))
    except Exception as e:
        checks.append(("recon_config", False, str(e)))

    try:
        from data.trade_store import SQLiteTradeStore
        store = SQLiteTradeStore(cfg.store.path)
        if store.ping():
            checks.append(("store", True, f"{store.count_trades()} trade(s) in {cfg.store.path}"))
        else:
            checks.append(("store", False, f"cannot query {cfg.store.path}"))
    except Exception as e:
        checks.append(("store", False, str(e)))

    missing = [
        c.id for c in cfg.connections
        if not (c.credentials.api_key and (c.credentials.username or c.credentials.api_secret))
    ]
    if missing:
        checks.append(("credentials", False, f"missing for {', '.join(missing)}"))
    else:
        checks.append(("credentials", True, f"present for {len(cfg.connections)} connection(s)"))

    _print_health(checks)
    healthy = all(ok for _, ok, _ in checks)
    raise SystemExit(0 if healthy else 1)


def _print_health(checks: list[tuple[str, bool, str]]) -> None:
    for name, ok, detail in checks:
        status = "OK" if ok else "FAIL"
        click.echo(f"  [{status}] {name}: {detail}")
    healthy = all(ok for _, ok, _ in checks)
    click.echo(f"\nHealth: {'HEALTHY' if healthy else 'UNHEALTHY'}")


if __name__ == "__main__":
    cli()
