"""Tests for journal writer. Append-only JSON lines."""

import json
import tempfile
from pathlib import Path

from journal.writer import JournalWriter
from recon_core.reconciler import reconcile_fills
from sync.orchestrator import SyncResult, SyncState


def test_journal_writer_append_only(make_fill) -> None:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".jsonl", delete=False) as f:
        path = Path(f.name)
    try:
        result = reconcile_fills(
            [
                make_fill("1", "BUY", 2, 100.0, 0),
                make_fill("2", "SELL", 2, 101.0, 1, realized_pnl=2.0),
                make_fill("3", "SELL", 1, 102.0, 2),
            ],
            id_prefix="projectx",
        )
        j = JournalWriter(path)
        j.trade(result.trades[0], connection_id="px-main")
        j.open_position(result.open_positions[0], connection_id="px-main")
        with open(path) as f:
            lines = f.readlines()
        assert len(lines) == 2
        r0 = json.loads(lines[0])
        assert r0["event"] == "trade"
        assert r0["direction"] == "LONG"
        assert r0["pnl"] == 2.0
        assert r0["pnl_source"] == "broker"
        assert r0["connection_id"] == "px-main"
        assert r0["entry_ts"].startswith("2024-03-04T14:30:00")
        r1 = json.loads(lines[1])
        assert r1["event"] == "open_position"
        assert r1["direction"] == "SHORT"
        assert r1["fill_ids"] == ["3"]
    finally:
        path.unlink(missing_ok=True)


def test_journal_sync_run(tmp_path: Path) -> None:
    j = JournalWriter(tmp_path / "sub" / "journal.jsonl")
    j.sync_run(SyncResult("px-main", "ACC-1", state=SyncState.ERROR, error="fetch failed: x"))
    j.sync_run(SyncResult("px-main", "ACC-1", state=SyncState.SUCCESS, trades_inserted=2))
    records = [json.loads(l) for l in j.path.read_text().splitlines()]
    assert [r["state"] for r in records] == ["ERROR", "SUCCESS"]
    assert records[0]["error"] == "fetch failed: x"
    assert records[1]["trades_inserted"] == 2
    assert records[1]["window_start"] is None


def test_journal_echo_stdout(tmp_path: Path, capsys) -> None:
    j = JournalWriter(tmp_path / "journal.jsonl", echo_stdout=True)
    j.sync_run(SyncResult("px-main", "ACC-1"))
    assert '"event": "sync_run"' in capsys.readouterr().out
