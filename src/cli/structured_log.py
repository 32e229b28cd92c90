"""
Structured JSON event logger for sync runs.

Emits one JSON object per line to stderr. Events are designed to be
parsed by log aggregators (Grafana Loki, CloudWatch, ELK).

Optional webhook: when configured, alert events (trades_persisted,
sync_failed, replication_failed) are POSTed to the URL.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
import urllib.request
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("recon.events")

ALERT_EVENTS = frozenset({"trades_persisted", "sync_failed", "replication_failed"})


class StructuredEventLogger:
    """Emit structured JSON events to stderr and optional webhook. Safe to share across sync threads."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        webhook_url: str = "",
        stream: Any = None,
        service: str = "fill-recon",
    ) -> None:
        self._enabled = enabled
        self._webhook_url = webhook_url.strip()
        self._stream = stream or sys.stderr
        self._service = service
        self._lock = threading.Lock()

    def _emit(self, event_type: str, connection_id: str | None = None, **fields: Any) -> dict:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            "service": self._service,
            **({"connection": connection_id} if connection_id is not None else {}),
            **fields,
        }
        if self._enabled:
            with self._lock:
                self._stream.write(json.dumps(record) + "\n")
                self._stream.flush()

        if self._webhook_url and event_type in ALERT_EVENTS:
            self._post_webhook(record)

        return record

    def _post_webhook(self, record: dict) -> None:
        try:
            data = json.dumps(record).encode("utf-8")
            req = urllib.request.Request(
                self._webhook_url,
                data=data,
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            urllib.request.urlopen(req, timeout=5)
        except Exception as exc:
            logger.warning("Webhook POST failed: %s", exc)

    def sync_start(self, connection_id: str, broker: str, window_start: str, window_end: str) -> dict:
        return self._emit(
            "sync_start",
            connection_id,
            broker=broker,
            window_start=window_start,
            window_end=window_end,
        )

    def fills_fetched(self, connection_id: str, fills: int, raw_records: int) -> dict:
        return self._emit("fills_fetched", connection_id, fills=fills, raw_records=raw_records)

    def trades_reconciled(self, connection_id: str, trades: int, open_positions: int, skipped_fills: int) -> dict:
        return self._emit(
            "trades_reconciled",
            connection_id,
            trades=trades,
            open_positions=open_positions,
            skipped_fills=skipped_fills,
        )

    def trades_persisted(self, connection_id: str, inserted: int, skipped: int) -> dict:
        return self._emit("trades_persisted", connection_id, inserted=inserted, skipped=skipped)

    def sync_complete(self, connection_id: str, inserted: int, skipped: int, replication_failures: int) -> dict:
        return self._emit(
            "sync_complete",
            connection_id,
            inserted=inserted,
            skipped=skipped,
            replication_failures=replication_failures,
        )

    def sync_failed(self, connection_id: str, message: str, stage: str = "") -> dict:
        return self._emit("sync_failed", connection_id, message=message, stage=stage)

    def replication_failed(self, connection_id: str, broker_trade_id: str, message: str) -> dict:
        return self._emit("replication_failed", connection_id, broker_trade_id=broker_trade_id, message=message)

    def shutdown(self, runs: int) -> dict:
        return self._emit("shutdown", runs=runs)
