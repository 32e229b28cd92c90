"""
Exception taxonomy for a sync run.

FillSourceError and MalformedFillError live at the data boundary,
PersistenceError with the store; they are re-exported here so callers can
catch everything sync-related from one place.
"""

from data.fetcher import FillSourceError
from data.ingest import MalformedFillError
from data.trade_store import PersistenceError


class ReplicationError(Exception):
    """Notifying the downstream replication system failed. Logged and counted, never fatal."""


class SyncInProgressError(Exception):
    """Another run holds the lock for this connection."""

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"sync already in progress for {connection_id}")
        self.connection_id = connection_id


__all__ = [
    "FillSourceError",
    "MalformedFillError",
    "PersistenceError",
    "ReplicationError",
    "SyncInProgressError",
]
