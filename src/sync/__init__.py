"""
Sync pipeline: fetch fills, reconcile, dedup-insert, replicate, refresh stats.
"""

from sync.dedup import UpsertResult, upsert_trades
from sync.errors import ReplicationError, SyncInProgressError
from sync.orchestrator import ConnectionLocks, SyncOrchestrator, SyncResult, SyncState, sync_window
from sync.replication import NullReplicator, ReplicationNotice, TradeReplicator, WebhookReplicator

__all__ = [
    "ConnectionLocks",
    "NullReplicator",
    "ReplicationError",
    "ReplicationNotice",
    "SyncInProgressError",
    "SyncOrchestrator",
    "SyncResult",
    "SyncState",
    "TradeReplicator",
    "UpsertResult",
    "WebhookReplicator",
    "sync_window",
    "upsert_trades",
]
