"""
Deduplication and upsert: only trades the store has never seen are inserted.

Existing rows are never updated. A re-sync of an overlapping window re-derives
the same broker trade ids and skips them here.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable

from data.trade_store import TradeRepository
from recon_core.contracts import Trade

logger = logging.getLogger("recon.dedup")


@dataclass
class UpsertResult:
    inserted: list[Trade] = field(default_factory=list)
    skipped: int = 0

    @property
    def inserted_count(self) -> int:
        return len(self.inserted)


def stage_new_trades(trades: Iterable[Trade], repository: TradeRepository) -> tuple[list[Trade], int]:
    """Split *trades* into (new, skipped_count). Duplicates within the batch are staged once."""
    staged: list[Trade] = []
    seen: set[str] = set()
    skipped = 0
    for trade in trades:
        if trade.broker_trade_id in seen:
            skipped += 1
            continue
        seen.add(trade.broker_trade_id)
        if repository.find_by_broker_trade_id(trade.broker_trade_id) is not None:
            skipped += 1
            continue
        staged.append(trade)
    return staged, skipped


def upsert_trades(trades: Iterable[Trade], repository: TradeRepository) -> UpsertResult:
    """Insert new trades in one batch. Raises PersistenceError; nothing is written on failure."""
    staged, skipped = stage_new_trades(trades, repository)
    if staged:
        repository.insert_batch(staged)
    logger.info("Upsert: %d new, %d already stored", len(staged), skipped)
    return UpsertResult(inserted=staged, skipped=skipped)
