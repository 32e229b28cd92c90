"""
Replication notices: tell a downstream copy-trade system about new trades.

The replicator is fire-and-forget from the sync's point of view: a failure
is logged and counted, and the trade stays persisted.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Protocol

import requests

from recon_core.contracts import Trade
from sync.errors import ReplicationError

logger = logging.getLogger("recon.replication")


@dataclass(frozen=True)
class ReplicationNotice:
    """Entry side and average entry price of a newly persisted trade."""

    account_id: str
    symbol: str
    side: str
    quantity: float
    price: float
    broker_trade_id: str

    @classmethod
    def from_trade(cls, trade: Trade) -> "ReplicationNotice":
        return cls(
            account_id=trade.account_id,
            symbol=trade.symbol,
            side=trade.side.value.lower(),
            quantity=trade.quantity,
            price=trade.avg_entry_price,
            broker_trade_id=trade.broker_trade_id,
        )


class TradeReplicator(Protocol):
    def replicate(self, notice: ReplicationNotice) -> None:
        """Deliver one notice. Raises ReplicationError."""
        ...


class NullReplicator:
    """Replication disabled; notices are dropped."""

    def replicate(self, notice: ReplicationNotice) -> None:
        logger.debug("Replication disabled, dropping notice for %s", notice.broker_trade_id)


class WebhookReplicator:
    """POST each notice as JSON to a webhook URL."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        session: requests.Session | None = None,
    ) -> None:
        if not url.strip():
            raise ValueError("Replication webhook URL is required")
        self._url = url.strip()
        self._timeout = timeout
        self._session = session or requests.Session()

    def replicate(self, notice: ReplicationNotice) -> None:
        try:
            response = self._session.post(self._url, json=asdict(notice), timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ReplicationError(f"Replication of {notice.broker_trade_id} failed: {exc}") from exc

    def close(self) -> None:
        self._session.close()


def build_replicator(enabled: bool, webhook_url: str, timeout: float = 5.0) -> TradeReplicator:
    if enabled and webhook_url.strip():
        return WebhookReplicator(webhook_url, timeout=timeout)
    return NullReplicator()
