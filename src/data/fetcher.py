"""
Fetch broker fills for one account over a time window. Configurable adapter; sync.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, Sequence

from recon_core.contracts import Fill


class FillSourceError(Exception):
    """Fetch failed (network, auth, or an unexpected response envelope)."""


@dataclass
class FetchResult:
    """Result of a fetch: normalized fills plus how many raw records came back."""

    fills: list[Fill]
    account_id: str
    start: datetime
    end: datetime
    raw_count: int = 0
    skipped_records: list[str] = field(default_factory=list)


class FillSource(Protocol):
    """Protocol for fill sources. Implement per broker (ProjectX, Alpaca, etc.)."""

    def fetch_fills(self, account_id: str, start: datetime, end: datetime) -> FetchResult:
        """Fetch fills with timestamps in [start, end]; normalize to UTC. Raises FillSourceError."""
        ...

    def close(self) -> None:
        ...


class StaticFillSource:
    """Serves a fixed list of fills; for tests and offline reconciliation."""

    def __init__(self, fills: Sequence[Fill] = (), *, error: Exception | None = None) -> None:
        self._fills = list(fills)
        self._error = error
        self.calls: list[tuple[str, datetime, datetime]] = []
        self.closed = False

    def fetch_fills(self, account_id: str, start: datetime, end: datetime) -> FetchResult:
        self.calls.append((account_id, start, end))
        if self._error is not None:
            raise self._error
        fills = [f for f in self._fills if f.account_id == account_id and start <= f.timestamp <= end]
        return FetchResult(fills=fills, account_id=account_id, start=start, end=end, raw_count=len(fills))

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "StaticFillSource":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
