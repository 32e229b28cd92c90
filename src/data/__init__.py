"""
Data layer: fetch broker fills, normalize raw records, persist reconciled trades.

Depends on recon_core.contracts for Fill and Trade; no dependency from recon_core back to data.
"""

from data.fetcher import FetchResult, FillSource, FillSourceError, StaticFillSource
from data.ingest import MalformedFillError, RawFillRecord, normalize_fill, normalize_fills
from data.trade_store import PersistenceError, SQLiteTradeStore, SyncCursor, TradeRepository

__all__ = [
    "FetchResult",
    "FillSource",
    "FillSourceError",
    "MalformedFillError",
    "PersistenceError",
    "RawFillRecord",
    "SQLiteTradeStore",
    "StaticFillSource",
    "SyncCursor",
    "TradeRepository",
    "normalize_fill",
    "normalize_fills",
]


def get_alpaca_fill_source(api_key: str, api_secret: str, *, paper: bool = True):
    """Lazy import to avoid requiring alpaca-py when not used."""
    from data.alpaca_fetcher import AlpacaFillSource

    return AlpacaFillSource(api_key, api_secret, paper=paper)
