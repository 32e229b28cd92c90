"""
Alpaca fill source: implements FillSource using the alpaca-py TradingClient.

Alpaca exposes orders, not executions. Each closed order with a non-zero
filled quantity becomes one fill (filled_avg_price, filled_at). Orders are
paged in ascending submission order until a short page comes back.
"""

import logging
from datetime import datetime
from typing import Any

from data.fetcher import FetchResult, FillSourceError
from data.ingest import normalize_fills

logger = logging.getLogger("recon.alpaca")

PAGE_LIMIT = 500


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def order_to_record(order: Any) -> dict[str, Any] | None:
    """Alpaca Order -> raw fill record; None when nothing was filled."""
    filled_qty = float(order.filled_qty or 0)
    if filled_qty <= 0 or order.filled_avg_price is None:
        return None
    return {
        "id": str(order.id),
        "symbol": order.symbol,
        "side": _enum_value(order.side),
        "quantity": filled_qty,
        "price": order.filled_avg_price,
        "fillTime": order.filled_at,
        "status": "FILLED",
    }


class AlpacaFillSource:
    """
    Fetch filled orders from the Alpaca Trading API.

    API keys via constructor (typically from ConnectionConfig, sourced from env vars).
    """

    def __init__(self, api_key: str, api_secret: str, *, paper: bool = True) -> None:
        if not api_key or not api_secret:
            raise ValueError(
                "Alpaca API key and secret are required. "
                "Set APCA_API_KEY_ID and APCA_API_SECRET_KEY environment variables."
            )
        try:
            from alpaca.trading.client import TradingClient
        except ImportError:
            raise ImportError(
                "alpaca-py is required for AlpacaFillSource. "
                "Install with: pip install 'fill-recon[alpaca]'"
            )
        self._client = TradingClient(api_key, api_secret, paper=paper)

    def _list_orders(self, after: datetime, until: datetime) -> list[Any]:
        from alpaca.common.enums import Sort
        from alpaca.trading.enums import QueryOrderStatus
        from alpaca.trading.requests import GetOrdersRequest

        orders: list[Any] = []
        seen: set[str] = set()
        cursor = after
        while True:
            request = GetOrdersRequest(
                status=QueryOrderStatus.CLOSED,
                after=cursor,
                until=until,
                limit=PAGE_LIMIT,
                direction=Sort.ASC,
            )
            try:
                page = self._client.get_orders(filter=request)
            except Exception as exc:
                raise FillSourceError(f"Alpaca get_orders failed: {exc}") from exc
            fresh = [o for o in page if str(o.id) not in seen]
            seen.update(str(o.id) for o in fresh)
            orders.extend(fresh)
            if len(page) < PAGE_LIMIT or not fresh:
                return orders
            cursor = page[-1].submitted_at

    def fetch_fills(self, account_id: str, start: datetime, end: datetime) -> FetchResult:
        orders = self._list_orders(start, end)
        records = [r for r in (order_to_record(o) for o in orders) if r is not None]
        fills, skipped = normalize_fills(records, account_id)
        logger.info("Fetched %d fills from %d closed orders for account %s", len(fills), len(orders), account_id)
        return FetchResult(
            fills=fills,
            account_id=account_id,
            start=start,
            end=end,
            raw_count=len(orders),
            skipped_records=skipped,
        )

    def close(self) -> None:
        pass
