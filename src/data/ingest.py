"""
Ingestion boundary: loosely shaped broker payloads -> Fill.

Brokers disagree on field names (``size`` vs ``quantity``, ``PnL`` vs
``profitAndLoss``) and encodings (side as 0/1 or "Buy"/"Sell"). Every
field is read through an ordered extractor list; the first defined value
wins. Nothing past this module sees a raw record.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping

from recon_core.contracts import Fill, Side
from recon_core.timestamps import (
    DEFAULT_MAX_FUTURE_SKEW,
    Extractor,
    first_present,
    keys,
    normalize_timestamp,
)

logger = logging.getLogger("recon.ingest")

RawFillRecord = Mapping[str, Any]


class MalformedFillError(ValueError):
    """A raw record cannot become a Fill (missing id/symbol, bad side, bad number)."""


# ---------------------------------------------------------------------------
# Extractor lists (priority order)
# ---------------------------------------------------------------------------

ID_FIELDS: list[Extractor] = keys("id", "executionId", "fillId", "orderId")
SYMBOL_FIELDS: list[Extractor] = keys("symbol", "contractName", "ContractName", "contractId", "instrument")
SIDE_FIELDS: list[Extractor] = keys("side", "action")
QUANTITY_FIELDS: list[Extractor] = keys("size", "Size", "quantity", "qty", "fillQuantity")
PRICE_FIELDS: list[Extractor] = keys("price", "fillPrice", "executedPrice")
PNL_FIELDS: list[Extractor] = keys("profitAndLoss", "PnL", "pnl", "realizedPnl", "realizedPnL")
COMMISSION_FIELDS: list[Extractor] = keys("commission", "fees", "totalFee")
TIMESTAMP_FIELDS = ("creationTimestamp", "timestamp", "fillTime", "executionTime", "time", "createdAt")
STATUS_FIELDS: list[Extractor] = keys("status")

_BUY_CODES = {"0", "BUY", "B", "LONG"}
_SELL_CODES = {"1", "SELL", "S", "SHORT"}


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------


def parse_side(raw: Any) -> Side:
    """0 / BUY / Buy / B -> BUY; 1 / SELL / Sell / S -> SELL."""
    if isinstance(raw, Side):
        return raw
    if isinstance(raw, bool) or raw is None:
        raise MalformedFillError(f"unrecognized side {raw!r}")
    code = str(raw).strip().upper()
    if code in _BUY_CODES:
        return Side.BUY
    if code in _SELL_CODES:
        return Side.SELL
    raise MalformedFillError(f"unrecognized side {raw!r}")


def _number(raw: Any, name: str, *, required: bool) -> float | None:
    if raw is None:
        if required:
            raise MalformedFillError(f"missing {name}")
        return None
    if isinstance(raw, bool):
        raise MalformedFillError(f"{name} is not a number: {raw!r}")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedFillError(f"{name} is not a number: {raw!r}") from exc
    if not math.isfinite(value):
        raise MalformedFillError(f"{name} is not finite: {raw!r}")
    return value


def normalize_fill(
    record: RawFillRecord,
    account_id: str,
    *,
    now: datetime | None = None,
    max_future_skew: timedelta = DEFAULT_MAX_FUTURE_SKEW,
) -> Fill:
    """Map one raw broker record to a Fill. Raises MalformedFillError.

    Quantity is taken as an absolute value; direction comes only from the
    side. A missing or unusable timestamp does not raise: it falls back to
    now and the fill is flagged ``timestamp_inferred``.
    """
    fill_id = first_present(record, ID_FIELDS)
    if fill_id is None:
        raise MalformedFillError("missing fill id")
    fill_id = str(fill_id).strip()

    symbol = first_present(record, SYMBOL_FIELDS)
    if symbol is None:
        raise MalformedFillError(f"fill {fill_id}: missing symbol")

    side = parse_side(first_present(record, SIDE_FIELDS))
    quantity = abs(_number(first_present(record, QUANTITY_FIELDS), "quantity", required=True))
    price = _number(first_present(record, PRICE_FIELDS), "price", required=True)
    pnl = _number(first_present(record, PNL_FIELDS), "realized P&L", required=False)
    commission = _number(first_present(record, COMMISSION_FIELDS), "commission", required=False)
    status = first_present(record, STATUS_FIELDS)

    raw_ts = first_present(record, keys(*TIMESTAMP_FIELDS))
    ts = normalize_timestamp(raw_ts, now=now, max_future_skew=max_future_skew, context=f"fill {fill_id}")

    return Fill(
        id=fill_id,
        account_id=account_id,
        symbol=str(symbol).strip(),
        side=side,
        quantity=quantity,
        price=price,
        timestamp=ts.value,
        realized_pnl=pnl,
        commission=abs(commission) if commission is not None else 0.0,
        status=str(status).strip().upper() if status is not None else "FILLED",
        timestamp_inferred=ts.inferred,
    )


def normalize_fills(
    records: Iterable[RawFillRecord],
    account_id: str,
    *,
    now: datetime | None = None,
    max_future_skew: timedelta = DEFAULT_MAX_FUTURE_SKEW,
) -> tuple[list[Fill], list[str]]:
    """Normalize a batch. Malformed records are logged and skipped.

    Returns (fills, skipped) where *skipped* holds one reason per rejected record.
    """
    fills: list[Fill] = []
    skipped: list[str] = []
    for i, record in enumerate(records):
        if not isinstance(record, Mapping):
            reason = f"record {i}: not an object ({type(record).__name__})"
            logger.warning("Skipping raw fill: %s", reason)
            skipped.append(reason)
            continue
        try:
            fills.append(normalize_fill(record, account_id, now=now, max_future_skew=max_future_skew))
        except MalformedFillError as exc:
            reason = f"record {i}: {exc}"
            logger.warning("Skipping raw fill: %s", reason)
            skipped.append(reason)
    return fills, skipped
