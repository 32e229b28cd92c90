"""
Timestamp normalization for broker payloads.

Brokers report execution times as ISO strings, unix seconds, unix
milliseconds, or not at all. Everything becomes an aware UTC datetime.
Anything unusable falls back to "now": downstream ordering tolerates a
little skew, but a dropped fill would lose a trade.

Validity rules:
  - numeric (or all-digit string) values are unix time; fewer than 13
    integer digits means seconds
  - the instant must be finite, strictly after the epoch, and no later than
    now + max_future_skew (default one day)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping

from dateutil import parser as date_parser

logger = logging.getLogger("recon.timestamps")

SECONDS_DIGIT_THRESHOLD = 13
DEFAULT_MAX_FUTURE_SKEW = timedelta(days=1)

Extractor = Callable[[Mapping[str, Any]], Any]


# ---------------------------------------------------------------------------
# Extractor combinator
# ---------------------------------------------------------------------------


def key(name: str) -> Extractor:
    """Extractor reading one key of a raw record."""
    return lambda record: record.get(name)


def keys(*names: str) -> list[Extractor]:
    return [key(n) for n in names]


def first_present(record: Mapping[str, Any], extractors: Iterable[Extractor]) -> Any:
    """Return the first extractor result that is not None or an empty string."""
    for extract in extractors:
        value = extract(record)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalizedTimestamp:
    value: datetime
    inferred: bool = False


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _from_epoch(num: float) -> datetime | None:
    if not math.isfinite(num):
        return None
    try:
        digits = len(str(int(abs(num))))
        millis = num * 1000 if digits < SECONDS_DIGIT_THRESHOLD else num
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(raw: Any) -> datetime | None:
    """Best-effort parse without validity checks. None when unparseable."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, datetime):
        return _utc(raw)
    if isinstance(raw, (int, float)):
        try:
            return _from_epoch(float(raw))
        except OverflowError:
            return None
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        if text.isascii() and text.isdigit():
            try:
                num = float(int(text))
            except (ValueError, OverflowError):
                return None
            return _from_epoch(num)
        try:
            return _utc(date_parser.parse(text))
        except (ValueError, OverflowError):
            return None
    return None


def is_valid_instant(
    ts: datetime,
    now: datetime,
    max_future_skew: timedelta = DEFAULT_MAX_FUTURE_SKEW,
) -> bool:
    epoch_ms = ts.timestamp() * 1000
    return math.isfinite(epoch_ms) and epoch_ms > 0 and ts <= now + max_future_skew


def normalize_timestamp(
    raw: Any,
    *,
    now: datetime | None = None,
    max_future_skew: timedelta = DEFAULT_MAX_FUTURE_SKEW,
    context: str = "",
) -> NormalizedTimestamp:
    """Canonical UTC instant for *raw*, or "now" (inferred=True) when unusable."""
    now = _utc(now) if now is not None else datetime.now(timezone.utc)
    parsed = parse_timestamp(raw)
    if parsed is not None and is_valid_instant(parsed, now, max_future_skew):
        return NormalizedTimestamp(parsed)

    where = f" for {context}" if context else ""
    if raw is None:
        logger.warning("No timestamp%s; using current time", where)
    else:
        logger.warning("Unusable timestamp %r%s; using current time", raw, where)
    return NormalizedTimestamp(now, inferred=True)


def normalize_record_timestamp(
    record: Mapping[str, Any],
    fields: Iterable[str],
    *,
    now: datetime | None = None,
    max_future_skew: timedelta = DEFAULT_MAX_FUTURE_SKEW,
    context: str = "",
) -> NormalizedTimestamp:
    """Normalize the first present candidate field of *record* (priority order)."""
    raw = first_present(record, keys(*fields))
    return normalize_timestamp(raw, now=now, max_future_skew=max_future_skew, context=context)
