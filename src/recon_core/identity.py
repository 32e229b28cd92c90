"""
Deterministic identifiers for reconciled trades.

The broker trade id is the idempotency key: the same set of contributing
fills must always produce the same id, whatever order they arrived in.
"""

import hashlib
from typing import Iterable


def fill_id_sort_key(fill_id: str) -> tuple[int, int, str]:
    """Natural order for broker fill ids.

    All-digit ids compare numerically ("9" before "10") and sort before
    alphanumeric ids, which compare as plain strings.
    """
    if fill_id.isascii() and fill_id.isdigit():
        return (0, int(fill_id), "")
    return (1, 0, fill_id)


def ordered_unique(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for fill_id in ids:
        if fill_id not in seen:
            seen.add(fill_id)
            out.append(fill_id)
    return out


def composite_trade_id(fill_ids: Iterable[str]) -> str:
    """Human-readable id: contributing fill ids in matching order."""
    return "_".join(ordered_unique(fill_ids))


def derive_broker_trade_id(fill_ids: Iterable[str], prefix: str = "") -> str:
    """Hash of the sorted, de-duplicated fill id set, optionally prefixed by broker."""
    unique = sorted(set(fill_ids), key=fill_id_sort_key)
    digest = hashlib.sha256("|".join(unique).encode("utf-8")).hexdigest()[:32]
    return f"{prefix}_{digest}" if prefix else digest
