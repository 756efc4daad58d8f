"""
Deterministic merge of two versions of the same keyword.

- reviewed is OR-ed, so a reviewed record never becomes unreviewed by merging.
- every other field comes wholesale from the version with the larger
  timestamp; on a tie the existing (left) version is kept.

Both operations are associative, so folding any number of versions gives the
same result regardless of grouping, and reconcile(x, x) == x.
"""

from __future__ import annotations

from typing import Iterable, TypeVar

from trendsync.schemas.trends import TrendsRecord

R = TypeVar("R", bound=TrendsRecord)


def reconcile(existing: R, incoming: R) -> R:
    """Merge `incoming` into `existing` for the same target keyword."""
    if existing.target_keyword != incoming.target_keyword:
        raise ValueError(
            f"Cannot reconcile '{existing.target_keyword}' with "
            f"'{incoming.target_keyword}'"
        )

    winner = incoming if incoming.timestamp > existing.timestamp else existing
    reviewed = existing.reviewed or incoming.reviewed
    if winner.reviewed == reviewed:
        return winner
    return winner.model_copy(update={"reviewed": reviewed})


def merge_many(records: Iterable[R], into: dict[str, R] | None = None) -> dict[str, R]:
    """Fold `records` by target keyword, in order, onto `into`."""
    merged: dict[str, R] = dict(into) if into else {}
    for record in records:
        current = merged.get(record.target_keyword)
        merged[record.target_keyword] = (
            record if current is None else reconcile(current, record)
        )
    return merged
