"""
Interfaces of the two stores the synchronization manager works over.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Sequence

from trendsync.schemas.trends import (
    CachedTrendsRecord,
    ReviewedPatch,
    SyncStatus,
    TrendsFilter,
    TrendsRecord,
)


class LocalCacheStore(ABC):
    """Fast keyed store of records, one per target keyword."""

    @abstractmethod
    async def upsert(
        self, records: Sequence[TrendsRecord], status: SyncStatus = SyncStatus.PENDING
    ) -> None:
        """Write whole records, stamping their sync state."""

    @abstractmethod
    async def query(self, filters: TrendsFilter | None = None) -> list[CachedTrendsRecord]:
        """Records matching `filters`, unordered."""

    @abstractmethod
    async def get_many(self, keywords: Iterable[str]) -> dict[str, CachedTrendsRecord]:
        """Records by keyword; missing keywords are absent from the result."""

    @abstractmethod
    async def set_reviewed(self, keywords: Iterable[str], reviewed: bool) -> None:
        """Set the reviewed flag and mark records pending."""

    @abstractmethod
    async def delete_where(self, reviewed: bool = True) -> None:
        """Remove every record with the given reviewed flag."""

    @abstractmethod
    async def delete(self, keywords: Iterable[str]) -> None:
        """Remove records by keyword."""

    @abstractmethod
    async def by_timestamp(self, since: int | None = None) -> list[CachedTrendsRecord]:
        """Records with a timestamp strictly after `since`, oldest first."""

    @abstractmethod
    async def pending_syncs(self) -> list[CachedTrendsRecord]:
        """Records with unpushed local changes."""

    @abstractmethod
    async def mark_synced(self, pushed: Iterable[CachedTrendsRecord]) -> list[str]:
        """
        Mark the pushed versions as confirmed by the remote store.

        A record rewritten since it was read stays pending, since the remote
        store has not seen that version. Returns the keywords marked synced.
        """

    @abstractmethod
    async def last_synced_at(self, synced_only: bool = False) -> int | None:
        """
        Largest sync stamp across all records, None when empty.

        With `synced_only`, pending records are ignored; their stamps record
        the local write, not a confirmed exchange with the remote store.
        """

    @abstractmethod
    async def clear(self) -> None:
        """Remove every record."""


class RemoteStore(ABC):
    """Durable store keyed by target keyword, split into two partitions."""

    @abstractmethod
    async def upsert_many(self, records: Sequence[TrendsRecord]) -> list[TrendsRecord]:
        """Merge-write `records`; returns the stored versions."""

    @abstractmethod
    async def query(self, filters: TrendsFilter | None = None) -> list[TrendsRecord]:
        """Records matching `filters`."""

    @abstractmethod
    async def update_where(
        self, keywords: Iterable[str], patch: ReviewedPatch
    ) -> list[TrendsRecord]:
        """Apply `patch` to the given keywords; returns the updated records."""

    @abstractmethod
    async def delete_where(self, predicate: TrendsFilter) -> None:
        """Remove every record matching `predicate`."""

    @abstractmethod
    async def changed_since(self, since: int | None) -> list[TrendsRecord]:
        """Records written strictly after `since` (all records when None)."""
