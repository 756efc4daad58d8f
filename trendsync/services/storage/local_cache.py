"""
Redis-backed local cache of trends records.

Layout under the key prefix:

    <prefix>:records        hash   keyword -> record JSON (with sync state)
    <prefix>:reviewed:1|0   set    keywords by reviewed flag
    <prefix>:by_timestamp   zset   keyword scored by record timestamp
    <prefix>:pending        set    keywords with unpushed changes
    <prefix>:last_synced    zset   keyword scored by sync stamp

Every mutation rewrites whole records together with their index entries in a
single MULTI/EXEC transaction.
"""

from __future__ import annotations

from typing import Callable, Iterable, Sequence

import redis.asyncio as redis
from redis.exceptions import WatchError

from trendsync.core.clock import Clock, now_ms
from trendsync.core.config import settings
from trendsync.core.logging import get_logger
from trendsync.schemas.trends import (
    CachedTrendsRecord,
    SyncState,
    SyncStatePatch,
    SyncStatus,
    TrendsFilter,
    TrendsRecord,
)
from trendsync.services.storage.base import LocalCacheStore

logger = get_logger(__name__)


def stamp(record: TrendsRecord, state: SyncState) -> CachedTrendsRecord:
    """Attach `state` to a copy of `record`."""
    data = record.model_dump(exclude={"sync_state"})
    data["sync_state"] = state
    return CachedTrendsRecord.model_validate(data)


class RedisCacheStore(LocalCacheStore):
    """Local cache store over a Redis connection."""

    def __init__(
        self,
        redis_client: redis.Redis,
        prefix: str | None = None,
        clock: Clock = now_ms,
    ):
        self.redis = redis_client
        self.prefix = prefix or settings.CACHE_KEY_PREFIX
        self.clock = clock

    # Keys

    def _key(self, name: str) -> str:
        return f"{self.prefix}:{name}"

    @property
    def records_key(self) -> str:
        return self._key("records")

    def reviewed_key(self, reviewed: bool) -> str:
        return self._key(f"reviewed:{int(reviewed)}")

    @property
    def timestamp_key(self) -> str:
        return self._key("by_timestamp")

    @property
    def pending_key(self) -> str:
        return self._key("pending")

    @property
    def last_synced_key(self) -> str:
        return self._key("last_synced")

    # Writes

    def _stage_write(self, pipe, record: CachedTrendsRecord) -> None:
        keyword = record.target_keyword
        pipe.hset(self.records_key, keyword, record.model_dump_json(by_alias=True))
        pipe.sadd(self.reviewed_key(record.reviewed), keyword)
        pipe.srem(self.reviewed_key(not record.reviewed), keyword)
        pipe.zadd(self.timestamp_key, {keyword: record.timestamp})
        pipe.zadd(self.last_synced_key, {keyword: record.sync_state.last_synced})
        if record.sync_state.status is SyncStatus.PENDING:
            pipe.sadd(self.pending_key, keyword)
        else:
            pipe.srem(self.pending_key, keyword)

    def _stage_delete(self, pipe, keywords: list[str]) -> None:
        pipe.hdel(self.records_key, *keywords)
        pipe.srem(self.reviewed_key(True), *keywords)
        pipe.srem(self.reviewed_key(False), *keywords)
        pipe.zrem(self.timestamp_key, *keywords)
        pipe.zrem(self.last_synced_key, *keywords)
        pipe.srem(self.pending_key, *keywords)

    async def _write(self, records: Iterable[CachedTrendsRecord]) -> int:
        records = list(records)
        if not records:
            return 0
        async with self.redis.pipeline(transaction=True) as pipe:
            for record in records:
                self._stage_write(pipe, record)
            await pipe.execute()
        return len(records)

    async def upsert(
        self, records: Sequence[TrendsRecord], status: SyncStatus = SyncStatus.PENDING
    ) -> None:
        state = SyncState(last_synced=self.clock(), status=status)
        written = await self._write(stamp(record, state) for record in records)
        logger.debug(f"Cached {written} records as {status.value}")

    async def _rewrite(
        self,
        keywords: Iterable[str],
        change: Callable[[CachedTrendsRecord], CachedTrendsRecord | None],
    ) -> list[str]:
        """
        Read-modify-write of existing records under WATCH.

        `change` returns the new version, or None to leave a record alone;
        missing keywords are skipped. Retried when another client writes
        records between the read and the commit.
        """
        keywords = list(keywords)
        if not keywords:
            return []

        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(self.records_key)
                    values = await pipe.hmget(self.records_key, keywords)
                    updated = [
                        new
                        for new in (
                            change(CachedTrendsRecord.model_validate_json(value))
                            for value in values
                            if value is not None
                        )
                        if new is not None
                    ]
                    pipe.multi()
                    for record in updated:
                        self._stage_write(pipe, record)
                    await pipe.execute()
                    return [record.target_keyword for record in updated]
                except WatchError:
                    logger.debug("Cached records changed during rewrite, retrying")

    @staticmethod
    def _apply(
        record: CachedTrendsRecord, patch: SyncStatePatch, **fields
    ) -> CachedTrendsRecord:
        state = SyncState(last_synced=patch.last_synced, status=patch.status)
        return record.model_copy(update={**fields, "sync_state": state})

    async def set_reviewed(self, keywords: Iterable[str], reviewed: bool) -> None:
        patch = SyncStatePatch(status=SyncStatus.PENDING, last_synced=self.clock())
        await self._rewrite(
            keywords, lambda record: self._apply(record, patch, reviewed=reviewed)
        )

    async def mark_synced(self, pushed: Iterable[CachedTrendsRecord]) -> list[str]:
        expected = {record.target_keyword: record for record in pushed}
        patch = SyncStatePatch(status=SyncStatus.SYNCED, last_synced=self.clock())

        marked = await self._rewrite(
            expected,
            lambda record: (
                self._apply(record, patch)
                if record == expected[record.target_keyword]
                else None
            ),
        )
        if len(marked) < len(expected):
            logger.info(
                f"{len(expected) - len(marked)} records changed while being pushed, "
                f"left pending"
            )
        return marked

    async def delete(self, keywords: Iterable[str]) -> None:
        keywords = list(keywords)
        if not keywords:
            return
        async with self.redis.pipeline(transaction=True) as pipe:
            self._stage_delete(pipe, keywords)
            await pipe.execute()
        logger.debug(f"Deleted {len(keywords)} cached records")

    async def delete_where(self, reviewed: bool = True) -> None:
        keywords = await self.redis.smembers(self.reviewed_key(reviewed))
        await self.delete(keywords)

    async def clear(self) -> None:
        await self.redis.delete(
            self.records_key,
            self.reviewed_key(True),
            self.reviewed_key(False),
            self.timestamp_key,
            self.pending_key,
            self.last_synced_key,
        )

    # Reads

    async def get_many(self, keywords: Iterable[str]) -> dict[str, CachedTrendsRecord]:
        keywords = list(keywords)
        if not keywords:
            return {}
        values = await self.redis.hmget(self.records_key, keywords)
        return {
            record.target_keyword: record
            for record in (
                CachedTrendsRecord.model_validate_json(value)
                for value in values
                if value is not None
            )
        }

    async def query(self, filters: TrendsFilter | None = None) -> list[CachedTrendsRecord]:
        filters = filters or TrendsFilter()
        if filters.reviewed is None:
            raw = await self.redis.hgetall(self.records_key)
            records = [CachedTrendsRecord.model_validate_json(v) for v in raw.values()]
        else:
            keywords = await self.redis.smembers(self.reviewed_key(filters.reviewed))
            records = list((await self.get_many(keywords)).values())
        return filters.paginate([r for r in records if filters.matches(r)])

    async def by_timestamp(self, since: int | None = None) -> list[CachedTrendsRecord]:
        low = "-inf" if since is None else f"({since}"
        keywords = await self.redis.zrangebyscore(self.timestamp_key, low, "+inf")
        found = await self.get_many(keywords)
        return [found[k] for k in keywords if k in found]

    async def pending_syncs(self) -> list[CachedTrendsRecord]:
        keywords = await self.redis.smembers(self.pending_key)
        return list((await self.get_many(keywords)).values())

    async def last_synced_at(self, synced_only: bool = False) -> int | None:
        if not synced_only:
            newest = await self.redis.zrange(
                self.last_synced_key, -1, -1, withscores=True
            )
            return int(newest[0][1]) if newest else None

        pending = await self.redis.smembers(self.pending_key)
        stamps = await self.redis.zrange(
            self.last_synced_key, 0, -1, desc=True, withscores=True
        )
        for keyword, score in stamps:
            if keyword not in pending:
                return int(score)
        return None
