"""Global pytest configuration and fixtures."""

from __future__ import annotations

from datetime import date, timedelta
from typing import AsyncGenerator, Iterable, Sequence

import fakeredis
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from trendsync.core.database import create_schema, get_sync_manager
from trendsync.core.exceptions import TransientRemoteError
from trendsync.main import app
from trendsync.schemas.trends import (
    ChartConfig,
    ComparisonPoint,
    ReviewedPatch,
    TrendsFilter,
    TrendsRecord,
)
from trendsync.services.storage.base import RemoteStore
from trendsync.services.storage.local_cache import RedisCacheStore
from trendsync.services.storage.remote_store import SQLRemoteStore
from trendsync.services.sync.merge import merge_many, reconcile
from trendsync.services.sync.sync_manager import SyncManager

START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that ticks forward on every read."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class InMemoryRemoteStore(RemoteStore):
    """Remote store fake with the adapter's merge semantics and failure injection."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        # reviewed flag -> keyword -> (record, updated_at)
        self.partitions: dict[bool, dict[str, tuple[TrendsRecord, int]]] = {
            False: {},
            True: {},
        }
        self.calls: list[str] = []
        self.upserted_batches: list[list[str]] = []
        self._failures: dict[str, list[Exception]] = {}

    # Test helpers

    def fail(self, operation: str, times: int = 1, exc_type=TransientRemoteError):
        self._failures.setdefault(operation, []).extend(
            exc_type(f"{operation} failed") for _ in range(times)
        )

    def seed(self, *records: TrendsRecord, partition: bool | None = None) -> None:
        """Store records as-is, bypassing the merge (allows partition violations)."""
        for record in records:
            target = record.reviewed if partition is None else partition
            self.partitions[target][record.target_keyword] = (record, self.clock())

    def keywords(self, reviewed: bool) -> set[str]:
        return set(self.partitions[reviewed])

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        queue = self._failures.get(operation)
        if queue:
            raise queue.pop(0)

    def _load(self, keywords: Iterable[str]) -> dict[str, TrendsRecord]:
        keywords = set(keywords)
        found = [
            record
            for partition in (False, True)
            for keyword, (record, _) in self.partitions[partition].items()
            if keyword in keywords
        ]
        return merge_many(found)

    def _replace(self, records: Sequence[TrendsRecord]) -> None:
        updated_at = self.clock()
        for record in records:
            for partition in self.partitions.values():
                partition.pop(record.target_keyword, None)
            self.partitions[record.reviewed][record.target_keyword] = (
                record,
                updated_at,
            )

    # RemoteStore

    async def upsert_many(self, records: Sequence[TrendsRecord]) -> list[TrendsRecord]:
        self._enter("upsert_many")
        incoming = merge_many(records)
        existing = self._load(incoming)
        merged = [
            reconcile(existing[k], r) if k in existing else r
            for k, r in incoming.items()
        ]
        self._replace(merged)
        self.upserted_batches.append(list(incoming))
        return merged

    async def query(self, filters: TrendsFilter | None = None) -> list[TrendsRecord]:
        self._enter("query")
        filters = filters or TrendsFilter()
        partitions = [False, True] if filters.reviewed is None else [filters.reviewed]
        records = [
            record
            for partition in partitions
            for record, _ in sorted(
                self.partitions[partition].values(), key=lambda item: item[0].target_keyword
            )
        ]
        # Partition decides the reviewed filter; the stored flag may disagree
        records = [
            r
            for r in records
            if TrendsFilter(search=filters.search, keywords=filters.keywords).matches(r)
        ]
        return filters.paginate(records)

    async def update_where(
        self, keywords: Iterable[str], patch: ReviewedPatch
    ) -> list[TrendsRecord]:
        self._enter("update_where")
        existing = self._load(keywords)
        updated = [
            r.model_copy(update={"reviewed": patch.reviewed}) for r in existing.values()
        ]
        self._replace(updated)
        return updated

    async def delete_where(self, predicate: TrendsFilter) -> None:
        self._enter("delete_where")
        partitions = [False, True] if predicate.reviewed is None else [predicate.reviewed]
        match = TrendsFilter(search=predicate.search, keywords=predicate.keywords)
        for partition in partitions:
            for keyword, (record, _) in list(self.partitions[partition].items()):
                if match.matches(record):
                    del self.partitions[partition][keyword]

    async def changed_since(self, since: int | None) -> list[TrendsRecord]:
        self._enter("changed_since")
        return [
            record
            for partition in self.partitions.values()
            for record, updated_at in partition.values()
            if since is None or updated_at > since
        ]


def build_points(
    values: Sequence[float], end: date = date(2024, 6, 30), gpts: float = 50.0
) -> list[ComparisonPoint]:
    """Daily points ending at `end`, one per value."""
    start = end - timedelta(days=len(values) - 1)
    return [
        ComparisonPoint(
            date=start + timedelta(days=i),
            gpts=gpts,
            keyword=value,
            daily_volume=round(value / gpts * 5000),
            monthly_volume=round(value / gpts * 5000 * 30),
        )
        for i, value in enumerate(values)
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_record():
    """Factory for valid trends records."""

    def _make(
        keyword: str = "ai agents",
        timestamp: int = START_MS,
        reviewed: bool = False,
        values: Sequence[float] | None = None,
        record_id: str | None = None,
        last_week_volume: int | None = None,
    ) -> TrendsRecord:
        points = build_points(values if values is not None else [10.0] * 14)
        trailing = points[-7:]
        return TrendsRecord(
            id=record_id or f"id-{keyword}-{timestamp}",
            target_keyword=keyword,
            timestamp=timestamp,
            file_name=f"{keyword}.csv",
            comparison_data=points,
            last_week_volume=(
                last_week_volume
                if last_week_volume is not None
                else round(sum(p.daily_volume for p in trailing) / len(trailing))
            ),
            reviewed=reviewed,
            chart_config=ChartConfig(
                title=f"{keyword} vs GPTs",
                time_range=f"{points[0].date} - {points[-1].date}",
            ),
        )

    return _make


@pytest.fixture
async def redis_client() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    """In-process Redis double."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def cache_store(redis_client, clock) -> RedisCacheStore:
    return RedisCacheStore(redis_client, prefix="test", clock=clock)


@pytest.fixture
def remote_store(clock) -> InMemoryRemoteStore:
    return InMemoryRemoteStore(clock)


@pytest.fixture
async def sql_session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """SQLite-backed session factory with the remote schema created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_schema(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def sql_remote_store(sql_session_factory, clock) -> SQLRemoteStore:
    return SQLRemoteStore(sql_session_factory, clock=clock)


@pytest.fixture
def sync_manager(cache_store, remote_store, clock, recording_sleep) -> SyncManager:
    return SyncManager(
        cache_store,
        remote_store,
        batch_size=100,
        max_attempts=3,
        retry_base_delay=1.0,
        batch_pause=0.5,
        clock=clock,
        sleep=recording_sleep,
    )


@pytest.fixture
async def async_client(sync_manager) -> AsyncGenerator[AsyncClient, None]:
    """API client bound to the test synchronization manager."""
    app.dependency_overrides[get_sync_manager] = lambda: sync_manager

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def series():
    """Factory for chronological daily points from a list of target values."""
    return build_points
