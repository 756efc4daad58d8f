"""
Synchronization manager keeping the local cache consistent with the remote store.
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager, contextmanager
from typing import Any, Awaitable, Callable, Iterable, Sequence, TypeVar

from structlog.contextvars import bound_contextvars

from trendsync.core.clock import Clock, now_ms
from trendsync.core.config import settings
from trendsync.core.exceptions import (
    RecordValidationError,
    SyncFailure,
    TransientRemoteError,
)
from trendsync.core.logging import get_logger
from trendsync.schemas.sync import (
    LoadingState,
    PurgeReport,
    SyncPhase,
    SyncReport,
    SyncStatusResponse,
    UploadResult,
)
from trendsync.schemas.trends import (
    CachedTrendsRecord,
    ReviewedPatch,
    SyncStatus,
    TrendsFilter,
    TrendsRecord,
)
from trendsync.services.records import validate_record
from trendsync.services.storage.base import LocalCacheStore, RemoteStore
from trendsync.services.sync import merge

logger = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


class SyncManager:
    """
    Reconciles a local cache with a remote store.

    At most one sync() runs at a time; a call made while one is in flight
    returns None immediately. Callers that need their writes pushed await
    wait_until_idle() and call sync() again.
    """

    def __init__(
        self,
        cache: LocalCacheStore,
        remote: RemoteStore,
        *,
        batch_size: int = 100,
        max_attempts: int = 3,
        retry_base_delay: float = 1.0,
        batch_pause: float = 0.5,
        clock: Clock = now_ms,
        sleep: Sleep = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")

        self.cache = cache
        self.remote = remote
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.batch_pause = batch_pause
        self.clock = clock
        self._sleep = sleep

        self.phase = SyncPhase.IDLE
        self.loading = LoadingState()
        self.last_error: str | None = None
        self.last_report: SyncReport | None = None

        # In-memory projection read by the presentation layer
        self.trends_data: list[TrendsRecord] = []
        self.include_reviewed = False

        self._idle = asyncio.Event()
        self._idle.set()
        self._auto_sync_task: asyncio.Task | None = None
        self._sync_runs = 0

    @classmethod
    def from_settings(cls, cache: LocalCacheStore, remote: RemoteStore) -> SyncManager:
        return cls(
            cache,
            remote,
            batch_size=settings.SYNC_BATCH_SIZE,
            max_attempts=settings.SYNC_MAX_ATTEMPTS,
            retry_base_delay=settings.SYNC_RETRY_BASE_DELAY_SECONDS,
            batch_pause=settings.SYNC_BATCH_PAUSE_SECONDS,
        )

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    @contextmanager
    def _loading(self, message: str):
        previous = self.loading
        self.loading = LoadingState(is_loading=True, message=message)
        try:
            yield
        finally:
            self.loading = previous

    @asynccontextmanager
    async def _exclusive(self, message: str):
        """Hold the syncing phase so sync() calls are no-ops meanwhile."""
        while self.phase is SyncPhase.SYNCING:
            await self.wait_until_idle()
        self.phase = SyncPhase.SYNCING
        self._idle.clear()
        try:
            with self._loading(message):
                yield
        finally:
            self.phase = SyncPhase.IDLE
            self._idle.set()

    def status(self) -> SyncStatusResponse:
        """Phase, loading signal and outcome of the last sync."""
        return SyncStatusResponse(
            phase=self.phase,
            loading=self.loading,
            last_error=self.last_error,
            last_report=self.last_report,
            record_count=len(self.trends_data),
        )

    async def wait_until_idle(self) -> None:
        """Wait for the in-flight sync, if any, to finish."""
        await self._idle.wait()

    async def refresh_view(self, include_reviewed: bool | None = None) -> list[TrendsRecord]:
        """Rebuild the in-memory projection from the local cache, newest first."""
        if include_reviewed is not None:
            self.include_reviewed = include_reviewed
        records = await self.cache.by_timestamp()
        self.trends_data = [
            record.to_record()
            for record in reversed(records)
            if self.include_reviewed or not record.reviewed
        ]
        return self.trends_data

    # ------------------------------------------------------------------ #
    # Merge rule
    # ------------------------------------------------------------------ #

    @staticmethod
    def reconcile(existing: TrendsRecord, incoming: TrendsRecord) -> TrendsRecord:
        """Merge two versions of one keyword (see services.sync.merge)."""
        return merge.reconcile(existing, incoming)

    # ------------------------------------------------------------------ #
    # Retry policy
    # ------------------------------------------------------------------ #

    async def _with_retry(self, operation: Callable[..., Awaitable[T]], *args) -> T:
        """Run a remote operation, retrying transient failures with backoff."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation(*args)
            except TransientRemoteError as e:
                if attempt >= self.max_attempts:
                    logger.error(
                        f"{operation.__name__} failed after {attempt} attempts: {e}"
                    )
                    raise
                delay = self.retry_base_delay * 2 ** (attempt - 1)
                logger.warning(
                    f"{operation.__name__} attempt {attempt}/{self.max_attempts} "
                    f"failed, retrying in {delay:.1f}s: {e}"
                )
                await self._sleep(delay)

    # ------------------------------------------------------------------ #
    # Sync
    # ------------------------------------------------------------------ #

    async def sync(self) -> SyncReport | None:
        """
        Push pending local writes, then pull remote changes.

        Returns None without doing anything when a sync is already running.
        Raises SyncFailure when a push batch exhausts its retries; batches
        pushed before it stay synced and the rest stay pending.
        """
        if self.phase is SyncPhase.SYNCING:
            logger.info("Sync already in progress, skipping")
            return None

        self.phase = SyncPhase.SYNCING
        self._idle.clear()
        self._sync_runs += 1
        report = SyncReport(started_at=self.clock())

        try:
            with self._loading("Syncing"), bound_contextvars(sync_run=self._sync_runs):
                # Read before the push marks records synced
                since = await self.cache.last_synced_at(synced_only=True)

                pending = await self.cache.pending_syncs()
                if pending:
                    logger.info(f"Found {len(pending)} records pending sync")
                    await self._push(pending, report)

                report.pulled = await self._pull(since)
                await self.refresh_view()
        except Exception as e:
            self.last_error = str(e)
            logger.exception(f"Sync failed: {e}")
            raise
        else:
            report.finished_at = self.clock()
            self.last_error = None
            self.last_report = report
            logger.info(
                "Sync completed",
                pushed=report.pushed,
                batches=report.batches,
                pulled=report.pulled,
            )
            return report
        finally:
            self.phase = SyncPhase.IDLE
            self._idle.set()

    async def _push(
        self, records: list[CachedTrendsRecord], report: SyncReport
    ) -> None:
        """Upsert `records` in sequential batches; each batch is one unit."""
        total = len(records)
        batches = [
            records[i : i + self.batch_size] for i in range(0, total, self.batch_size)
        ]

        for index, batch in enumerate(batches, start=1):
            if index > 1:
                await self._sleep(self.batch_pause)

            reviewed = {r.target_keyword for r in batch if r.reviewed}
            try:
                await self._with_retry(
                    self.remote.upsert_many, [r.to_record() for r in batch]
                )
                # Re-assert the flag; plain upserts may not keep server-side state
                if reviewed:
                    await self._with_retry(
                        self.remote.update_where, reviewed, ReviewedPatch(reviewed=True)
                    )
            except TransientRemoteError as e:
                raise SyncFailure(
                    f"Push of batch {index}/{len(batches)} failed",
                    persisted=report.pushed,
                    failed=total - report.pushed,
                ) from e

            # Records rewritten during the push keep their pending state
            await self.cache.mark_synced(batch)
            report.pushed += len(batch)
            report.batches += 1
            report.reviewed_reasserted += len(reviewed)
            logger.debug(f"Pushed batch {index}/{len(batches)} ({len(batch)} records)")

    async def _pull(self, since: int | None) -> int:
        """Merge remote records changed after `since` into the cache."""
        remote_records = await self._with_retry(self.remote.changed_since, since)
        if not remote_records:
            return 0
        logger.info(f"Found {len(remote_records)} remote updates")
        return await self._merge_into_cache(remote_records)

    async def _merge_into_cache(self, remote_records: Iterable[TrendsRecord]) -> int:
        """
        Reconcile remote records with local copies.

        The result is stored as synced, unless the local copy holds unpushed
        changes that survive the merge, in which case it stays pending.
        """
        incoming = merge.merge_many(remote_records)
        local = await self.cache.get_many(incoming)

        synced: list[TrendsRecord] = []
        pending: list[TrendsRecord] = []
        for keyword, remote_record in incoming.items():
            current = local.get(keyword)
            if current is None:
                synced.append(remote_record)
                continue

            local_record = current.to_record()
            merged = merge.reconcile(local_record, remote_record)
            if current.sync_state.status is SyncStatus.PENDING:
                if merged == remote_record:
                    synced.append(merged)
                else:
                    pending.append(merged)
            elif merged != local_record or current.sync_state.status is not SyncStatus.SYNCED:
                synced.append(merged)

        await self.cache.upsert(synced, status=SyncStatus.SYNCED)
        await self.cache.upsert(pending, status=SyncStatus.PENDING)
        return len(synced) + len(pending)

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    async def upload(self, records: Sequence[TrendsRecord]) -> UploadResult:
        """Store validated records locally, then push them."""
        accepted: list[TrendsRecord] = []
        rejected: list[str] = []
        for record in records:
            try:
                accepted.append(validate_record(record))
            except RecordValidationError as e:
                logger.warning(str(e))
                rejected.append(record.target_keyword)

        result = UploadResult(accepted=0, rejected=rejected)
        if not accepted:
            logger.info(f"Nothing to upload, {len(rejected)} records rejected")
            return result

        with self._loading(f"Uploading {len(accepted)} records"):
            incoming = merge.merge_many(accepted)
            local = await self.cache.get_many(incoming)
            merged = [
                merge.reconcile(local[keyword].to_record(), record)
                if keyword in local
                else record
                for keyword, record in incoming.items()
            ]
            await self.cache.upsert(merged)
            result.accepted = len(merged)
            logger.info(f"Cached {len(merged)} uploaded records")

            await self.wait_until_idle()
            result.sync = await self.sync()
            if result.sync is None:
                await self.wait_until_idle()
                await self.refresh_view()

        return result

    async def set_reviewed_status(
        self, ids: Sequence[str], reviewed: bool
    ) -> SyncReport | None:
        """Set the reviewed flag of the records with the given ids, then sync."""
        keyword_by_id = {record.id: record.target_keyword for record in self.trends_data}
        keywords: set[str] = set()
        for record_id in ids:
            keyword = keyword_by_id.get(record_id)
            if keyword is None:
                logger.warning(f"Unknown record id '{record_id}', skipping")
                continue
            keywords.add(keyword)

        if not keywords:
            return None

        with self._loading(f"Updating {len(keywords)} records"):
            await self.cache.set_reviewed(keywords, reviewed)
            logger.info(f"Set reviewed={reviewed} on {len(keywords)} records")

            if not reviewed:
                # The merge rule never clears reviewed, so clear it explicitly
                await self._with_retry(
                    self.remote.update_where, keywords, ReviewedPatch(reviewed=False)
                )

            await self.wait_until_idle()
            report = await self.sync()
            if report is None:
                await self.refresh_view()
        return report

    async def purge_reviewed(self) -> PurgeReport:
        """
        Delete the reviewed partition everywhere, repairing partition violations.

        Irreversible; callers must confirm with the user first. Safe to re-run
        after a partial failure. Holds the syncing phase throughout, so no sync
        can push reviewed records back between the remote and local deletes.
        """
        async with self._exclusive("Removing reviewed records"):
            reviewed = await self._with_retry(
                self.remote.query, TrendsFilter(reviewed=True)
            )
            unreviewed = await self._with_retry(
                self.remote.query, TrendsFilter(reviewed=False)
            )

            reviewed_keywords = {record.target_keyword for record in reviewed}
            violations = sorted(
                {record.target_keyword for record in unreviewed} & reviewed_keywords
            )
            if violations:
                logger.warning(
                    f"Repairing {len(violations)} keywords present in both partitions"
                )
                await self._with_retry(
                    self.remote.delete_where,
                    TrendsFilter(reviewed=False, keywords=set(violations)),
                )
            await self._with_retry(self.remote.delete_where, TrendsFilter(reviewed=True))

            await self.cache.delete_where(reviewed=True)
            await self.cache.delete(reviewed_keywords)
            await self.refresh_view()

        logger.info(f"Purged {len(reviewed_keywords)} reviewed records")
        return PurgeReport(
            removed_reviewed=len(reviewed_keywords), repaired_violations=violations
        )

    async def load_partitioned(self, include_reviewed: bool) -> list[TrendsRecord]:
        """
        Load both remote partitions with unreviewed duplicates of reviewed
        keywords removed; the result also becomes the in-memory projection.
        """
        with self._loading("Loading records"):
            unreviewed = await self._with_retry(
                self.remote.query, TrendsFilter(reviewed=False)
            )
            reviewed = await self._with_retry(
                self.remote.query, TrendsFilter(reviewed=True)
            )

        reviewed_by_keyword = merge.merge_many(reviewed)
        cleaned = merge.merge_many(
            record
            for record in unreviewed
            if record.target_keyword not in reviewed_by_keyword
        )
        result = [
            record.model_copy(update={"reviewed": False}) if record.reviewed else record
            for record in cleaned.values()
        ]
        dropped = len(unreviewed) - len(result)
        if dropped:
            logger.info(f"Dropped {dropped} duplicate unreviewed records")

        if include_reviewed:
            result.extend(reviewed_by_keyword.values())

        self.include_reviewed = include_reviewed
        self.trends_data = result
        return result

    async def initialize(self, reviewed: bool | None = None) -> int:
        """Reload the local cache from the remote store."""
        with self._loading("Loading remote data"):
            if await self.cache.pending_syncs():
                # Never drop unpushed local writes
                await self.wait_until_idle()
                await self.sync()

            records = await self._with_retry(
                self.remote.query, TrendsFilter(reviewed=reviewed)
            )
            await self.cache.clear()
            await self.cache.upsert(records, status=SyncStatus.SYNCED)
            await self.refresh_view(include_reviewed=reviewed is not False)

        logger.info(f"Loaded {len(records)} remote records")
        return len(records)

    # ------------------------------------------------------------------ #
    # Periodic sync
    # ------------------------------------------------------------------ #

    def start_auto_sync(self, interval: float) -> None:
        """Run sync() every `interval` seconds on a background task."""
        if self._auto_sync_task is not None:
            self._auto_sync_task.cancel()
        self._auto_sync_task = asyncio.create_task(self._auto_sync_loop(interval))
        logger.info(f"Auto sync started every {interval}s")

    async def stop_auto_sync(self) -> None:
        task, self._auto_sync_task = self._auto_sync_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Auto sync stopped")

    async def _auto_sync_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sync()
            except Exception as e:
                logger.exception(f"Scheduled sync failed: {e}")
