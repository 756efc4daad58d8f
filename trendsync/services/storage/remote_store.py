"""
Remote store adapter over SQLAlchemy (PostgreSQL in production).
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Sequence

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trendsync.core.clock import Clock, now_ms
from trendsync.core.exceptions import NotAuthenticatedError, TransientRemoteError
from trendsync.core.logging import get_logger
from trendsync.models.sql_models import PARTITIONS
from trendsync.schemas.trends import ReviewedPatch, TrendsFilter, TrendsRecord
from trendsync.services.storage.base import RemoteStore
from trendsync.services.sync.merge import merge_many, reconcile

logger = get_logger(__name__)

# SQLSTATE class 28: invalid authorization specification
AUTH_SQLSTATE_CLASS = "28"


def translate_error(exc: DBAPIError) -> Exception | None:
    """Map a driver error onto the sync error taxonomy, None if unmapped."""
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if sqlstate and str(sqlstate).startswith(AUTH_SQLSTATE_CLASS):
        return NotAuthenticatedError(f"Remote store rejected credentials: {exc.orig}")
    if exc.connection_invalidated or isinstance(exc, (OperationalError, InterfaceError)):
        return TransientRemoteError(f"Remote store unavailable: {exc.orig}")
    return None


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _to_row(record: TrendsRecord, updated_at: int) -> dict[str, Any]:
    return {
        "target_keyword": record.target_keyword,
        "id": record.id,
        "file_name": record.file_name,
        "timestamp": record.timestamp,
        "last_week_volume": record.last_week_volume,
        "reviewed": record.reviewed,
        "comparison_data": [
            point.model_dump(mode="json", by_alias=True)
            for point in record.comparison_data
        ],
        "chart_config": (
            record.chart_config.model_dump(mode="json", by_alias=True)
            if record.chart_config
            else None
        ),
        "updated_at": updated_at,
    }


def _to_record(row) -> TrendsRecord:
    return TrendsRecord.model_validate(
        {
            "id": row["id"],
            "target_keyword": row["target_keyword"],
            "timestamp": row["timestamp"],
            "file_name": row["file_name"],
            "comparison_data": row["comparison_data"],
            "last_week_volume": row["last_week_volume"],
            "reviewed": row["reviewed"],
            "chart_config": row["chart_config"],
        }
    )


class SQLRemoteStore(RemoteStore):
    """Durable remote store split into reviewed / unreviewed tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None,
        clock: Clock = now_ms,
    ):
        self.session_factory = session_factory
        self.clock = clock

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """Session inside one transaction, with driver errors translated."""
        if self.session_factory is None:
            raise NotAuthenticatedError("Remote store credentials are not configured")

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except DBAPIError as e:
            translated = translate_error(e)
            if translated is None:
                raise
            raise translated from e
        except (OSError, asyncio.TimeoutError) as e:
            raise TransientRemoteError(f"Remote store unreachable: {e}") from e

    @staticmethod
    def _partitions(reviewed: bool | None):
        if reviewed is None:
            return list(PARTITIONS.values())
        return [PARTITIONS[reviewed]]

    @staticmethod
    def _where(stmt, model, filters: TrendsFilter):
        if filters.keywords is not None:
            stmt = stmt.where(model.target_keyword.in_(list(filters.keywords)))
        if filters.search:
            pattern = f"%{_escape_like(filters.search)}%"
            stmt = stmt.where(model.target_keyword.ilike(pattern, escape="\\"))
        return stmt

    async def _load(
        self, session: AsyncSession, keywords: Iterable[str]
    ) -> dict[str, TrendsRecord]:
        """Stored versions of `keywords` from both partitions."""
        keywords = list(keywords)
        found: list[TrendsRecord] = []
        for model in PARTITIONS.values():
            result = await session.execute(
                select(model.__table__).where(model.target_keyword.in_(keywords))
            )
            found.extend(_to_record(row) for row in result.mappings())
        # A keyword found in both partitions collapses to one merged record
        return merge_many(found)

    async def _replace(
        self, session: AsyncSession, records: Sequence[TrendsRecord]
    ) -> None:
        """Rewrite `records` into the partition matching their flag."""
        if not records:
            return
        keywords = [record.target_keyword for record in records]
        for model in PARTITIONS.values():
            await session.execute(
                delete(model).where(model.target_keyword.in_(keywords))
            )

        updated_at = self.clock()
        for reviewed, model in PARTITIONS.items():
            rows = [_to_row(r, updated_at) for r in records if r.reviewed == reviewed]
            if rows:
                await session.execute(insert(model), rows)

    async def upsert_many(self, records: Sequence[TrendsRecord]) -> list[TrendsRecord]:
        incoming = merge_many(records)
        if not incoming:
            return []

        async with self._transaction() as session:
            existing = await self._load(session, incoming.keys())
            merged = [
                reconcile(existing[keyword], record) if keyword in existing else record
                for keyword, record in incoming.items()
            ]
            await self._replace(session, merged)

        logger.info(f"Upserted {len(merged)} records to remote store")
        return merged

    async def query(self, filters: TrendsFilter | None = None) -> list[TrendsRecord]:
        filters = filters or TrendsFilter()
        records: list[TrendsRecord] = []
        async with self._transaction() as session:
            for model in self._partitions(filters.reviewed):
                stmt = self._where(select(model.__table__), model, filters)
                result = await session.execute(stmt.order_by(model.target_keyword))
                records.extend(_to_record(row) for row in result.mappings())
        return filters.paginate(records)

    async def update_where(
        self, keywords: Iterable[str], patch: ReviewedPatch
    ) -> list[TrendsRecord]:
        keywords = list(keywords)
        if not keywords:
            return []

        async with self._transaction() as session:
            existing = await self._load(session, keywords)
            updated = [
                record.model_copy(update={"reviewed": patch.reviewed})
                for record in existing.values()
            ]
            await self._replace(session, updated)

        if not updated:
            logger.warning(f"No remote records matched {len(keywords)} keywords")
        return updated

    async def delete_where(self, predicate: TrendsFilter) -> None:
        async with self._transaction() as session:
            for model in self._partitions(predicate.reviewed):
                stmt = self._where(delete(model), model, predicate)
                result = await session.execute(stmt)
                logger.info(
                    f"Deleted {result.rowcount} records from {model.__tablename__}"
                )

    async def changed_since(self, since: int | None) -> list[TrendsRecord]:
        records: list[TrendsRecord] = []
        async with self._transaction() as session:
            for model in PARTITIONS.values():
                stmt = select(model.__table__)
                if since is not None:
                    stmt = stmt.where(model.updated_at > since)
                result = await session.execute(stmt.order_by(model.updated_at))
                records.extend(_to_record(row) for row in result.mappings())
        return records
