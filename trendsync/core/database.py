"""
Store connection management.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from trendsync.core.config import settings
from trendsync.core.logging import get_logger

if TYPE_CHECKING:
    from trendsync.services.sync.sync_manager import SyncManager

logger = get_logger(__name__)

Base = declarative_base()

# Remote store (SQLAlchemy)
remote_engine: AsyncEngine | None = None
RemoteSessionLocal: async_sessionmaker[AsyncSession] | None = None

# Local cache (Redis)
redis_client: redis.Redis | None = None

# Synchronization manager shared by the API
sync_manager: SyncManager | None = None


def create_remote_engine(url: str) -> AsyncEngine:
    """Create the remote store engine."""
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_recycle=300,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create the remote store tables if missing."""
    # Register the models on Base.metadata
    from trendsync.models import sql_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def get_sync_manager() -> SyncManager:
    """Get the synchronization manager."""
    if sync_manager is None:
        msg = "Synchronization manager is not initialized"
        raise RuntimeError(msg)
    return sync_manager


async def init_databases() -> SyncManager:
    """Connect both stores and build the synchronization manager."""
    global remote_engine, RemoteSessionLocal, redis_client, sync_manager

    from trendsync.services.storage.local_cache import RedisCacheStore
    from trendsync.services.storage.remote_store import SQLRemoteStore
    from trendsync.services.sync.sync_manager import SyncManager

    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

    if settings.REMOTE_DATABASE_URL:
        remote_engine = create_remote_engine(settings.REMOTE_DATABASE_URL)
        RemoteSessionLocal = async_sessionmaker(
            remote_engine, class_=AsyncSession, expire_on_commit=False
        )
    else:
        logger.warning("REMOTE_DATABASE_URL not set, remote store unavailable")

    try:
        await redis_client.ping()
        if remote_engine is not None:
            await create_schema(remote_engine)
        logger.info("Store connections established")
    except Exception as e:
        logger.error(f"Store connection failed: {e}")
        raise

    sync_manager = SyncManager.from_settings(
        RedisCacheStore(redis_client), SQLRemoteStore(RemoteSessionLocal)
    )
    return sync_manager


async def close_databases():
    """Stop background sync and close all store connections."""
    global remote_engine, RemoteSessionLocal, redis_client, sync_manager

    if sync_manager:
        await sync_manager.stop_auto_sync()
        sync_manager = None

    if redis_client:
        await redis_client.aclose()
        redis_client = None

    if remote_engine:
        await remote_engine.dispose()
        remote_engine = None
        RemoteSessionLocal = None

    logger.info("Store connections closed")
