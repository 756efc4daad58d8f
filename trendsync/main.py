"""
FastAPI application for the trends workspace.

Startup connects the local cache and the remote store, builds the projection
read by the API and starts the periodic sync; shutdown stops it and closes
both stores.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from trendsync import __version__
from trendsync.api.v1.router import api_router
from trendsync.core.config import settings
from trendsync.core.database import close_databases, get_sync_manager, init_databases
from trendsync.core.logging import get_logger, setup_logging
from trendsync.services.sync.sync_manager import SyncManager

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    manager = await init_databases()
    await manager.refresh_view()
    logger.info(f"Workspace ready with {len(manager.trends_data)} cached records")

    if settings.AUTO_SYNC_INTERVAL_SECONDS > 0:
        manager.start_auto_sync(settings.AUTO_SYNC_INTERVAL_SECONDS)
    try:
        yield
    finally:
        await close_databases()


def create_application() -> FastAPI:
    """Build the app with middleware and the v1 routes."""
    expose_docs = settings.ENVIRONMENT != "production"
    app = FastAPI(
        title="Trends Workspace API",
        description="Keyword trends research workspace with offline-first sync",
        version=__version__,
        docs_url="/docs" if expose_docs else None,
        redoc_url="/redoc" if expose_docs else None,
        lifespan=lifespan,
    )

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_HOSTS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix=settings.API_PREFIX)
    return app


app = create_application()


@app.get("/health")
async def health_check(manager: SyncManager = Depends(get_sync_manager)):
    """Liveness plus the outcome of the last sync; degraded after a failed one."""
    return {
        "status": "degraded" if manager.last_error else "healthy",
        "service": "trendsync-api",
        "version": __version__,
        "sync_phase": manager.phase,
        "last_error": manager.last_error,
    }


def run() -> None:
    """Serve the app with uvicorn (the `trendsync-api` command)."""
    import uvicorn

    uvicorn.run(
        "trendsync.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.ENVIRONMENT == "development",
        log_level="info",
    )


if __name__ == "__main__":
    run()
