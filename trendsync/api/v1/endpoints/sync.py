"""
Synchronization API endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from trendsync.api.v1.errors import sync_errors
from trendsync.core.database import get_sync_manager
from trendsync.schemas.sync import SyncStatusResponse
from trendsync.services.sync.sync_manager import SyncManager

router = APIRouter()


@router.post("/")
async def run_sync(manager: SyncManager = Depends(get_sync_manager)):
    """Run a sync now; reports already_running when one is in flight."""
    with sync_errors():
        report = await manager.sync()
    if report is None:
        return {"status": "already_running"}
    return {"status": "completed", "report": report}


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(manager: SyncManager = Depends(get_sync_manager)):
    """Current phase and loading signal of the synchronization manager."""
    return manager.status()
