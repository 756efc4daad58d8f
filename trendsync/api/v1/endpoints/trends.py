"""
Trends API endpoints.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from trendsync.api.v1.errors import sync_errors
from trendsync.core.database import get_sync_manager
from trendsync.schemas.sync import PurgeReport, ReviewRequest, SyncReport, UploadResult
from trendsync.schemas.trends import (
    TrendsFilter,
    TrendsRecord,
    TrendsRecordResponse,
)
from trendsync.services.freshness import calculate_freshness_score
from trendsync.services.records import parse_records
from trendsync.services.sync.sync_manager import SyncManager

router = APIRouter()


def _with_freshness(records: list[TrendsRecord]) -> list[TrendsRecordResponse]:
    return [
        TrendsRecordResponse(
            **record.model_dump(exclude={"sync_state"}),
            freshness_score=calculate_freshness_score(record.comparison_data),
        )
        for record in records
    ]


@router.get("/", response_model=list[TrendsRecordResponse], response_model_by_alias=True)
async def get_trends(
    reviewed: bool | None = Query(None),
    search: str | None = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    manager: SyncManager = Depends(get_sync_manager),
):
    """
    Query the local cache.

    - **reviewed**: Only reviewed (true) or unreviewed (false) records
    - **search**: Case-insensitive substring of the target keyword
    - **skip** / **limit**: Pagination over the filtered records
    """
    records = await manager.cache.query(
        TrendsFilter(reviewed=reviewed, search=search, offset=skip, limit=limit)
    )
    return _with_freshness([record.to_record() for record in records])


@router.post("/", response_model=UploadResult)
async def upload_trends(
    payload: list[dict[str, Any]] = Body(...),
    manager: SyncManager = Depends(get_sync_manager),
):
    """
    Upload records produced by the ingestion pipeline.

    Malformed entries are reported in `rejected` alongside records without
    volume; the rest of the batch is still stored and synced.
    """
    records, malformed = parse_records(payload)
    with sync_errors():
        result = await manager.upload(records)
    result.rejected = malformed + result.rejected
    return result


@router.get(
    "/partitioned",
    response_model=list[TrendsRecordResponse],
    response_model_by_alias=True,
)
async def get_partitioned_trends(
    include_reviewed: bool = Query(False),
    manager: SyncManager = Depends(get_sync_manager),
):
    """Load both remote partitions, without keywords duplicated across them."""
    with sync_errors():
        records = await manager.load_partitioned(include_reviewed)
    return _with_freshness(records)


@router.post("/review", response_model=SyncReport | None)
async def review_trends(
    request: ReviewRequest,
    manager: SyncManager = Depends(get_sync_manager),
):
    """Mark records as reviewed or unreviewed by id."""
    with sync_errors():
        return await manager.set_reviewed_status(request.ids, request.reviewed)


@router.delete("/reviewed", response_model=PurgeReport)
async def purge_reviewed_trends(
    confirm: bool = Query(False),
    manager: SyncManager = Depends(get_sync_manager),
):
    """Permanently delete every reviewed record. Requires confirm=true."""
    if not confirm:
        raise HTTPException(
            status_code=400,
            detail="Deleting reviewed records is irreversible; pass confirm=true",
        )
    with sync_errors():
        return await manager.purge_reviewed()
