"""
Schemas describing synchronization state and results.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class SyncPhase(str, Enum):
    """Phase of the synchronization manager."""

    IDLE = "idle"
    SYNCING = "syncing"


class LoadingState(BaseModel):
    """Progress signal exposed to the presentation layer."""

    is_loading: bool = False
    message: str | None = None


class SyncReport(BaseModel):
    """Outcome of one sync() run."""

    started_at: int
    finished_at: int | None = None
    pushed: int = 0
    batches: int = 0
    reviewed_reasserted: int = 0
    pulled: int = 0


class UploadResult(BaseModel):
    """Outcome of an upload."""

    accepted: int
    rejected: list[str] = Field(default_factory=list)
    sync: SyncReport | None = None


class PurgeReport(BaseModel):
    """Outcome of purging the reviewed partition."""

    removed_reviewed: int
    repaired_violations: list[str] = Field(default_factory=list)


class ReviewRequest(BaseModel):
    """Request to change the reviewed flag of records by id."""

    ids: list[str] = Field(..., min_length=1)
    reviewed: bool


class SyncStatusResponse(BaseModel):
    """Current synchronization status."""

    phase: SyncPhase
    loading: LoadingState
    last_error: str | None = None
    last_report: SyncReport | None = None
    record_count: int = 0
