"""
Error taxonomy shared by the stores and the synchronization manager.
"""

from __future__ import annotations


class TrendSyncError(Exception):
    """Base class for every error raised by trendsync."""


class RecordValidationError(TrendSyncError):
    """A record was rejected at the ingestion boundary."""

    def __init__(self, keyword: str, reason: str):
        self.keyword = keyword
        self.reason = reason
        super().__init__(f"Rejected record '{keyword}': {reason}")


class NotAuthenticatedError(TrendSyncError):
    """The remote store was used without valid credentials."""


class TransientRemoteError(TrendSyncError):
    """Network, quota or server-side failure worth retrying."""


class SyncFailure(TrendSyncError):
    """A push batch exhausted its retries."""

    def __init__(self, message: str, persisted: int, failed: int):
        self.persisted = persisted
        self.failed = failed
        super().__init__(f"{message} (persisted={persisted}, failed={failed})")
