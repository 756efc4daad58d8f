"""
Translation of sync errors into HTTP responses.
"""

from __future__ import annotations

from contextlib import contextmanager

from fastapi import HTTPException

from trendsync.core.exceptions import (
    NotAuthenticatedError,
    SyncFailure,
    TransientRemoteError,
)


@contextmanager
def sync_errors():
    """Raise retryable HTTP errors for remote store failures."""
    try:
        yield
    except NotAuthenticatedError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    except SyncFailure as e:
        raise HTTPException(
            status_code=503,
            detail={
                "message": str(e),
                "persisted": e.persisted,
                "failed": e.failed,
                "retryable": True,
            },
        ) from e
    except TransientRemoteError as e:
        raise HTTPException(
            status_code=503, detail={"message": str(e), "retryable": True}
        ) from e
