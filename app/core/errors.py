from enum import Enum
from typing import Iterable, Optional
from fastapi import status


class ChunkStatus(str, Enum):
    """Outcome tag carried by every chunk/finalize response."""
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    CALLER_ERROR = "caller_error"
    TRANSIENT_ERROR = "transient_error"
    FATAL_ERROR = "fatal_error"


class UploadError(Exception):
    tag = ChunkStatus.FATAL_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str, session_id: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.session_id = session_id


class CallerError(UploadError):
    """Malformed or inconsistent request; nothing was mutated."""
    tag = ChunkStatus.CALLER_ERROR
    status_code = status.HTTP_400_BAD_REQUEST


class SessionNotFoundError(CallerError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, session_id: str):
        super().__init__(f"Unknown upload session: {session_id}", session_id)


class SessionIncompleteError(CallerError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, session_id: str, missing: Iterable[int]):
        self.missing = sorted(missing)
        preview = self.missing[:20]
        suffix = "..." if len(self.missing) > len(preview) else ""
        super().__init__(
            f"Session {session_id} is incomplete; missing chunks: {preview}{suffix}",
            session_id,
        )


class TransientIOError(UploadError):
    """Retryable: disk contention, lock timeout, interrupted write."""
    tag = ChunkStatus.TRANSIENT_ERROR
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class FatalStorageError(UploadError):
    """The session can not continue; the client must restart with a new session id."""
    tag = ChunkStatus.FATAL_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
