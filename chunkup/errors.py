"""
Error taxonomy for upload sessions.

Every failure reaching the coordinator is an UploadError whose `kind`
tells the caller which stage broke, so it can decide whether to retry
the whole session.
"""
from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    """Failure bucket of an upload session."""
    ALLOCATION = "allocation"
    PART_URL = "part_url"
    TRANSFER = "transfer"
    MISSING_ETAG = "missing_etag"
    COMPLETION = "completion"
    CANCELLED = "cancelled"


class InvalidTransitionError(RuntimeError):
    """Raised when a session or part is driven through an illegal state change."""


class APIError(RuntimeError):
    """Raised by the HTTP adapter when the backend answers with an error."""

    def __init__(self, method: str, endpoint: str, status_code: int, detail: Any = None):
        self.method = method
        self.endpoint = endpoint
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"API error {status_code} on {method} {endpoint}: {detail}")


class UploadError(RuntimeError):
    """Base class for session-fatal upload failures."""
    kind: ErrorKind = ErrorKind.TRANSFER

    def __init__(self, message: str, part_number: Optional[int] = None):
        self.part_number = part_number
        super().__init__(message)


class AllocationError(UploadError):
    """Could not obtain storage key / upload URL / multipart id."""
    kind = ErrorKind.ALLOCATION


class StrategyMismatchError(AllocationError):
    """Allocator chose a different strategy than the local planner."""


class PartUrlError(UploadError):
    """Could not obtain the presigned URL for a part."""
    kind = ErrorKind.PART_URL


class TransferError(UploadError):
    """Network error or non-2xx answer while PUTting bytes."""
    kind = ErrorKind.TRANSFER

    def __init__(self, message: str, part_number: Optional[int] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, part_number)


class MissingETagError(TransferError):
    """Storage acknowledged a part with 2xx but without an ETag header."""
    kind = ErrorKind.MISSING_ETAG


class CompletionError(UploadError):
    """Backend rejected the multipart finalize call."""
    kind = ErrorKind.COMPLETION


class UploadCancelledError(UploadError):
    """The caller aborted the session."""
    kind = ErrorKind.CANCELLED
