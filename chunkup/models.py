"""
Models for chunkup module.

Enums for session/part lifecycles, mutable session state owned by the
coordinator, and immutable value objects exchanged with callers.
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import ErrorKind, InvalidTransitionError

MB = 1024 * 1024


class UploadStrategy(Enum):
    """How a file is transferred to storage."""
    SINGLE_SHOT = "single_shot"
    MULTIPART = "multipart"


class SessionState(Enum):
    """State of an upload session."""
    PLANNING = "planning"
    SINGLE_SHOT_IN_FLIGHT = "single_shot_in_flight"
    MULTIPART_IN_FLIGHT = "multipart_in_flight"
    COMPLETING = "completing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED)


class PartState(Enum):
    """State of a single multipart part."""
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadStatus(Enum):
    """Outcome reported to the caller."""
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


_ALLOWED_TRANSITIONS = {
    SessionState.PLANNING: {
        SessionState.SINGLE_SHOT_IN_FLIGHT,
        SessionState.MULTIPART_IN_FLIGHT,
    },
    SessionState.SINGLE_SHOT_IN_FLIGHT: {SessionState.COMPLETED},
    SessionState.MULTIPART_IN_FLIGHT: {SessionState.COMPLETING},
    SessionState.COMPLETING: {SessionState.COMPLETED},
}


@dataclass
class Part:
    """One contiguous byte range [start, end) of the source."""
    part_number: int
    start: int
    end: int
    state: PartState = PartState.PENDING
    transferred_bytes: int = 0
    etag: Optional[str] = None
    attempts: int = 0

    @property
    def size(self) -> int:
        return self.end - self.start

    def begin(self) -> None:
        if self.state != PartState.PENDING:
            raise InvalidTransitionError(
                f"Part {self.part_number} cannot start from state {self.state.value}"
            )
        self.state = PartState.IN_FLIGHT

    def complete(self, etag: str) -> None:
        if self.state != PartState.IN_FLIGHT:
            raise InvalidTransitionError(
                f"Part {self.part_number} cannot complete from state {self.state.value}"
            )
        if not etag:
            raise InvalidTransitionError(f"Part {self.part_number} completed without ETag")
        self.state = PartState.COMPLETED
        self.etag = etag
        self.transferred_bytes = self.size

    def fail(self) -> None:
        if self.state != PartState.IN_FLIGHT:
            raise InvalidTransitionError(
                f"Part {self.part_number} cannot fail from state {self.state.value}"
            )
        self.state = PartState.FAILED


@dataclass(frozen=True)
class CompletedPart:
    """(part_number, etag) pair submitted to the completion endpoint."""
    part_number: int
    etag: str

    def to_payload(self) -> Dict[str, Any]:
        return {"partNumber": self.part_number, "eTag": self.etag}


@dataclass(frozen=True)
class TransferPlan:
    """Planner output: strategy plus the static part plan."""
    strategy: UploadStrategy
    total_bytes: int
    part_size: int
    parts: Tuple[Part, ...] = ()

    @property
    def part_count(self) -> int:
        return len(self.parts)


@dataclass
class UploadSession:
    """
    One logical file transfer.

    Mutated only by the coordinator. Storage identity is assigned once,
    before any byte is sent.
    """
    total_bytes: int
    content_type: str
    filename: str
    strategy: UploadStrategy
    state: SessionState = SessionState.PLANNING
    storage_key: Optional[str] = None
    multipart_upload_id: Optional[str] = None
    parts: List[Part] = field(default_factory=list)
    error: Optional[str] = None

    def assign_identity(self, storage_key: str, multipart_upload_id: Optional[str] = None) -> None:
        if self.storage_key is not None:
            raise InvalidTransitionError("Storage identity already assigned")
        if self.state != SessionState.PLANNING:
            raise InvalidTransitionError(
                f"Storage identity must be assigned while planning, not {self.state.value}"
            )
        self.storage_key = storage_key
        self.multipart_upload_id = multipart_upload_id

    def transition(self, new_state: SessionState) -> SessionState:
        """Move to new_state, returning the previous state."""
        old = self.state
        if old.is_terminal:
            raise InvalidTransitionError(f"Session already terminal ({old.value})")
        failing = new_state in (SessionState.FAILED, SessionState.CANCELLED)
        if not failing and new_state not in _ALLOWED_TRANSITIONS.get(old, set()):
            raise InvalidTransitionError(f"Invalid transition {old.value} -> {new_state.value}")
        self.state = new_state
        return old

    @property
    def completed_parts(self) -> List[CompletedPart]:
        """Completed parts ordered by part number."""
        done = [p for p in self.parts if p.state == PartState.COMPLETED and p.etag]
        return [CompletedPart(p.part_number, p.etag) for p in sorted(done, key=lambda p: p.part_number)]


@dataclass(frozen=True)
class ProgressSnapshot:
    """Aggregated progress of a session at one instant."""
    transferred_bytes: int
    total_bytes: int
    percent: int
    bytes_per_second: float = 0.0
    eta_seconds: Optional[float] = None

    @property
    def uploaded_bytes(self) -> int:
        return self.transferred_bytes


@dataclass(frozen=True)
class FileMetadata:
    """File description sent to the allocation endpoint."""
    filename: str
    size: int
    content_type: str = "application/octet-stream"
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload = dict(self.extra)
        payload.update({
            "filename": self.filename,
            "contentType": self.content_type,
            "size": self.size,
        })
        return payload


@dataclass(frozen=True)
class StartUploadResponse:
    """Allocator answer: storage key and either a PUT URL or a multipart id."""
    storage_key: str
    upload_url: Optional[str] = None
    multipart_upload_id: Optional[str] = None

    @property
    def strategy(self) -> Optional[UploadStrategy]:
        if self.multipart_upload_id and not self.upload_url:
            return UploadStrategy.MULTIPART
        if self.upload_url and not self.multipart_upload_id:
            return UploadStrategy.SINGLE_SHOT
        return None


@dataclass(frozen=True)
class UploadResult:
    """Immutable result of an upload session."""
    filename: str
    status: UploadStatus = UploadStatus.SUCCESS
    storage_key: Optional[str] = None
    strategy: Optional[UploadStrategy] = None
    parts_count: int = 0
    total_bytes: int = 0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def success(self) -> bool:
        return self.status == UploadStatus.SUCCESS

    @classmethod
    def ok(cls, session: "UploadSession"):
        return cls(
            filename=session.filename,
            status=UploadStatus.SUCCESS,
            storage_key=session.storage_key,
            strategy=session.strategy,
            parts_count=len(session.parts),
            total_bytes=session.total_bytes,
        )

    @classmethod
    def fail(cls, session: "UploadSession", error: str, kind: Optional[ErrorKind] = None):
        return cls(
            filename=session.filename,
            status=UploadStatus.FAILED,
            storage_key=session.storage_key,
            strategy=session.strategy,
            parts_count=len(session.parts),
            total_bytes=session.total_bytes,
            error=error,
            error_kind=kind,
        )

    @classmethod
    def cancelled(cls, session: "UploadSession"):
        return cls(
            filename=session.filename,
            status=UploadStatus.CANCELLED,
            storage_key=session.storage_key,
            strategy=session.strategy,
            parts_count=len(session.parts),
            total_bytes=session.total_bytes,
            error="Upload cancelled",
            error_kind=ErrorKind.CANCELLED,
        )


@dataclass(frozen=True)
class ApiEndpoints:
    """Backend endpoint paths, relative to the API base URL."""
    start: str = "/api/uploads/start"
    part_url: str = "/api/uploads/multipart/part-url"
    complete: str = "/api/uploads/multipart/complete"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


@dataclass(frozen=True)
class UploadConfig:
    """Immutable configuration for upload sessions."""
    single_shot_threshold: int = 5 * MB
    part_size: int = 64 * MB
    max_part_attempts: int = 3
    retry_backoff: float = 0.5  # seconds, doubled per attempt
    request_timeout: float = 60.0
    transfer_timeout: float = 300.0
    stream_chunk_size: int = 1 * MB
    concurrency: Optional[int] = None  # explicit override, still clamped
    endpoints: ApiEndpoints = field(default_factory=ApiEndpoints)

    def __post_init__(self):
        if self.single_shot_threshold < 0:
            raise ValueError("single_shot_threshold must be >= 0")
        if self.part_size <= 0:
            raise ValueError("part_size must be > 0")
        if self.max_part_attempts < 1:
            raise ValueError("max_part_attempts must be >= 1")
        if self.stream_chunk_size <= 0:
            raise ValueError("stream_chunk_size must be > 0")

    def backoff_for(self, attempt: int) -> float:
        """Delay before retrying after the given failed attempt (1-based)."""
        return self.retry_backoff * (2 ** (attempt - 1))

    @classmethod
    def from_env(cls, **overrides) -> "UploadConfig":
        """Build config from CHUNKUP_* environment variables."""
        concurrency = os.getenv("CHUNKUP_CONCURRENCY")
        values = dict(
            single_shot_threshold=_env_int("CHUNKUP_SINGLE_SHOT_THRESHOLD", 5 * MB),
            part_size=_env_int("CHUNKUP_PART_SIZE", 64 * MB),
            max_part_attempts=_env_int("CHUNKUP_MAX_PART_ATTEMPTS", 3),
            retry_backoff=_env_float("CHUNKUP_RETRY_BACKOFF", 0.5),
            request_timeout=_env_float("CHUNKUP_REQUEST_TIMEOUT", 60.0),
            transfer_timeout=_env_float("CHUNKUP_TRANSFER_TIMEOUT", 300.0),
            concurrency=int(concurrency) if concurrency else None,
            endpoints=ApiEndpoints(
                start=os.getenv("CHUNKUP_START_ENDPOINT", ApiEndpoints.start),
                part_url=os.getenv("CHUNKUP_PART_URL_ENDPOINT", ApiEndpoints.part_url),
                complete=os.getenv("CHUNKUP_COMPLETE_ENDPOINT", ApiEndpoints.complete),
            ),
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
