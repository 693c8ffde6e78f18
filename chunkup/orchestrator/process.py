from contextvars import ContextVar
from enum import Enum
from typing import Callable, Optional, TYPE_CHECKING
import asyncio
import logging

from ..errors import ErrorKind
from ..models import (
    FileMetadata,
    Part,
    ProgressSnapshot,
    SessionState,
    UploadResult,
    UploadSession,
    UploadStatus,
)
from ..utils.events import EventEmitter
logger = logging.getLogger(__name__)

# Set inside UploadProcess._run; worker tasks spawned by the session inherit it.
_running_process: ContextVar[Optional["UploadProcess"]] = ContextVar("chunkup_running_process", default=None)

if TYPE_CHECKING:
    from .session import UploadSessionCoordinator


class ProcessState(Enum):
    """State of upload process."""
    PENDING = "pending"
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadProcess:
    """
    Process object for a single file upload with event-based progress tracking.

    Usage:
        process = orchestrator.start(path)
        process.on_progress(lambda p: print(f"{p.percent}%"))
        process.on_part_complete(lambda part: print(f"part {part.part_number} done"))
        process.on_finish(lambda result: print(result.storage_key))

        result = await process.wait()  # wait() starts automatically if needed
    """

    def __init__(
        self,
        coordinator: "UploadSessionCoordinator",
        source,
        metadata: FileMetadata
    ):
        self._coordinator = coordinator
        self._source = source
        self._metadata = metadata
        self._events = EventEmitter()
        self._cancel_event = asyncio.Event()
        self._state = ProcessState.PENDING
        self._task: Optional[asyncio.Task] = None
        self._result: Optional[UploadResult] = None
        self._error: Optional[Exception] = None
        self._session: Optional[UploadSession] = None
        self._progress: Optional[ProgressSnapshot] = None

        self._events.on("session_start", self._remember_session)
        self._events.on("progress", self._remember_progress)

    # Event subscription methods
    def on_start(self, callback: Callable[[], None]):
        """Called when the process starts."""
        self._events.on("start", callback)

    def on_state_change(self, callback: Callable[[UploadSession, SessionState, SessionState], None]):
        """Called on every session transition. Receives (session, old_state, new_state)."""
        self._events.on("state_change", callback)

    def on_progress(self, callback: Callable[[ProgressSnapshot], None]):
        """Called when aggregated byte progress moves. Receives ProgressSnapshot."""
        self._events.on("progress", callback)

    def on_part_complete(self, callback: Callable[[Part], None]):
        """Called when a multipart part is stored. Receives Part."""
        self._events.on("part_complete", callback)

    def on_part_retry(self, callback: Callable[[Part, int, Exception], None]):
        """Called before a part is retried. Receives (part, failed_attempt, error)."""
        self._events.on("part_retry", callback)

    def on_part_fail(self, callback: Callable[[Part, Exception], None]):
        """Called when a part fails for good. Receives (part, error)."""
        self._events.on("part_fail", callback)

    def on_finish(self, callback: Callable[[UploadResult], None]):
        """Called with the final UploadResult, whatever its status."""
        self._events.on("finish", callback)

    def on_error(self, callback: Callable[[Exception], None]):
        """Called when an unexpected error aborts the process."""
        self._events.on("error", callback)

    # Control methods
    async def start(self):
        """Start the upload (non-blocking)."""
        if self._state != ProcessState.PENDING:
            raise RuntimeError(f"Cannot start process in state: {self._state}")

        self._state = ProcessState.RUNNING
        await self._events.emit("start")
        if self._cancel_event.is_set():
            # cancelled by a start listener
            return
        self._task = asyncio.create_task(self._run())

    async def cancel(self):
        """Ask the session to stop; wait() then returns a cancelled result."""
        if self._state in (ProcessState.COMPLETED, ProcessState.CANCELLED, ProcessState.FAILED):
            return

        self._cancel_event.set()
        if self._task is None:
            self._state = ProcessState.CANCELLED
            self._result = UploadResult(
                filename=self._metadata.filename,
                status=UploadStatus.CANCELLED,
                total_bytes=self._metadata.size,
                error="Upload cancelled",
                error_kind=ErrorKind.CANCELLED,
            )
            return
        if _running_process.get() is self:
            # Called from one of our own listeners; wait() collects the result.
            return
        await asyncio.gather(self._task, return_exceptions=True)

    async def wait(self) -> UploadResult:
        """Wait for the upload to finish and return its result."""
        if self._state == ProcessState.PENDING:
            await self.start()

        if self._task:
            await self._task

        assert self._result is not None
        return self._result

    # State properties
    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def session(self) -> Optional[UploadSession]:
        """Live session (None before planning)."""
        return self._session

    @property
    def progress(self) -> Optional[ProgressSnapshot]:
        """Latest progress snapshot."""
        return self._progress

    @property
    def result(self) -> Optional[UploadResult]:
        return self._result

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    @property
    def is_running(self) -> bool:
        return self._state == ProcessState.RUNNING

    @property
    def is_cancelled(self) -> bool:
        return self._state == ProcessState.CANCELLED

    # Internal methods
    def _remember_session(self, session: UploadSession):
        self._session = session

    def _remember_progress(self, snapshot: ProgressSnapshot):
        self._progress = snapshot

    async def _run(self):
        _running_process.set(self)
        try:
            self._result = await self._coordinator.run(
                self._source,
                self._metadata,
                cancel_event=self._cancel_event,
                events=self._events,
            )
        except asyncio.CancelledError:
            self._state = ProcessState.CANCELLED
            raise
        except Exception as e:
            self._state = ProcessState.FAILED
            self._error = e
            logger.error(f"Upload process failed: {e}", exc_info=True)
            self._result = UploadResult(
                filename=self._metadata.filename,
                status=UploadStatus.FAILED,
                total_bytes=self._metadata.size,
                error=str(e) or type(e).__name__,
            )
            await self._events.emit("error", e)
            await self._events.emit("finish", self._result)
            return

        if self._result.status == UploadStatus.SUCCESS:
            self._state = ProcessState.COMPLETED
        elif self._result.status == UploadStatus.CANCELLED:
            self._state = ProcessState.CANCELLED
        else:
            self._state = ProcessState.FAILED
        await self._events.emit("finish", self._result)
