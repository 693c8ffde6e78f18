"""Upload session coordinator - drives one file through the upload state machine."""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import StrategyMismatchError, TransferError, UploadCancelledError, UploadError
from ..models import (
    FileMetadata,
    SessionState,
    StartUploadResponse,
    UploadConfig,
    UploadResult,
    UploadSession,
    UploadStrategy,
)
from ..utils.events import EventEmitter
from .parallel import resolve_concurrency
from .planner import plan_transfer
from .progress import ProgressAggregator
from .worker_pool import PartUploadPool

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UploadSessionCoordinator:
    """
    Runs an upload session from planning to a terminal state.

    PLANNING -> SINGLE_SHOT_IN_FLIGHT -> COMPLETED
    PLANNING -> MULTIPART_IN_FLIGHT -> COMPLETING -> COMPLETED
    Any non-terminal state -> FAILED | CANCELLED

    Failures never escape run(): they come back as an UploadResult whose
    error_kind names the stage that broke. Nothing is cleaned up on the
    storage side after a failure.
    """

    def __init__(
        self,
        api,
        transport,
        config: Optional[UploadConfig] = None,
        capacity_probe=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            api: IUploadAPI implementation (allocation, part URLs, completion)
            transport: ITransport used for raw PUTs
            config: Upload configuration
            capacity_probe: Optional ICapacityProbe for the concurrency estimate
            clock: Monotonic clock, injectable for tests
        """
        self._api = api
        self._transport = transport
        self._config = config or UploadConfig()
        self._capacity_probe = capacity_probe
        self._clock = clock

    async def run(
        self,
        source,
        metadata: FileMetadata,
        cancel_event: Optional[asyncio.Event] = None,
        events: Optional[EventEmitter] = None,
    ) -> UploadResult:
        if metadata.size != source.size:
            raise ValueError(
                f"Metadata size {metadata.size} does not match source size {source.size}"
            )

        events = events or EventEmitter()
        plan = plan_transfer(source.size, self._config.single_shot_threshold, self._config.part_size)
        session = UploadSession(
            total_bytes=source.size,
            content_type=metadata.content_type,
            filename=metadata.filename,
            strategy=plan.strategy,
            parts=list(plan.parts),
        )
        aggregator = ProgressAggregator(session.total_bytes, self._clock)
        logger.info(
            f"[upload] {session.filename}: {session.total_bytes} bytes, "
            f"{plan.strategy.value}, {plan.part_count} parts"
        )
        await events.emit("session_start", session)

        try:
            allocation = await self._until_cancelled(self._api.start_upload(metadata), cancel_event)
            self._accept_allocation(session, allocation)

            if session.strategy == UploadStrategy.SINGLE_SHOT:
                await self._run_single_shot(session, allocation, source, aggregator, events, cancel_event)
            else:
                await self._run_multipart(session, source, aggregator, events, cancel_event)
        except UploadCancelledError:
            aggregator.freeze()
            await self._transition(session, SessionState.CANCELLED, events)
            logger.info(f"[upload] {session.filename} cancelled")
            return UploadResult.cancelled(session)
        except UploadError as exc:
            aggregator.freeze()
            message = str(exc)
            if isinstance(exc, TransferError) and exc.part_number is not None:
                message = f"Part {exc.part_number}: {message}"
            session.error = message
            await self._transition(session, SessionState.FAILED, events)
            logger.error(f"[upload] {session.filename} failed ({exc.kind.value}): {message}")
            return UploadResult.fail(session, message, exc.kind)

        self._record_throughput(aggregator)
        logger.info(f"[upload] {session.filename} completed as {session.storage_key}")
        return UploadResult.ok(session)

    def _accept_allocation(self, session: UploadSession, allocation: StartUploadResponse) -> None:
        if allocation.strategy is None:
            raise StrategyMismatchError(
                f"Allocator returned neither a single upload URL nor a multipart id for {session.filename}"
            )
        if allocation.strategy != session.strategy:
            raise StrategyMismatchError(
                f"Allocator chose {allocation.strategy.value} but planner chose {session.strategy.value}"
            )
        session.assign_identity(allocation.storage_key, allocation.multipart_upload_id)

    async def _run_single_shot(
        self,
        session: UploadSession,
        allocation: StartUploadResponse,
        source,
        aggregator: ProgressAggregator,
        events: EventEmitter,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        await self._transition(session, SessionState.SINGLE_SHOT_IN_FLIGHT, events)
        total = session.total_bytes

        async def on_progress(sent: int) -> None:
            if aggregator.report(1, sent, total):
                await events.emit("progress", aggregator.snapshot())

        body = source.iter_range(0, total, self._config.stream_chunk_size)
        await self._until_cancelled(
            self._transport.put(
                allocation.upload_url,
                body,
                total,
                content_type=session.content_type,
                on_progress=on_progress,
            ),
            cancel_event,
        )

        aggregator.report(1, total, total)
        aggregator.finish()
        await self._transition(session, SessionState.COMPLETED, events)
        await events.emit("progress", aggregator.snapshot())

    async def _run_multipart(
        self,
        session: UploadSession,
        source,
        aggregator: ProgressAggregator,
        events: EventEmitter,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        await self._transition(session, SessionState.MULTIPART_IN_FLIGHT, events)

        concurrency = resolve_concurrency(
            session.total_bytes,
            len(session.parts),
            self._capacity_probe,
            self._config.concurrency,
        )
        pool = PartUploadPool(
            self._api,
            self._transport,
            source,
            session,
            aggregator,
            self._config,
            events,
            cancel_event,
        )
        completed = await pool.run(session.parts, concurrency)

        await self._transition(session, SessionState.COMPLETING, events)
        self._raise_if_cancelled(cancel_event)

        ordered = sorted(completed, key=lambda p: p.part_number)
        await self._api.complete_upload(session.storage_key, session.multipart_upload_id, ordered)

        aggregator.finish()
        await self._transition(session, SessionState.COMPLETED, events)
        await events.emit("progress", aggregator.snapshot())

    async def _transition(self, session: UploadSession, new_state: SessionState, events: EventEmitter) -> None:
        old = session.transition(new_state)
        logger.debug(f"[upload] {session.filename}: {old.value} -> {new_state.value}")
        await events.emit("state_change", session, old, new_state)

    def _raise_if_cancelled(self, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise UploadCancelledError("Upload cancelled")

    async def _until_cancelled(self, operation: Awaitable[T], cancel_event: Optional[asyncio.Event]) -> T:
        """Await operation, aborting it when cancel_event fires first."""
        if cancel_event is None:
            return await operation

        task = asyncio.ensure_future(operation)
        if cancel_event.is_set():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise UploadCancelledError("Upload cancelled")

        waiter = asyncio.create_task(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if task in done:
                return task.result()
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise UploadCancelledError("Upload cancelled")
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

    def _record_throughput(self, aggregator: ProgressAggregator) -> None:
        record = getattr(self._capacity_probe, "record", None)
        if callable(record):
            record(aggregator.transferred_bytes, aggregator.elapsed)
