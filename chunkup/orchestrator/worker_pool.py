"""Bounded pool of part upload workers draining a shared queue."""
import asyncio
import logging
from typing import Dict, List, Optional

from ..errors import MissingETagError, TransferError, UploadCancelledError, UploadError
from ..models import CompletedPart, Part, PartState, UploadConfig, UploadSession
from ..utils.events import EventEmitter
from .progress import ProgressAggregator

logger = logging.getLogger(__name__)


class PartUploadPool:
    """
    Uploads every part of a multipart session exactly once.

    - `concurrency` asyncio tasks pull parts from one queue; get_nowait()
      hands each part to a single worker.
    - A part is retried in place (same worker, fresh URL) up to
      config.max_part_attempts times before it fails.
    - The first failed part stops the pool: the queue is drained, running
      parts finish, and run() raises that part's error.
    - Setting cancel_event drains the queue and cancels running parts.
    """

    def __init__(
        self,
        api,
        transport,
        source,
        session: UploadSession,
        aggregator: ProgressAggregator,
        config: Optional[UploadConfig] = None,
        events: Optional[EventEmitter] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self._api = api
        self._transport = transport
        self._source = source
        self._session = session
        self._aggregator = aggregator
        self._config = config or UploadConfig()
        self._events = events or EventEmitter()
        self._cancel_event = cancel_event
        self._error: Optional[UploadError] = None
        self._results: Dict[int, CompletedPart] = {}
        self._dequeued: List[int] = []

    @property
    def dequeued(self) -> List[int]:
        """Part numbers in the order workers took them."""
        return list(self._dequeued)

    @property
    def _stopping(self) -> bool:
        return self._error is not None or (self._cancel_event is not None and self._cancel_event.is_set())

    async def run(self, parts: List[Part], concurrency: int) -> List[CompletedPart]:
        """Upload parts with `concurrency` workers; return (part_number, etag) sorted by part."""
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        queue: asyncio.Queue = asyncio.Queue()
        pending = [p for p in parts if p.state == PartState.PENDING]
        for part in pending:
            queue.put_nowait(part)

        logger.info(
            f"[pool] Uploading {len(pending)} parts of {self._session.filename} "
            f"with {concurrency} workers"
        )

        workers = [
            asyncio.create_task(self._worker(i, queue), name=f"part-worker-{i}")
            for i in range(concurrency)
        ]
        try:
            await self._wait(workers, queue)
        finally:
            for task in workers:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        if self._error is not None:
            raise self._error

        expected = {p.part_number for p in pending}
        if set(self._results) != expected:
            if self._cancel_event is not None and self._cancel_event.is_set():
                raise UploadCancelledError("Upload cancelled")
            missing = sorted(expected - set(self._results))
            raise TransferError(f"Parts never completed: {missing}")

        return [self._results[n] for n in sorted(self._results)]

    async def _wait(self, workers: List[asyncio.Task], queue: asyncio.Queue) -> None:
        if self._cancel_event is None:
            await asyncio.gather(*workers)
            return

        cancel_waiter = asyncio.create_task(self._cancel_event.wait())
        try:
            running = set(workers)
            while running:
                done, running = await asyncio.wait(
                    running | {cancel_waiter},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                running.discard(cancel_waiter)
                if cancel_waiter in done:
                    dropped = self._drain(queue)
                    logger.info(f"[pool] Cancelled, {dropped} queued parts dropped")
                    raise UploadCancelledError("Upload cancelled")
                for task in done:
                    task.result()
        finally:
            cancel_waiter.cancel()

    def _drain(self, queue: asyncio.Queue) -> int:
        dropped = 0
        while True:
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            dropped += 1

    async def _worker(self, worker_id: int, queue: asyncio.Queue) -> None:
        while not self._stopping:
            try:
                part = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._dequeued.append(part.part_number)

            try:
                await self._upload_part(part)
            except UploadError as exc:
                if exc.part_number is None:
                    exc.part_number = part.part_number
                part.fail()
                await self._events.emit("part_fail", part, exc)
                if self._error is None:
                    self._error = exc
                    self._aggregator.freeze()
                    dropped = self._drain(queue)
                    logger.error(
                        f"[pool] Part {part.part_number} failed ({exc}); "
                        f"stopping, {dropped} queued parts dropped"
                    )
                return

    async def _upload_part(self, part: Part) -> None:
        part.begin()
        await self._events.emit("part_start", part)

        attempt = 0
        while True:
            attempt += 1
            part.attempts = attempt
            try:
                etag = await self._send_part(part)
                break
            except UploadCancelledError:
                raise
            except UploadError as exc:
                if attempt >= self._config.max_part_attempts or self._stopping:
                    raise
                delay = self._config.backoff_for(attempt)
                logger.warning(
                    f"[pool] Part {part.part_number} attempt {attempt} failed: {exc}; "
                    f"retrying in {delay:.1f}s"
                )
                await self._events.emit("part_retry", part, attempt, exc)
                await asyncio.sleep(delay)

        part.complete(etag)
        if self._aggregator.report(part.part_number, part.size, part.size):
            await self._events.emit("progress", self._aggregator.snapshot())
        self._results[part.part_number] = CompletedPart(part.part_number, etag)
        logger.debug(f"[pool] Part {part.part_number} done (etag={etag})")
        await self._events.emit("part_complete", part)

    async def _send_part(self, part: Part) -> str:
        url = await self._api.get_part_upload_url(
            self._session.storage_key,
            self._session.multipart_upload_id,
            part.part_number,
        )

        async def on_progress(sent: int) -> None:
            part.transferred_bytes = min(sent, part.size)
            if self._aggregator.report(part.part_number, sent, part.size):
                await self._events.emit("progress", self._aggregator.snapshot())

        body = self._source.iter_range(part.start, part.end, self._config.stream_chunk_size)
        etag = await self._transport.put(url, body, part.size, on_progress=on_progress)
        if not etag:
            raise MissingETagError("Storage returned no ETag", part.part_number)
        return etag
