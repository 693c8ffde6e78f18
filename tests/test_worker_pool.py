"""Tests for the part upload worker pool."""
import asyncio

import pytest

from chunkup.errors import ErrorKind, MissingETagError, PartUrlError, TransferError, UploadCancelledError
from chunkup.models import PartState, SessionState, UploadConfig, UploadSession, UploadStrategy
from chunkup.orchestrator.planner import plan_transfer
from chunkup.orchestrator.progress import ProgressAggregator
from chunkup.orchestrator.worker_pool import PartUploadPool
from chunkup.services.sources import BytesSource
from chunkup.utils.events import EventEmitter

from conftest import FakeTransport, FakeUploadAPI

DATA = bytes(range(256)) * 2  # 512 bytes


def _session(api, config, data):
    plan = plan_transfer(len(data), config.single_shot_threshold, config.part_size)
    session = UploadSession(
        total_bytes=len(data),
        content_type="video/mp4",
        filename="movie.mp4",
        strategy=UploadStrategy.MULTIPART,
        parts=list(plan.parts),
    )
    session.assign_identity(api.key, api.upload_id)
    session.transition(SessionState.MULTIPART_IN_FLIGHT)
    return session


def _pool(api, transport, session, data, config, events=None, cancel_event=None):
    aggregator = ProgressAggregator(session.total_bytes)
    pool = PartUploadPool(
        api, transport, BytesSource(data), session, aggregator, config, events, cancel_event
    )
    return pool, aggregator


class TestPartUploadPool:
    @pytest.mark.asyncio
    async def test_every_part_uploaded_exactly_once(self, fake_api, small_config):
        data = DATA[:55]
        transport = FakeTransport()
        session = _session(fake_api, small_config, data)
        pool, aggregator = _pool(fake_api, transport, session, data, small_config)

        completed = await pool.run(session.parts, 3)

        assert [c.part_number for c in completed] == [1, 2, 3, 4, 5, 6]
        assert [c.etag for c in completed] == [f'"etag-{n}"' for n in range(1, 7)]
        assert sorted(call["part"] for call in transport.calls) == [1, 2, 3, 4, 5, 6]
        for call in transport.calls:
            n = call["part"]
            assert call["data"] == data[(n - 1) * 10:n * 10]
            assert call["content_length"] == len(call["data"])
        assert sorted(pool.dequeued) == [1, 2, 3, 4, 5, 6]
        assert all(p.state == PartState.COMPLETED for p in session.parts)
        assert aggregator.transferred_bytes == 55

    @pytest.mark.asyncio
    async def test_in_flight_never_exceeds_concurrency(self, fake_api, small_config):
        data = DATA[:200]
        transport = FakeTransport(delay=0.001)
        session = _session(fake_api, small_config, data)
        pool, _ = _pool(fake_api, transport, session, data, small_config)

        await pool.run(session.parts, 4)

        assert transport.max_in_flight == 4
        assert len(transport.calls) == 20

    @pytest.mark.asyncio
    async def test_failure_stops_further_dequeues(self, fake_api, small_config):
        data = DATA[:50]
        transport = FakeTransport(failures={2: 99})
        session = _session(fake_api, small_config, data)
        events = EventEmitter()
        failed = []
        events.on("part_fail", lambda part, exc: failed.append(part.part_number))
        pool, aggregator = _pool(fake_api, transport, session, data, small_config, events)

        with pytest.raises(TransferError) as excinfo:
            await pool.run(session.parts, 1)

        assert excinfo.value.part_number == 2
        assert excinfo.value.kind == ErrorKind.TRANSFER
        assert pool.dequeued == [1, 2]
        assert failed == [2]
        assert aggregator.is_frozen
        assert [p.state for p in session.parts[2:]] == [PartState.PENDING] * 3

    @pytest.mark.asyncio
    async def test_running_parts_finish_after_another_part_fails(self, fake_api, small_config):
        data = DATA[:60]
        transport = FakeTransport(failures={2: 99}, slow={1: 0.01})
        session = _session(fake_api, small_config, data)
        pool, _ = _pool(fake_api, transport, session, data, small_config)

        with pytest.raises(TransferError) as excinfo:
            await pool.run(session.parts, 2)

        assert excinfo.value.part_number == 2
        assert pool.dequeued == [1, 2]
        assert [p.state for p in session.parts] == (
            [PartState.COMPLETED, PartState.FAILED] + [PartState.PENDING] * 4
        )
        assert transport.completed_order == [1]

    @pytest.mark.asyncio
    async def test_failed_part_is_retried_with_fresh_url(self, fake_api):
        config = UploadConfig(
            single_shot_threshold=10, part_size=10, stream_chunk_size=4,
            max_part_attempts=3, retry_backoff=0,
        )
        data = DATA[:40]
        transport = FakeTransport(failures={3: 2})
        session = _session(fake_api, config, data)
        events = EventEmitter()
        retries = []
        events.on("part_retry", lambda part, attempt, exc: retries.append((part.part_number, attempt)))
        pool, aggregator = _pool(fake_api, transport, session, data, config, events)

        completed = await pool.run(session.parts, 2)

        assert len(completed) == 4
        assert fake_api.part_url_calls.count(3) == 3
        assert retries == [(3, 1), (3, 2)]
        assert session.parts[2].attempts == 3
        assert aggregator.transferred_bytes == 40

    @pytest.mark.asyncio
    async def test_part_failing_every_attempt_fails_pool(self, fake_api):
        config = UploadConfig(
            single_shot_threshold=10, part_size=10, stream_chunk_size=4,
            max_part_attempts=2, retry_backoff=0,
        )
        data = DATA[:30]
        transport = FakeTransport(failures={1: 99})
        session = _session(fake_api, config, data)
        pool, _ = _pool(fake_api, transport, session, data, config)

        with pytest.raises(TransferError):
            await pool.run(session.parts, 1)

        assert fake_api.part_url_calls == [1, 1]
        assert session.parts[0].state == PartState.FAILED

    @pytest.mark.asyncio
    async def test_missing_etag_is_fatal(self, fake_api, small_config):
        data = DATA[:30]
        transport = FakeTransport(missing_etag={2})
        session = _session(fake_api, small_config, data)
        pool, _ = _pool(fake_api, transport, session, data, small_config)

        with pytest.raises(MissingETagError) as excinfo:
            await pool.run(session.parts, 1)

        assert excinfo.value.kind == ErrorKind.MISSING_ETAG
        assert excinfo.value.part_number == 2

    @pytest.mark.asyncio
    async def test_part_url_failure(self, small_config):
        class NoUrlAPI(FakeUploadAPI):
            async def get_part_upload_url(self, storage_key, multipart_upload_id, part_number):
                raise PartUrlError("backend said 403", part_number)

        api = NoUrlAPI()
        data = DATA[:30]
        transport = FakeTransport()
        session = _session(api, small_config, data)
        pool, _ = _pool(api, transport, session, data, small_config)

        with pytest.raises(PartUrlError) as excinfo:
            await pool.run(session.parts, 2)

        assert excinfo.value.kind == ErrorKind.PART_URL
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_cancel_stops_running_and_queued_parts(self, fake_api, small_config):
        data = DATA[:100]
        transport = FakeTransport(gate=asyncio.Event())
        cancel = asyncio.Event()
        session = _session(fake_api, small_config, data)
        pool, _ = _pool(fake_api, transport, session, data, small_config, cancel_event=cancel)

        task = asyncio.create_task(pool.run(session.parts, 2))
        while transport.in_flight < 2:
            await asyncio.sleep(0)
        cancel.set()

        with pytest.raises(UploadCancelledError):
            await task

        assert transport.in_flight == 0
        assert len(pool.dequeued) == 2
        assert not any(p.state == PartState.COMPLETED for p in session.parts)

    @pytest.mark.asyncio
    async def test_part_complete_events(self, fake_api, small_config):
        data = DATA[:25]
        session = _session(fake_api, small_config, data)
        events = EventEmitter()
        done = []
        events.on("part_complete", lambda part: done.append(part.part_number))
        pool, _ = _pool(fake_api, FakeTransport(), session, data, small_config, events)

        await pool.run(session.parts, 2)

        assert sorted(done) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_rejects_zero_concurrency(self, fake_api, small_config):
        data = DATA[:25]
        session = _session(fake_api, small_config, data)
        pool, _ = _pool(fake_api, FakeTransport(), session, data, small_config)
        with pytest.raises(ValueError):
            await pool.run(session.parts, 0)
