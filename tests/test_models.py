"""Tests for chunkup models."""
import pytest

from chunkup.errors import ErrorKind, InvalidTransitionError
from chunkup.models import (
    MB,
    ApiEndpoints,
    CompletedPart,
    FileMetadata,
    Part,
    PartState,
    SessionState,
    StartUploadResponse,
    UploadConfig,
    UploadResult,
    UploadSession,
    UploadStatus,
    UploadStrategy,
)


def _session(strategy=UploadStrategy.MULTIPART, parts=None):
    return UploadSession(
        total_bytes=30,
        content_type="video/mp4",
        filename="movie.mp4",
        strategy=strategy,
        parts=parts or [],
    )


class TestPart:
    def test_lifecycle(self):
        part = Part(1, 0, 10)
        part.begin()
        assert part.state == PartState.IN_FLIGHT
        part.complete('"abc"')
        assert part.state == PartState.COMPLETED
        assert part.etag == '"abc"'
        assert part.transferred_bytes == 10

    def test_cannot_complete_without_etag(self):
        part = Part(1, 0, 10)
        part.begin()
        with pytest.raises(InvalidTransitionError):
            part.complete("")

    def test_cannot_complete_pending_part(self):
        with pytest.raises(InvalidTransitionError):
            Part(1, 0, 10).complete('"abc"')

    def test_cannot_restart_completed_part(self):
        part = Part(1, 0, 10)
        part.begin()
        part.complete('"abc"')
        with pytest.raises(InvalidTransitionError):
            part.begin()

    def test_fail(self):
        part = Part(2, 10, 15)
        part.begin()
        part.fail()
        assert part.state == PartState.FAILED
        assert part.size == 5


class TestUploadSession:
    def test_multipart_path(self):
        session = _session()
        session.assign_identity("k", "u")
        assert session.transition(SessionState.MULTIPART_IN_FLIGHT) == SessionState.PLANNING
        session.transition(SessionState.COMPLETING)
        session.transition(SessionState.COMPLETED)
        assert session.state.is_terminal

    def test_single_shot_path(self):
        session = _session(UploadStrategy.SINGLE_SHOT)
        session.transition(SessionState.SINGLE_SHOT_IN_FLIGHT)
        session.transition(SessionState.COMPLETED)
        assert session.state == SessionState.COMPLETED

    def test_completing_not_reachable_from_single_shot(self):
        session = _session(UploadStrategy.SINGLE_SHOT)
        session.transition(SessionState.SINGLE_SHOT_IN_FLIGHT)
        with pytest.raises(InvalidTransitionError):
            session.transition(SessionState.COMPLETING)

    def test_cannot_skip_completing(self):
        session = _session()
        session.transition(SessionState.MULTIPART_IN_FLIGHT)
        with pytest.raises(InvalidTransitionError):
            session.transition(SessionState.COMPLETED)

    @pytest.mark.parametrize("terminal", [SessionState.FAILED, SessionState.CANCELLED])
    def test_failure_from_any_live_state_and_terminal_is_final(self, terminal):
        session = _session()
        session.transition(SessionState.MULTIPART_IN_FLIGHT)
        session.transition(terminal)
        with pytest.raises(InvalidTransitionError):
            session.transition(SessionState.FAILED)

    def test_identity_assigned_once(self):
        session = _session()
        session.assign_identity("k", "u")
        with pytest.raises(InvalidTransitionError):
            session.assign_identity("k2", "u2")

    def test_identity_only_while_planning(self):
        session = _session()
        session.transition(SessionState.MULTIPART_IN_FLIGHT)
        with pytest.raises(InvalidTransitionError):
            session.assign_identity("k", "u")

    def test_completed_parts_sorted(self):
        parts = [Part(n, (n - 1) * 10, n * 10) for n in (1, 2, 3)]
        for part in (parts[2], parts[0], parts[1]):
            part.begin()
            part.complete(f'"e{part.part_number}"')
        session = _session(parts=parts)
        assert [p.part_number for p in session.completed_parts] == [1, 2, 3]


class TestPayloads:
    def test_completed_part_payload(self):
        assert CompletedPart(3, '"x"').to_payload() == {"partNumber": 3, "eTag": '"x"'}

    def test_metadata_payload_keeps_extra_fields(self):
        meta = FileMetadata("a.mp4", 42, "video/mp4", {"titleId": "t1"})
        assert meta.to_payload() == {
            "titleId": "t1",
            "filename": "a.mp4",
            "contentType": "video/mp4",
            "size": 42,
        }

    @pytest.mark.parametrize(
        "response,expected",
        [
            (StartUploadResponse("k", upload_url="u"), UploadStrategy.SINGLE_SHOT),
            (StartUploadResponse("k", multipart_upload_id="m"), UploadStrategy.MULTIPART),
            (StartUploadResponse("k"), None),
            (StartUploadResponse("k", upload_url="u", multipart_upload_id="m"), None),
        ],
    )
    def test_start_response_strategy(self, response, expected):
        assert response.strategy == expected


class TestUploadResult:
    def test_ok(self):
        session = _session(parts=[Part(1, 0, 10)])
        session.assign_identity("k", "u")
        result = UploadResult.ok(session)
        assert result.success
        assert result.storage_key == "k"
        assert result.parts_count == 1

    def test_fail_keeps_kind(self):
        result = UploadResult.fail(_session(), "boom", ErrorKind.COMPLETION)
        assert result.status == UploadStatus.FAILED
        assert result.error_kind == ErrorKind.COMPLETION
        assert not result.success

    def test_cancelled(self):
        result = UploadResult.cancelled(_session())
        assert result.status == UploadStatus.CANCELLED
        assert result.error_kind == ErrorKind.CANCELLED


class TestUploadConfig:
    def test_defaults(self):
        config = UploadConfig()
        assert config.single_shot_threshold == 5 * MB
        assert config.part_size == 64 * MB
        assert config.max_part_attempts == 3
        assert config.concurrency is None
        assert config.endpoints == ApiEndpoints()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"part_size": 0},
            {"single_shot_threshold": -1},
            {"max_part_attempts": 0},
            {"stream_chunk_size": 0},
        ],
    )
    def test_validation(self, kwargs):
        with pytest.raises(ValueError):
            UploadConfig(**kwargs)

    def test_backoff_doubles(self):
        config = UploadConfig(retry_backoff=0.5)
        assert [config.backoff_for(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CHUNKUP_PART_SIZE", str(8 * MB))
        monkeypatch.setenv("CHUNKUP_CONCURRENCY", "6")
        monkeypatch.setenv("CHUNKUP_START_ENDPOINT", "/v2/start")
        monkeypatch.delenv("CHUNKUP_SINGLE_SHOT_THRESHOLD", raising=False)

        config = UploadConfig.from_env(max_part_attempts=1, part_size=None)

        assert config.part_size == 8 * MB
        assert config.concurrency == 6
        assert config.max_part_attempts == 1
        assert config.single_shot_threshold == 5 * MB
        assert config.endpoints.start == "/v2/start"
        assert config.endpoints.complete == "/api/uploads/multipart/complete"
