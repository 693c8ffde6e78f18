"""Shared fakes for chunkup tests."""
import asyncio
import re
from typing import Dict, List, Optional

import pytest

from chunkup.errors import TransferError
from chunkup.models import FileMetadata, StartUploadResponse, UploadConfig

PART_RE = re.compile(r"partNumber=(\d+)")


class FakeUploadAPI:
    """In-memory allocation backend deciding the strategy by size."""

    def __init__(
        self,
        threshold: int = 10,
        key: str = "titles/movie/movie.mp4",
        upload_id: str = "upload-1",
        force: Optional[str] = None,
        start_error: Optional[Exception] = None,
        complete_error: Optional[Exception] = None,
    ):
        self.threshold = threshold
        self.key = key
        self.upload_id = upload_id
        self.force = force
        self.start_error = start_error
        self.complete_error = complete_error
        self.start_calls: List[FileMetadata] = []
        self.part_url_calls: List[int] = []
        self.complete_calls: List[list] = []

    async def start_upload(self, metadata: FileMetadata) -> StartUploadResponse:
        self.start_calls.append(metadata)
        await asyncio.sleep(0)
        if self.start_error:
            raise self.start_error
        multipart = metadata.size > self.threshold if self.force is None else self.force == "multipart"
        if multipart:
            return StartUploadResponse(storage_key=self.key, multipart_upload_id=self.upload_id)
        return StartUploadResponse(storage_key=self.key, upload_url="https://storage.test/single")

    async def get_part_upload_url(self, storage_key: str, multipart_upload_id: str, part_number: int) -> str:
        assert storage_key == self.key
        assert multipart_upload_id == self.upload_id
        self.part_url_calls.append(part_number)
        await asyncio.sleep(0)
        return f"https://storage.test/{storage_key}?partNumber={part_number}"

    async def complete_upload(self, storage_key: str, multipart_upload_id: str, parts) -> dict:
        self.complete_calls.append(list(parts))
        await asyncio.sleep(0)
        if self.complete_error:
            raise self.complete_error
        return {"key": storage_key}


class FakeTransport:
    """
    Storage stand-in.

    failures: part number -> how many attempts fail before succeeding
    (a large number means always). Part 0 is the single-shot PUT.
    slow: part number -> per-chunk delay overriding `delay`.
    """

    def __init__(
        self,
        failures: Optional[Dict[int, int]] = None,
        missing_etag: Optional[set] = None,
        delay: float = 0.0,
        slow: Optional[Dict[int, float]] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.failures = dict(failures or {})
        self.missing_etag = set(missing_etag or ())
        self.delay = delay
        self.slow = dict(slow or {})
        self.gate = gate
        self.calls: List[dict] = []
        self.completed_order: List[int] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def put(self, url, body, content_length, content_type=None, on_progress=None):
        match = PART_RE.search(url)
        part = int(match.group(1)) if match else 0
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        received = bytearray()
        try:
            async for chunk in body:
                received.extend(chunk)
                if on_progress:
                    await on_progress(len(received))
                await asyncio.sleep(self.slow.get(part, self.delay))
            if self.gate is not None:
                await self.gate.wait()
        finally:
            self.in_flight -= 1

        self.calls.append({
            "url": url,
            "part": part,
            "content_length": content_length,
            "data": bytes(received),
            "content_type": content_type,
        })

        if self.failures.get(part, 0) > 0:
            self.failures[part] -= 1
            raise TransferError("Storage answered 500 to PUT", status_code=500)
        self.completed_order.append(part)
        if part in self.missing_etag:
            return None
        return f'"etag-{part}"'


@pytest.fixture
def small_config():
    """Tiny sizes so byte-level behaviour is easy to follow."""
    return UploadConfig(
        single_shot_threshold=10,
        part_size=10,
        stream_chunk_size=4,
        max_part_attempts=1,
        retry_backoff=0,
    )


@pytest.fixture
def fake_api():
    return FakeUploadAPI()


@pytest.fixture
def fake_transport():
    return FakeTransport()
