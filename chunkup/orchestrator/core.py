"""Core orchestrator - wires HTTP clients, services and the session coordinator."""
import asyncio
import mimetypes
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import httpx

from ..models import FileMetadata, UploadConfig, UploadResult
from ..services.api_client import HTTPAPIClient, UploadAPI
from ..services.capacity import EnvCapacityProbe, ObservedThroughputProbe
from ..services.sources import BytesSource, FileSource
from ..services.transfer import PresignedTransport, transfer_limits
from .parallel import MAX_WORKERS
from .process import UploadProcess
from .session import UploadSessionCoordinator

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def guess_content_type(filename: str) -> str:
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or DEFAULT_CONTENT_TYPE


class UploadOrchestrator:
    """
    Uploads files to object storage through backend-issued presigned URLs.

    Usage:
        async with UploadOrchestrator(api_url) as uploader:
            result = await uploader.upload(path, extra={"titleId": "abc"})

        # Event-based
        async with UploadOrchestrator(api_url) as uploader:
            process = uploader.start(path)
            process.on_progress(lambda p: print(f"{p.percent}%"))
            result = await process.wait()
    """

    def __init__(
        self,
        api_url: str,
        config: Optional[UploadConfig] = None,
        capacity_probe=None,
        headers: Optional[Dict[str, str]] = None,
        api_transport: Optional[httpx.AsyncBaseTransport] = None,
        storage_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            api_url: Backend base URL serving the start/part-url/complete endpoints
            config: Upload configuration
            capacity_probe: ICapacityProbe; defaults to observed throughput
                falling back to CHUNKUP_DOWNLINK_MBPS
            headers: Extra headers for backend calls (e.g. Authorization)
            api_transport: httpx transport override for backend calls
            storage_transport: httpx transport override for storage PUTs
        """
        self._api_url = api_url
        self._config = config or UploadConfig()
        self._capacity_probe = capacity_probe or ObservedThroughputProbe(fallback=EnvCapacityProbe())
        self._headers = headers or {}
        self._api_transport = api_transport
        self._storage_transport = storage_transport

        # Initialized in __aenter__
        self._api_client: Optional[HTTPAPIClient] = None
        self._storage_client: Optional[httpx.AsyncClient] = None
        self._coordinator: Optional[UploadSessionCoordinator] = None

    @property
    def config(self) -> UploadConfig:
        return self._config

    @property
    def capacity_probe(self):
        return self._capacity_probe

    async def __aenter__(self):
        self._api_client = HTTPAPIClient(
            self._api_url,
            timeout=self._config.request_timeout,
            headers=self._headers,
            transport=self._api_transport,
        )
        await self._api_client.__aenter__()

        self._storage_client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.transfer_timeout, connect=self._config.request_timeout),
            limits=transfer_limits(MAX_WORKERS),
            transport=self._storage_transport,
        )

        self._coordinator = UploadSessionCoordinator(
            UploadAPI(self._api_client, self._config.endpoints),
            PresignedTransport(self._storage_client),
            self._config,
            self._capacity_probe,
        )
        return self

    async def __aexit__(self, *args):
        """Cleanup resources."""
        if self._storage_client:
            await self._storage_client.aclose()
            self._storage_client = None
        if self._api_client:
            await self._api_client.__aexit__(*args)

    def start(
        self,
        path: Path,
        content_type: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        filename: Optional[str] = None,
    ) -> UploadProcess:
        """Create an UploadProcess for a local file (not started yet)."""
        assert self._coordinator is not None, "Use 'async with UploadOrchestrator(...)'"
        source = FileSource(path)
        name = filename or source.path.name
        metadata = FileMetadata(
            filename=name,
            size=source.size,
            content_type=content_type or guess_content_type(name),
            extra=dict(extra or {}),
        )
        return UploadProcess(self._coordinator, source, metadata)

    async def upload(
        self,
        path: Path,
        content_type: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        progress_callback: Optional[Callable] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> UploadResult:
        """Upload a local file and wait for the terminal result."""
        assert self._coordinator is not None, "Use 'async with UploadOrchestrator(...)'"
        process = self.start(path, content_type, extra)
        return await self._wait(process, progress_callback, cancel_event)

    async def upload_bytes(
        self,
        data: bytes,
        filename: str,
        content_type: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        progress_callback: Optional[Callable] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> UploadResult:
        """Upload in-memory bytes under the given filename."""
        assert self._coordinator is not None, "Use 'async with UploadOrchestrator(...)'"
        source = BytesSource(data)
        metadata = FileMetadata(
            filename=filename,
            size=source.size,
            content_type=content_type or guess_content_type(filename),
            extra=dict(extra or {}),
        )
        process = UploadProcess(self._coordinator, source, metadata)
        return await self._wait(process, progress_callback, cancel_event)

    async def _wait(
        self,
        process: UploadProcess,
        progress_callback: Optional[Callable],
        cancel_event: Optional[asyncio.Event],
    ) -> UploadResult:
        if progress_callback:
            process.on_progress(progress_callback)

        if cancel_event is None:
            return await process.wait()

        async def forward_cancel():
            await cancel_event.wait()
            await process.cancel()

        await process.start()
        forwarder = asyncio.create_task(forward_cancel())
        try:
            return await process.wait()
        finally:
            forwarder.cancel()
