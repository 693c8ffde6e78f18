"""
Protocols (Interfaces) for Dependency Inversion.

Small interfaces for the collaborators the coordinator is driven by.
"""
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Protocol, runtime_checkable

from .models import CompletedPart, FileMetadata, StartUploadResponse

ProgressHook = Callable[[int], Awaitable[None]]


@runtime_checkable
class IUploadAPI(Protocol):
    """Backend operations that allocate and finalize uploads."""

    async def start_upload(self, metadata: FileMetadata) -> StartUploadResponse:
        """Allocate storage identity for a file."""
        ...

    async def get_part_upload_url(
        self,
        storage_key: str,
        multipart_upload_id: str,
        part_number: int
    ) -> str:
        """Presigned PUT URL for one part."""
        ...

    async def complete_upload(
        self,
        storage_key: str,
        multipart_upload_id: str,
        parts: List[CompletedPart]
    ) -> dict:
        """Finalize a multipart upload."""
        ...


@runtime_checkable
class ITransport(Protocol):
    """Raw PUT of bytes to a presigned URL."""

    async def put(
        self,
        url: str,
        body: AsyncIterator[bytes],
        content_length: int,
        content_type: Optional[str] = None,
        on_progress: Optional[ProgressHook] = None,
    ) -> Optional[str]:
        """PUT body and return the ETag header (None when absent)."""
        ...


@runtime_checkable
class IByteSource(Protocol):
    """Readable bytes of the file being uploaded."""

    @property
    def size(self) -> int:
        ...

    def iter_range(self, start: int, end: int, chunk_size: int) -> AsyncIterator[bytes]:
        """Yield bytes [start, end) in chunks."""
        ...


@runtime_checkable
class ICapacityProbe(Protocol):
    """Read-only network capacity signal."""

    def downlink_mbps(self) -> Optional[float]:
        """Estimated capacity in Mbps, or None when unknown."""
        ...
