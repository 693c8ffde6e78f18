"""
Chunkup - presigned, adaptively parallel uploads to S3-compatible storage.

A backend allocates the upload (single PUT URL or multipart id), hands out
per-part URLs and finalizes the multipart upload; chunkup plans the parts,
sizes the worker pool, streams bytes and aggregates progress.

Usage:
    from chunkup import UploadOrchestrator, UploadConfig

    async with UploadOrchestrator(api_url) as uploader:
        result = await uploader.upload(video_path, extra={"titleId": "abc"})
        if result.success:
            print(result.storage_key)

    # Event-based, cancellable
    async with UploadOrchestrator(api_url) as uploader:
        process = uploader.start(video_path)
        process.on_progress(lambda p: print(f"{p.percent}%"))
        result = await process.wait()   # or: await process.cancel()
"""
from .errors import (
    AllocationError,
    CompletionError,
    ErrorKind,
    MissingETagError,
    PartUrlError,
    StrategyMismatchError,
    TransferError,
    UploadCancelledError,
    UploadError,
)
from .models import (
    ApiEndpoints,
    FileMetadata,
    ProgressSnapshot,
    SessionState,
    UploadConfig,
    UploadResult,
    UploadStatus,
    UploadStrategy,
)
from .orchestrator import UploadOrchestrator, UploadProcess, UploadSessionCoordinator

__version__ = "0.1.0"
__all__ = [
    # Main
    "UploadOrchestrator",
    "UploadProcess",
    "UploadSessionCoordinator",
    # Models
    "ApiEndpoints",
    "FileMetadata",
    "ProgressSnapshot",
    "SessionState",
    "UploadConfig",
    "UploadResult",
    "UploadStatus",
    "UploadStrategy",
    # Errors
    "ErrorKind",
    "UploadError",
    "AllocationError",
    "StrategyMismatchError",
    "PartUrlError",
    "TransferError",
    "MissingETagError",
    "CompletionError",
    "UploadCancelledError",
]
