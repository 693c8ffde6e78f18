"""Services for chunkup module."""
from .api_client import HTTPAPIClient, UploadAPI
from .capacity import EnvCapacityProbe, ObservedThroughputProbe, StaticCapacityProbe
from .sources import BytesSource, FileSource
from .transfer import PresignedTransport

__all__ = [
    "HTTPAPIClient",
    "UploadAPI",
    "PresignedTransport",
    "FileSource",
    "BytesSource",
    "StaticCapacityProbe",
    "EnvCapacityProbe",
    "ObservedThroughputProbe",
]
