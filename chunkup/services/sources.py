"""Byte sources read by part transfers."""
import asyncio
from pathlib import Path
from typing import AsyncIterator, Union


def _check_range(start: int, end: int, size: int) -> None:
    if start < 0 or end < start or end > size:
        raise ValueError(f"Invalid byte range [{start}, {end}) for size {size}")


class FileSource:
    """
    Local file read in chunks off the event loop.

    Each iter_range call opens its own handle so concurrent parts never
    share a file position.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._size = self._path.stat().st_size

    @property
    def path(self) -> Path:
        return self._path

    @property
    def size(self) -> int:
        return self._size

    async def iter_range(self, start: int, end: int, chunk_size: int) -> AsyncIterator[bytes]:
        _check_range(start, end, self._size)
        handle = await asyncio.to_thread(open, self._path, "rb")
        try:
            await asyncio.to_thread(handle.seek, start)
            remaining = end - start
            while remaining > 0:
                chunk = await asyncio.to_thread(handle.read, min(chunk_size, remaining))
                if not chunk:
                    raise IOError(f"Unexpected end of file in {self._path.name} at {end - remaining}")
                remaining -= len(chunk)
                yield chunk
        finally:
            await asyncio.to_thread(handle.close)


class BytesSource:
    """In-memory bytes."""

    def __init__(self, data: bytes):
        self._data = memoryview(bytes(data))

    @property
    def size(self) -> int:
        return len(self._data)

    async def iter_range(self, start: int, end: int, chunk_size: int) -> AsyncIterator[bytes]:
        _check_range(start, end, len(self._data))
        for offset in range(start, end, chunk_size):
            yield bytes(self._data[offset:min(offset + chunk_size, end)])
