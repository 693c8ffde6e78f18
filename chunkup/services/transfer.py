"""
Transfer Service - Single Responsibility: PUT bytes to presigned URLs.

Bodies are streamed with an explicit Content-Length (object stores reject
chunked encoding on presigned PUTs) and progress is reported per chunk
while httpx consumes the stream.
"""
import logging
from typing import AsyncIterator, Optional

import httpx

from ..errors import TransferError
from ..protocols import ProgressHook

logger = logging.getLogger(__name__)


def transfer_limits(max_connections: int = 16) -> httpx.Limits:
    """Connection limits for the storage client, one connection per worker."""
    return httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)


class PresignedTransport:
    """
    Raw storage transfers over a shared httpx client.

    Implements ITransport protocol. The client must not carry backend
    credentials: presigned URLs embed their own authorization.
    """

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def put(
        self,
        url: str,
        body: AsyncIterator[bytes],
        content_length: int,
        content_type: Optional[str] = None,
        on_progress: Optional[ProgressHook] = None,
    ) -> Optional[str]:
        """
        PUT body to url.

        Args:
            url: Presigned PUT URL
            body: Async iterator with exactly content_length bytes
            content_length: Number of bytes in body
            content_type: Optional Content-Type header
            on_progress: Awaited with bytes sent so far in this request

        Returns:
            ETag response header, or None when storage did not send one

        Raises:
            TransferError: On network error or non-2xx status
        """
        headers = {"Content-Length": str(content_length)}
        if content_type:
            headers["Content-Type"] = content_type

        async def stream():
            sent = 0
            async for chunk in body:
                yield chunk
                sent += len(chunk)
                if on_progress:
                    await on_progress(sent)

        content = stream() if content_length > 0 else b""

        try:
            response = await self._client.put(url, content=content, headers=headers)
        except httpx.HTTPError as exc:
            raise TransferError(f"Network error during PUT: {exc or type(exc).__name__}") from exc
        except OSError as exc:
            raise TransferError(f"Could not read source bytes: {exc}") from exc

        if not response.is_success:
            raise TransferError(
                f"Storage answered {response.status_code} to PUT",
                status_code=response.status_code,
            )

        if content_length == 0 and on_progress:
            await on_progress(0)

        etag = response.headers.get("etag")
        logger.debug(f"[transfer] PUT {content_length} bytes -> {response.status_code} etag={etag}")
        return etag or None
