"""HTTP adapters for the upload allocation backend."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..errors import APIError, AllocationError, CompletionError, PartUrlError
from ..models import ApiEndpoints, CompletedPart, FileMetadata, StartUploadResponse

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "error" in body:
        return body["error"]
    return body


class HTTPAPIClient:
    """
    HTTP client adapter for backend calls.

    5xx answers and transport errors are retried with a short linear
    backoff, but only up to `retries` attempts per call; callers sending
    non-idempotent requests pass retries=1.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 60,
        headers: Optional[Dict[str, str]] = None,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url
        self._timeout = timeout
        self._headers = headers or {}
        self._max_retries = max_retries
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=self._headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def post(self, endpoint: str, json: Dict, retries: Optional[int] = None) -> httpx.Response:
        if not self._client:
            raise RuntimeError("HTTPAPIClient not initialized. Use 'async with' context.")

        max_retries = retries or self._max_retries

        for attempt in range(max_retries):
            last = attempt == max_retries - 1
            try:
                response = await self._client.post(endpoint, json=json)
            except httpx.RequestError as exc:
                if not last:
                    logger.debug(f"[api] POST {endpoint} failed ({exc}), retrying")
                    await asyncio.sleep(0.5 * (attempt + 1))
                    continue
                raise

            if response.status_code >= 500 and not last:
                logger.debug(f"[api] POST {endpoint} -> {response.status_code}, retrying")
                await asyncio.sleep(0.5 * (attempt + 1))
                continue

            if response.status_code >= 400:
                raise APIError("POST", endpoint, response.status_code, _error_detail(response))

            return response

        raise RuntimeError(f"Failed to POST {endpoint} after {max_retries} attempts")


class UploadAPI:
    """
    The three backend operations of a presigned upload.

    Implements IUploadAPI protocol. Start and complete are sent exactly
    once; part URL requests are idempotent and may be retried by the
    HTTP adapter.
    """

    def __init__(self, client: HTTPAPIClient, endpoints: Optional[ApiEndpoints] = None):
        self._client = client
        self._endpoints = endpoints or ApiEndpoints()

    async def start_upload(self, metadata: FileMetadata) -> StartUploadResponse:
        try:
            response = await self._client.post(self._endpoints.start, metadata.to_payload(), retries=1)
            data = response.json()
        except (APIError, httpx.HTTPError, ValueError) as exc:
            raise AllocationError(f"Could not start upload for {metadata.filename}: {exc}") from exc

        key = data.get("key") if isinstance(data, dict) else None
        if not key:
            raise AllocationError(f"Allocator returned no storage key for {metadata.filename}")

        return StartUploadResponse(
            storage_key=key,
            upload_url=data.get("uploadUrl"),
            multipart_upload_id=data.get("uploadId"),
        )

    async def get_part_upload_url(
        self,
        storage_key: str,
        multipart_upload_id: str,
        part_number: int
    ) -> str:
        payload = {"key": storage_key, "uploadId": multipart_upload_id, "partNumber": part_number}
        try:
            response = await self._client.post(self._endpoints.part_url, payload)
            data = response.json()
        except (APIError, httpx.HTTPError, ValueError) as exc:
            raise PartUrlError(f"Could not get URL for part {part_number}: {exc}", part_number) from exc

        url = data.get("uploadUrl") if isinstance(data, dict) else None
        if not url:
            raise PartUrlError(f"Backend returned no URL for part {part_number}", part_number)
        return url

    async def complete_upload(
        self,
        storage_key: str,
        multipart_upload_id: str,
        parts: List[CompletedPart]
    ) -> dict:
        payload = {
            "key": storage_key,
            "uploadId": multipart_upload_id,
            "parts": [p.to_payload() for p in parts],
        }
        try:
            response = await self._client.post(self._endpoints.complete, payload, retries=1)
        except (APIError, httpx.HTTPError) as exc:
            raise CompletionError(f"Could not complete upload {storage_key}: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        return data if isinstance(data, dict) else {}
