"""Client-side upload transfer.

Sends bytes straight to the object store using a write grant issued by
POST /api/v1/upload-url, reporting progress as chunks go out. A transfer can
be cancelled at any point before it finishes; the File then simply stays
PENDING and is never confirmed.

Example:
    async with httpx.AsyncClient(base_url=API, headers={"Authorization": f"Bearer {token}"}) as api:
        record = await upload_via_grant(
            api, "brief.pdf", "application/pdf", data,
            on_progress=lambda sent, total: print(f"{sent}/{total}"),
        )
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Dict, Optional
from uuid import UUID

import httpx

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

DEFAULT_CHUNK_SIZE = 256 * 1024


class TransferCancelled(Exception):
    """The transfer was cancelled before all bytes were sent."""


class TransferFailed(Exception):
    """The object store (or the API) refused the transfer."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UploadTransfer:
    """One PUT of `data` to a presigned URL.

    The headers returned with the grant (Content-Type) are signed into the
    URL and must be sent unchanged.
    """

    def __init__(
        self,
        url: str,
        data: bytes,
        headers: Optional[Dict[str, str]] = None,
        method: str = "PUT",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        on_progress: Optional[ProgressCallback] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.url = url
        self.data = data
        self.headers = dict(headers or {})
        self.method = method
        self.chunk_size = chunk_size
        self.on_progress = on_progress
        self._client = client
        self._cancelled = asyncio.Event()
        self.bytes_sent = 0

    @property
    def total_bytes(self) -> int:
        return len(self.data)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop sending; the next chunk boundary aborts the request."""
        self._cancelled.set()

    async def _chunks(self) -> AsyncIterator[bytes]:
        total = self.total_bytes
        for start in range(0, total, self.chunk_size):
            if self.cancelled:
                raise TransferCancelled(f"Upload cancelled after {self.bytes_sent} of {total} bytes")
            chunk = self.data[start:start + self.chunk_size]
            yield chunk
            self.bytes_sent += len(chunk)
            if self.on_progress:
                self.on_progress(self.bytes_sent, total)

    async def run(self) -> httpx.Response:
        """Send the bytes.

        Raises:
            TransferCancelled: cancel() was called before the last chunk
            TransferFailed: The store answered with a non-2xx status or the
                connection failed
        """
        if self.cancelled:
            raise TransferCancelled("Upload cancelled before it started")

        headers = {**self.headers, "Content-Length": str(self.total_bytes)}
        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))
        try:
            response = await client.request(
                self.method, self.url, content=self._chunks(), headers=headers
            )
        except TransferCancelled:
            raise
        except httpx.HTTPError as e:
            if self.cancelled:
                raise TransferCancelled("Upload cancelled") from e
            raise TransferFailed(f"Upload transfer failed: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        if self.cancelled and self.bytes_sent < self.total_bytes:
            raise TransferCancelled("Upload cancelled")
        if response.status_code >= 300:
            raise TransferFailed(
                f"Object store rejected upload: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        logger.debug(f"Transferred {self.bytes_sent} bytes to object store")
        return response


async def _api_call(api: httpx.AsyncClient, path: str, payload: dict) -> dict:
    response = await api.post(path, json=payload)
    if response.status_code >= 300:
        body = response.json() if response.content else {}
        raise TransferFailed(
            f"{path} failed: {body.get('error', response.status_code)}: {body.get('message', '')}",
            status_code=response.status_code,
        )
    return response.json()


async def upload_via_grant(
    api: httpx.AsyncClient,
    filename: str,
    content_type: str,
    data: bytes,
    project_id: Optional[UUID] = None,
    on_progress: Optional[ProgressCallback] = None,
    store_client: Optional[httpx.AsyncClient] = None,
    api_prefix: str = "/api/v1",
) -> dict:
    """Request a grant, transfer the bytes, confirm. Returns the fileRecord.

    `api` must carry the base URL and the Authorization header.
    """
    request = {"filename": filename, "contentType": content_type, "size": len(data)}
    if project_id:
        request["projectId"] = str(project_id)
    grant = await _api_call(api, f"{api_prefix}/upload-url", request)

    transfer = UploadTransfer(
        grant["uploadUrl"],
        data,
        headers=grant.get("headers") or {"Content-Type": content_type},
        method=grant.get("method", "PUT"),
        on_progress=on_progress,
        client=store_client,
    )
    await transfer.run()

    confirmed = await _api_call(
        api,
        f"{api_prefix}/upload-confirm",
        {"key": grant["fileRecord"]["storageKey"], "originalName": filename},
    )
    return confirmed["fileRecord"]
