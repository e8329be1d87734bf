"""Blob stores for post images.

Two backends are provided:

- :class:`LocalBlobStore` writes files under a directory and returns a
  ``file://`` URI (or a URL under a configured public base URL).
- :class:`HttpBlobStore` PUTs the bytes to an object storage endpoint with
  ``httpx``, retrying rate limits, server errors and network failures with
  exponential backoff.

Both report progress as percentages that never go backwards, even when a
retry restarts the transfer. The ``inline`` backend has no store at all:
images are embedded in the post as a base64 data URL.

Example:
    >>> blobs = LocalBlobStore(Path("data/blobs"))
    >>> url = await blobs.upload(b"...", "cat.png", on_progress=print)
"""

import asyncio
import base64
import logging
import re
from pathlib import Path
from typing import Any

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from socialtree import metrics
from socialtree.config import BlobBackend, Settings, settings
from socialtree.errors import TransientUploadError, UploadError
from socialtree.interfaces import IBlobStore, ProgressCallback
from socialtree.logging import logger
from socialtree.utils import chunk_bytes, push_key

UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def safe_filename(name: str) -> str:
    """Reduce a user-supplied file name to a safe basename.

    Example:
        >>> safe_filename("../my cat.png")
        'my_cat.png'
    """
    return UNSAFE_FILENAME_CHARS.sub("_", Path(name).name or name) or "blob"


def encode_data_url(data: bytes, mime_type: str = "application/octet-stream") -> str:
    """Embed bytes as a base64 data URL.

    Example:
        >>> encode_data_url(b"hi", "text/plain")
        'data:text/plain;base64,aGk='
    """
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class ProgressReporter:
    """Forward progress to a callback, dropping values that go backwards."""

    def __init__(self, callback: ProgressCallback | None):
        self._callback = callback
        self.last = -1.0

    def __call__(self, percent: float) -> None:
        percent = max(0.0, min(100.0, percent))
        if percent < self.last:
            return
        self.last = percent
        if self._callback is not None:
            try:
                self._callback(percent)
            except Exception as exc:
                logger.warning(f"⚠️ Upload progress callback failed: {exc}")

    def finish(self) -> None:
        if self.last < 100.0:
            self(100.0)


# =============================================================================
# Local Blob Store
# =============================================================================


class LocalBlobStore:
    """Blob store writing to a local directory.

    Args:
        root_dir: Directory for stored blobs (created on first upload)
        base_url: Public URL prefix the directory is served under, if any
        chunk_size: Write size between progress reports
    """

    backend = "local"

    def __init__(
        self,
        root_dir: Path,
        base_url: str | None = None,
        chunk_size: int = 64 * 1024,
    ):
        self.root_dir = Path(root_dir)
        self.base_url = base_url
        self.chunk_size = chunk_size

    async def upload(
        self,
        data: bytes,
        suggested_name: str,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        name = f"{push_key()}_{safe_filename(suggested_name)}"
        target = self.root_dir / name
        progress = ProgressReporter(on_progress)
        total = len(data)

        progress(0.0)
        try:
            self.root_dir.mkdir(parents=True, exist_ok=True)
            written = 0
            with target.open("wb") as fh:
                for chunk in chunk_bytes(data, self.chunk_size):
                    fh.write(chunk)
                    written += len(chunk)
                    progress(100.0 * written / total)
                    await asyncio.sleep(0)
        except OSError as exc:
            logger.error(f"❌ Failed to store blob {name}: {exc}")
            raise UploadError(f"Failed to store {suggested_name!r}: {exc}") from exc

        progress.finish()
        metrics.upload_size_bytes.labels(backend=self.backend).observe(total)
        logger.debug(f"Stored blob {name} ({total} bytes)")

        if self.base_url:
            return f"{self.base_url.rstrip('/')}/{name}"
        return target.resolve().as_uri()


# =============================================================================
# HTTP Blob Store
# =============================================================================


class HttpBlobStore:
    """Blob store uploading to an HTTP object storage endpoint.

    Each upload is a ``PUT {base_url}/{name}``. A JSON response with a
    ``url`` field overrides the returned URL.

    Args:
        base_url: Upload endpoint
        token: Bearer token sent with each request
        client: Pre-configured ``httpx.AsyncClient`` (created lazily if None)
        chunk_size: Body chunk size between progress reports
        max_attempts: Attempts per upload, including the first one
        backoff: Exponential backoff multiplier in seconds
        timeout: Request timeout in seconds
    """

    backend = "http"

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        chunk_size: int = 64 * 1024,
        max_attempts: int = 4,
        backoff: float = 0.5,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.chunk_size = chunk_size
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.timeout = timeout
        self._client = client

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/octet-stream"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _do_put(self, url: str, data: bytes, progress: ProgressReporter) -> httpx.Response:
        """Send one PUT attempt.

        Raises:
            TransientUploadError: For 429, 5xx and network failures
            UploadError: For other non-success responses
        """
        total = len(data)

        async def body():
            sent = 0
            for chunk in chunk_bytes(data, self.chunk_size):
                yield chunk
                sent += len(chunk)
                progress(100.0 * sent / total)

        client = self._ensure_client()
        try:
            resp = await client.put(url, content=body(), headers=self._headers())
        except httpx.TransportError as exc:
            raise TransientUploadError(f"Network error: {exc}") from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientUploadError(f"HTTP {resp.status_code}")
        if resp.status_code >= 400:
            logger.error(f"Non-retryable HTTP {resp.status_code}: {resp.text[:200]}")
            raise UploadError(f"Upload rejected with HTTP {resp.status_code}")
        return resp

    async def upload(
        self,
        data: bytes,
        suggested_name: str,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        name = f"{push_key()}_{safe_filename(suggested_name)}"
        url = f"{self.base_url}/{name}"
        progress = ProgressReporter(on_progress)
        logging_logger = logging.getLogger(__name__)

        @retry(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, max=10),
            retry=retry_if_exception_type(TransientUploadError),
            before_sleep=before_sleep_log(logging_logger, logging.WARNING),
        )
        async def _runner() -> httpx.Response:
            return await self._do_put(url, data, progress)

        progress(0.0)
        try:
            resp = await _runner()
        except TransientUploadError as exc:
            raise UploadError(
                f"Upload of {suggested_name!r} failed after {self.max_attempts} attempts: {exc}"
            ) from exc

        progress.finish()
        metrics.upload_size_bytes.labels(backend=self.backend).observe(len(data))

        try:
            payload: Any = resp.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("url"):
            return str(payload["url"])
        return url

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_blob_store(config: Settings | None = None) -> IBlobStore | None:
    """Build the configured blob store (None for inline images)."""
    config = config or settings

    if config.blob_backend == BlobBackend.INLINE:
        return None
    if config.blob_backend == BlobBackend.HTTP:
        if not config.blob_base_url:
            raise ValueError("BLOB_BASE_URL must be set for the http blob backend")
        return HttpBlobStore(
            config.blob_base_url,
            token=config.blob_api_token,
            chunk_size=config.upload_chunk_size,
        )
    return LocalBlobStore(
        config.blob_dir or config.data_dir / "blobs",
        base_url=config.blob_base_url,
        chunk_size=config.upload_chunk_size,
    )


__all__ = [
    "LocalBlobStore",
    "HttpBlobStore",
    "ProgressReporter",
    "create_blob_store",
    "encode_data_url",
    "safe_filename",
]
