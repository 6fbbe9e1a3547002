"""HTTP client for the chunked upload API.

This module provides:
- UploadBackend: Protocol for the three remote operations (check, chunk, merge)
- CheckResult, MergeResult: Parsed server responses
- HTTPClient: httpx-based implementation of UploadBackend
"""

from __future__ import annotations

import concurrent.futures
import io
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import httpx

if TYPE_CHECKING:
    from chunkup.client.upload.cancel import CancellationToken
    from chunkup.core.config import ServerConfig

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed."""


class NotFoundError(APIError):
    """Resource not found."""


class ServerError(APIError):
    """Server-side failure (5xx). Usually transient."""


class PayloadTooLargeError(APIError):
    """The server refused a chunk body as too large (413)."""


class MergeRejectedError(APIError):
    """The server refused to merge (e.g. a chunk is missing).

    Retrying cannot help without re-uploading, so this is never retried.
    """


# Failures worth retrying for check and merge calls
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (ServerError, httpx.TransportError)

# Chunk failures that no retry can fix
CHUNK_FATAL_ERRORS: tuple[type[Exception], ...] = (AuthenticationError, PayloadTooLargeError)

# Seconds between cancellation checks while a check or merge is in flight
CANCEL_POLL_INTERVAL = 0.1


@dataclass
class CheckResult:
    """Result of an existence/resume check."""

    exists: bool
    path: str | None = None
    uploaded_chunks: list[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CheckResult:
        """Create from API response dictionary."""
        chunks = data.get("uploaded_chunks", data.get("uploadedChunks")) or []
        return cls(
            exists=bool(data.get("exists", False)),
            path=data.get("path"),
            uploaded_chunks=[int(i) for i in chunks],
        )


@dataclass
class MergeResult:
    """Result of a merge request."""

    success: bool
    path: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MergeResult:
        """Create from API response dictionary."""
        return cls(success=bool(data.get("success", False)), path=data.get("path"))


class UploadBackend(Protocol):
    """The remote storage/merge service as seen by the uploader."""

    def check(
        self,
        fingerprint: str,
        filename: str,
        token: CancellationToken | None = None,
    ) -> CheckResult:
        """Report whether the content exists, or which chunks are stored."""
        ...

    def upload_chunk(
        self,
        data: bytes,
        fingerprint: str,
        index: int,
        total_chunks: int,
        token: CancellationToken | None = None,
    ) -> None:
        """Store one chunk. Re-uploading an index must be harmless."""
        ...

    def merge(
        self,
        fingerprint: str,
        filename: str,
        total_chunks: int,
        token: CancellationToken | None = None,
    ) -> MergeResult:
        """Assemble all chunks into the final artifact."""
        ...


class _CancellableReader(io.BytesIO):
    """Chunk body that aborts the request when the token fires.

    httpx streams multipart file parts through read(), so checking the
    token there interrupts an upload that is already on the wire.
    """

    def __init__(self, data: bytes, token: CancellationToken) -> None:
        super().__init__(data)
        self._token = token

    def read(self, size: int | None = -1) -> bytes:
        self._token.raise_if_cancelled()
        return super().read(size)


class HTTPClient:
    """HTTP client for the chunked upload API.

    Thread-safe: a single instance is shared by every file and chunk worker.

    Check and merge calls given a token run on a small request pool while
    the caller polls the token, so a cancel releases the caller even when
    the server has not answered yet. The abandoned request finishes (or
    times out) in the background and its result is discarded.
    """

    def __init__(self, config: ServerConfig, client: httpx.Client | None = None) -> None:
        """Initialize the client.

        Args:
            config: Server connection settings.
            client: Optional preconfigured httpx client (base_url must be set).
        """
        self._config = config
        headers = {"Authorization": f"Bearer {config.token}"} if config.token else {}
        self._client = client or httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers=headers,
        )
        self._requests = ThreadPoolExecutor(thread_name_prefix="http-request")

    @property
    def config(self) -> ServerConfig:
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._requests.shutdown(wait=False, cancel_futures=True)
        self._client.close()

    def __enter__(self) -> HTTPClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    @staticmethod
    def _detail(response: httpx.Response, default: str) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or default
        if isinstance(body, dict):
            return str(body.get("detail") or body.get("error") or default)
        return default

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token", 401)
        if response.status_code == 404:
            raise NotFoundError(f"Not found: {response.request.url.path}", 404)
        if response.status_code == 413:
            detail = self._detail(response, "Payload too large")
            raise PayloadTooLargeError(f"HTTP 413: {detail}", 413)
        if response.status_code >= 500:
            detail = self._detail(response, "Server error")
            raise ServerError(f"HTTP {response.status_code}: {detail}", response.status_code)
        if response.status_code >= 400:
            detail = self._detail(response, "Request rejected")
            raise APIError(f"HTTP {response.status_code}: {detail}", response.status_code)
        return response

    def _post_json(
        self,
        path: str,
        payload: dict[str, Any],
        token: CancellationToken | None,
    ) -> httpx.Response:
        """POST a JSON body, returning early with a cancellation if the token fires.

        Raises:
            UploadCancelledError: If the token fires before the response arrives.
        """
        if token is None:
            return self._client.post(path, json=payload)

        token.raise_if_cancelled()
        future = self._requests.submit(self._client.post, path, json=payload)
        while True:
            try:
                return future.result(timeout=CANCEL_POLL_INTERVAL)
            except concurrent.futures.TimeoutError:
                if token.cancelled:
                    future.cancel()
                    logger.debug(f"Abandoning request to {path}: cancelled")
                    token.raise_if_cancelled()

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is healthy.

        Returns:
            True if server is healthy.
        """
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Upload operations ===

    def check(
        self,
        fingerprint: str,
        filename: str,
        token: CancellationToken | None = None,
    ) -> CheckResult:
        """Ask the server whether the content exists or is partially stored.

        Args:
            fingerprint: Content fingerprint.
            filename: Original file name.
            token: Optional cancellation token; releases the caller on cancel.

        Returns:
            CheckResult with existence flag and stored chunk indices.

        Raises:
            UploadCancelledError: If the token fires before the server answers.
        """
        response = self._handle_response(
            self._post_json(
                self._config.check_path,
                {"fingerprint": fingerprint, "filename": filename},
                token,
            )
        )
        result = CheckResult.from_dict(response.json())
        logger.debug(
            f"Check {fingerprint[:8]}...: exists={result.exists}, "
            f"{len(result.uploaded_chunks)} chunks stored"
        )
        return result

    def upload_chunk(
        self,
        data: bytes,
        fingerprint: str,
        index: int,
        total_chunks: int,
        token: CancellationToken | None = None,
    ) -> None:
        """Upload one chunk as a multipart form.

        Args:
            data: Raw chunk bytes.
            fingerprint: Content fingerprint of the whole file.
            index: Chunk index.
            total_chunks: Number of chunks in the file.
            token: Optional cancellation token; aborts the body mid-stream.

        Raises:
            UploadCancelledError: If the token fires during the request.
            APIError: If the server rejects the chunk.
        """
        body: bytes | io.BytesIO = data if token is None else _CancellableReader(data, token)
        self._handle_response(
            self._client.post(
                self._config.chunk_path,
                data={
                    "fingerprint": fingerprint,
                    "chunk_index": str(index),
                    "total_chunks": str(total_chunks),
                },
                files={"file": (f"{index}.chunk", body, "application/octet-stream")},
            )
        )
        if token is not None:
            token.raise_if_cancelled()
        logger.debug(f"Uploaded chunk {index}/{total_chunks} for {fingerprint[:8]}...")

    def merge(
        self,
        fingerprint: str,
        filename: str,
        total_chunks: int,
        token: CancellationToken | None = None,
    ) -> MergeResult:
        """Ask the server to assemble the chunks.

        Args:
            fingerprint: Content fingerprint.
            filename: Original file name.
            total_chunks: Number of chunks to assemble.
            token: Optional cancellation token; releases the caller on cancel.

        Returns:
            MergeResult with the final artifact path.

        Raises:
            MergeRejectedError: If the server refuses the merge (e.g. missing chunk).
            UploadCancelledError: If the token fires before the server answers.
        """
        try:
            response = self._handle_response(
                self._post_json(
                    self._config.merge_path,
                    {
                        "fingerprint": fingerprint,
                        "filename": filename,
                        "total_chunks": total_chunks,
                    },
                    token,
                )
            )
        except APIError as e:
            if e.status_code in (400, 409):
                raise MergeRejectedError(f"Merge rejected: {e}", e.status_code) from e
            raise
        return MergeResult.from_dict(response.json())
