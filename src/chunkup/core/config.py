"""Shared configuration classes for chunkup.

This module defines configuration classes used by both the upload client
and the command-line interface.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_CHUNK_SIZE = 2 * 1024 * 1024  # 2 MB
DEFAULT_CONCURRENT_FILES = 3
DEFAULT_CONCURRENT_CHUNKS = 3
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 10.0  # seconds


@dataclass
class UploaderConfig:
    """Tuning knobs for the upload orchestrator.

    Attributes:
        chunk_size: Size of each chunk in bytes.
        concurrent_files: Maximum number of files uploading at once.
        concurrent_chunks: Maximum number of chunk uploads at once, per file.
        max_retries: Retry attempts per chunk after the first failure.
        base_delay: Initial backoff delay in seconds.
        max_delay: Upper bound for a single backoff delay in seconds.
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    concurrent_files: int = DEFAULT_CONCURRENT_FILES
    concurrent_chunks: int = DEFAULT_CONCURRENT_CHUNKS
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY

    def __post_init__(self) -> None:
        """Validate values."""
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.concurrent_files < 1:
            raise ValueError(
                f"concurrent_files must be at least 1, got {self.concurrent_files}"
            )
        if self.concurrent_chunks < 1:
            raise ValueError(
                f"concurrent_chunks must be at least 1, got {self.concurrent_chunks}"
            )
        if self.max_retries < 0:
            raise ValueError(f"max_retries must not be negative, got {self.max_retries}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Backoff delays must not be negative")


@dataclass
class ServerConfig:
    """Configuration for connecting to an upload server.

    Attributes:
        server_url: Base URL of the server (e.g., "https://files.example.com").
        token: Optional bearer token sent with every request.
        timeout: Request/connection timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
        check_path: Endpoint for the existence/resume check.
        chunk_path: Endpoint for chunk ingest.
        merge_path: Endpoint for the merge request.
    """

    server_url: str
    token: str | None = None
    timeout: float = 30.0
    verify_ssl: bool = True
    check_path: str = "/api/upload/check"
    chunk_path: str = "/api/upload/chunk"
    merge_path: str = "/api/upload/merge"

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")
