"""Content fingerprints used as dedup and resume keys.

This module provides:
- hash_source: Incremental digest of a FileSource, window by window
- FingerprintProvider: Computes digests on a worker process, falling back
  to the calling thread when no process pool can be used

Both paths produce the same digest for the same bytes, so the server can
match uploads across runs and machines.
"""

from __future__ import annotations

import concurrent.futures
import hashlib
import logging
import multiprocessing
import pickle
import threading
from concurrent.futures import Future, ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from typing import TYPE_CHECKING

from chunkup.core.config import DEFAULT_CHUNK_SIZE

if TYPE_CHECKING:
    from chunkup.client.upload.cancel import CancellationToken
    from chunkup.core.chunking import FileSource

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "sha256"

# Seconds between cancellation checks while waiting on the process pool
POLL_INTERVAL = 0.1

# Pool could not be created or cannot run this source
POOL_UNAVAILABLE: tuple[type[BaseException], ...] = (
    OSError,
    NotImplementedError,
    BrokenProcessPool,
    pickle.PicklingError,
)


def hash_source(
    source: FileSource,
    window: int = DEFAULT_CHUNK_SIZE,
    algorithm: str = DEFAULT_ALGORITHM,
    token: CancellationToken | None = None,
) -> str:
    """Compute the hex digest of a source.

    Reads the content in ``window``-sized blocks to bound memory use.

    Args:
        source: Source to hash.
        window: Read size in bytes.
        algorithm: hashlib algorithm name.
        token: Optional cancellation token, checked between windows.

    Returns:
        Hex-encoded digest string.

    Raises:
        UploadCancelledError: If the token fires while hashing.
    """
    hasher = hashlib.new(algorithm)
    for block in source.iter_windows(window):
        if token is not None:
            token.raise_if_cancelled()
        hasher.update(block)
    return hasher.hexdigest()


def _hash_in_worker(source: FileSource, window: int, algorithm: str) -> str:
    """Process pool entry point (must be top-level for pickling)."""
    return hash_source(source, window, algorithm)


class FingerprintProvider:
    """Computes content fingerprints off the calling thread.

    The preferred strategy hashes on a shared ProcessPoolExecutor. If the
    pool cannot be created, breaks, or cannot receive the source, the
    provider logs a warning and hashes in the calling thread instead. The
    degradation is sticky for pool creation failures.

    Usage:
        provider = FingerprintProvider(window=2 * 1024 * 1024)
        digest = provider.compute(LocalFileSource(Path("big.iso")))
        provider.shutdown()
    """

    def __init__(
        self,
        window: int = DEFAULT_CHUNK_SIZE,
        algorithm: str = DEFAULT_ALGORITHM,
        use_processes: bool = True,
        max_workers: int | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            window: Read size in bytes (usually the upload chunk size).
            algorithm: hashlib algorithm name.
            use_processes: Try the process pool before hashing in-thread.
            max_workers: Size of the process pool (default: CPU count).
        """
        hashlib.new(algorithm)  # fail fast on unknown algorithms
        self._window = window
        self._algorithm = algorithm
        self._use_processes = use_processes
        self._max_workers = max_workers
        self._pool: ProcessPoolExecutor | None = None
        self._lock = threading.Lock()

    @property
    def algorithm(self) -> str:
        """Name of the hash algorithm."""
        return self._algorithm

    @property
    def uses_processes(self) -> bool:
        """Whether the process pool strategy is still enabled."""
        return self._use_processes

    def compute(self, source: FileSource, token: CancellationToken | None = None) -> str:
        """Compute the fingerprint of a source.

        Cancellation releases the caller only. A hash already running on the
        pool cannot be interrupted; it finishes in its worker process and the
        result is dropped.

        Args:
            source: Source to hash.
            token: Optional cancellation token.

        Returns:
            Hex-encoded digest string.

        Raises:
            UploadCancelledError: If the token fires before the digest is ready.
        """
        if self._use_processes:
            try:
                future = self._submit(source)
            except POOL_UNAVAILABLE as e:
                logger.warning(
                    f"Process hashing unavailable ({e!r}), hashing in-thread from now on"
                )
                self._use_processes = False
            else:
                try:
                    return self._await(future, token)
                except (*POOL_UNAVAILABLE, TypeError, AttributeError) as e:
                    logger.warning(
                        f"Process hashing failed for {source.name} ({e!r}), hashing in-thread"
                    )

        return hash_source(source, self._window, self._algorithm, token)

    def shutdown(self) -> None:
        """Release the process pool, if any."""
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=False, cancel_futures=True)
            logger.debug("Fingerprint process pool shut down")

    def _submit(self, source: FileSource) -> Future[str]:
        with self._lock:
            if self._pool is None:
                self._pool = ProcessPoolExecutor(
                    max_workers=self._max_workers,
                    mp_context=multiprocessing.get_context("spawn"),
                )
                logger.debug("Fingerprint process pool started")
            return self._pool.submit(_hash_in_worker, source, self._window, self._algorithm)

    def _await(self, future: Future[str], token: CancellationToken | None) -> str:
        while True:
            try:
                return future.result(timeout=POLL_INTERVAL)
            except concurrent.futures.TimeoutError:
                if token is not None and token.cancelled:
                    future.cancel()
                    token.raise_if_cancelled()
