"""Bounded-concurrency chunk uploads for a single file.

This module provides:
- ChunkScheduler: Runs a fixed number of worker threads over a shared cursor
  of pending chunk indices, retrying each chunk through RetryExecutor
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from chunkup.client.api import CHUNK_FATAL_ERRORS
from chunkup.client.upload.types import UploadCancelledError, UploadError

if TYPE_CHECKING:
    from chunkup.client.api import UploadBackend
    from chunkup.client.upload.cancel import CancellationToken
    from chunkup.client.upload.retry import RetryExecutor
    from chunkup.client.upload.types import FileTask

logger = logging.getLogger(__name__)


class _ChunkCursor:
    """Lock-guarded cursor over the pending indices. Each index is handed out once."""

    def __init__(self, indices: list[int]) -> None:
        self._indices = indices
        self._position = 0
        self._lock = threading.Lock()

    def claim(self) -> int | None:
        with self._lock:
            if self._position >= len(self._indices):
                return None
            index = self._indices[self._position]
            self._position += 1
            return index


class ChunkScheduler:
    """Uploads the pending chunks of one file with a bounded worker pool.

    Exactly ``concurrent_chunks`` workers share one cursor. The first worker
    to hit an unrecoverable error cancels a scope token derived from the
    file's token, which stops its siblings from claiming more indices and
    interrupts their backoff waits and request bodies.

    Usage:
        scheduler = ChunkScheduler(backend, retry, chunk_size, 3, 3)
        scheduler.run(task, [0, 1, 2], token, on_chunk_uploaded=callback)
    """

    def __init__(
        self,
        backend: UploadBackend,
        retry: RetryExecutor,
        chunk_size: int,
        concurrent_chunks: int,
        max_retries: int,
    ) -> None:
        """Initialize the scheduler.

        Args:
            backend: Remote operations used to store chunks.
            retry: Retry executor wrapping each chunk upload.
            chunk_size: Size of a full chunk in bytes.
            concurrent_chunks: Number of concurrent chunk workers.
            max_retries: Retries per chunk after the first failure.
        """
        self._backend = backend
        self._retry = retry
        self._chunk_size = chunk_size
        self._concurrent_chunks = concurrent_chunks
        self._max_retries = max_retries

    @property
    def concurrent_chunks(self) -> int:
        return self._concurrent_chunks

    def run(
        self,
        task: FileTask,
        pending: list[int],
        token: CancellationToken,
        on_chunk_uploaded: Callable[[int], None],
    ) -> None:
        """Upload every index in ``pending``.

        Args:
            task: The file being uploaded (fingerprint must be set).
            pending: Chunk indices still missing server-side.
            token: The file's cancellation token.
            on_chunk_uploaded: Called with each confirmed index, from the
                worker thread that uploaded it.

        Raises:
            UploadCancelledError: If the file's token fires.
            Exception: The first unrecoverable chunk error.
            UploadError: If some index ended up unconfirmed.
        """
        if task.fingerprint is None:
            raise UploadError(f"{task.name}: cannot upload chunks before fingerprinting")
        if not pending:
            return

        fingerprint = task.fingerprint
        scope = token.child(f"{task.name}/chunks")
        cursor = _ChunkCursor(list(pending))
        errors: list[BaseException] = []
        errors_lock = threading.Lock()

        def fail(error: BaseException) -> None:
            with errors_lock:
                errors.append(error)
            scope.cancel()

        def worker() -> None:
            while not scope.cancelled:
                index = cursor.claim()
                if index is None:
                    return
                try:
                    self._upload_one(task, fingerprint, index, scope)
                    on_chunk_uploaded(index)
                except UploadCancelledError:
                    return
                except Exception as e:
                    logger.warning(f"{task.name}: chunk {index} failed for good: {e}")
                    fail(e)
                    return

        logger.debug(
            f"{task.name}: uploading {len(pending)} chunks with "
            f"{self._concurrent_chunks} workers"
        )
        with ThreadPoolExecutor(
            max_workers=self._concurrent_chunks,
            thread_name_prefix=f"chunks-{task.id[:8]}",
        ) as executor:
            futures = [executor.submit(worker) for _ in range(self._concurrent_chunks)]
            for future in futures:
                exc = future.exception()
                if exc is not None:
                    fail(exc)

        token.raise_if_cancelled()
        if errors:
            raise errors[0]

        missing = sorted(set(pending) - task.snapshot().uploaded_chunks)
        if missing:
            raise UploadError(f"{task.name}: chunks {missing} were not confirmed")

    def _upload_one(
        self,
        task: FileTask,
        fingerprint: str,
        index: int,
        token: CancellationToken,
    ) -> None:
        chunk = task.source.read_chunk(index, self._chunk_size)

        def do_upload(t: CancellationToken) -> None:
            self._backend.upload_chunk(chunk.data, fingerprint, index, task.total_chunks, t)

        self._retry.execute(
            do_upload,
            self._max_retries,
            token,
            fatal=CHUNK_FATAL_ERRORS,
            description=f"{task.name} chunk {index}",
        )
