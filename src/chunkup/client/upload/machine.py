"""Per-file upload state machine.

This module provides:
- FileStateMachine: Drives one FileTask through
  checking -> (uploading -> merging) -> success / error / cancelled

Flow on entering ``checking``:
1. Fingerprint the content (off-thread when possible)
2. Ask the server whether it already has the content or some chunks
3. Instant transfer when it does, otherwise upload the missing chunks
4. Ask the server to merge
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from chunkup.client.api import TRANSIENT_ERRORS, APIError, MergeRejectedError
from chunkup.client.upload.types import (
    FileStatus,
    InvalidTransitionError,
    TaskSnapshot,
    UploadCancelledError,
    UploadError,
)

if TYPE_CHECKING:
    from chunkup.client.api import UploadBackend
    from chunkup.client.upload.cancel import CancellationToken
    from chunkup.client.upload.retry import RetryExecutor
    from chunkup.client.upload.scheduler import ChunkScheduler
    from chunkup.client.upload.types import FileTask, StatusCallback
    from chunkup.core.fingerprint import FingerprintProvider

logger = logging.getLogger(__name__)


class FileStateMachine:
    """Runs the upload lifecycle of one file.

    The machine is the only place that settles a dispatched task to ERROR
    or CANCELLED, and it always hands the task back through ``on_settled``
    so the owner can drop its cancellation handle.
    """

    def __init__(
        self,
        task: FileTask,
        token: CancellationToken,
        backend: UploadBackend,
        fingerprints: FingerprintProvider,
        scheduler: ChunkScheduler,
        retry: RetryExecutor,
        max_retries: int,
        on_status: StatusCallback | None = None,
        on_settled: Callable[[FileTask], None] | None = None,
    ) -> None:
        """Initialize the state machine.

        Args:
            task: Task to drive (must be pending).
            token: Cancellation token shared by every operation of this task.
            backend: Remote check/chunk/merge operations.
            fingerprints: Fingerprint provider.
            scheduler: Chunk scheduler for the uploading phase.
            retry: Retry executor for check and merge calls.
            max_retries: Retries for check and merge calls.
            on_status: Observer invoked with a snapshot after every mutation.
            on_settled: Called once the task reached a terminal state.
        """
        self._task = task
        self._token = token
        self._backend = backend
        self._fingerprints = fingerprints
        self._scheduler = scheduler
        self._retry = retry
        self._max_retries = max_retries
        self._on_status = on_status
        self._on_settled = on_settled

    @property
    def task(self) -> FileTask:
        return self._task

    def run(self) -> TaskSnapshot:
        """Drive the task to a terminal state.

        Never raises for upload failures; they end up on the task.

        Returns:
            Final snapshot of the task.
        """
        task = self._task
        start_time = time.monotonic()
        try:
            self._notify(task.transition(FileStatus.CHECKING))
            self._check_and_upload()
        except UploadCancelledError:
            logger.info(f"Upload of {task.name} cancelled")
            self._settle(FileStatus.CANCELLED)
        except (UploadError, APIError) as e:
            logger.error(f"Upload of {task.name} failed: {e}")
            self._settle(FileStatus.ERROR, error=str(e))
        except Exception as e:
            logger.exception(f"Upload of {task.name} failed")
            self._settle(FileStatus.ERROR, error=str(e) or type(e).__name__)
        finally:
            elapsed = time.monotonic() - start_time
            logger.debug(f"{task.name}: settled as {task.status.value} after {elapsed:.2f}s")
            if self._on_settled:
                self._on_settled(task)
        return task.snapshot()

    def abandon(self) -> TaskSnapshot:
        """Settle a dispatched task whose run() will never start."""
        try:
            self._settle(FileStatus.CANCELLED)
        finally:
            if self._on_settled:
                self._on_settled(self._task)
        return self._task.snapshot()

    def _check_and_upload(self) -> None:
        task = self._task
        token = self._token

        token.raise_if_cancelled()
        fingerprint = self._fingerprints.compute(task.source, token)
        token.raise_if_cancelled()
        self._notify(task.set_fingerprint(fingerprint))

        result = self._retry.execute(
            lambda t: self._backend.check(fingerprint, task.name, t),
            self._max_retries,
            token,
            retryable=TRANSIENT_ERRORS,
            description=f"{task.name} check",
        )
        token.raise_if_cancelled()

        if result.exists:
            logger.info(f"Instant transfer for {task.name} ({fingerprint[:8]}...)")
            self._notify(task.transition(FileStatus.SUCCESS, path=result.path))
            return

        self._notify(task.set_resumed_chunks(result.uploaded_chunks))
        pending = task.pending_chunks()

        if pending:
            if len(pending) < task.total_chunks:
                logger.info(
                    f"Resuming {task.name}: {task.total_chunks - len(pending)}/"
                    f"{task.total_chunks} chunks already on server"
                )
            self._notify(task.transition(FileStatus.UPLOADING))
            self._scheduler.run(task, pending, token, self._on_chunk_uploaded)
        else:
            logger.info(f"All chunks of {task.name} already on server, merging")

        self._merge(fingerprint)

    def _merge(self, fingerprint: str) -> None:
        task = self._task
        token = self._token

        self._notify(task.transition(FileStatus.MERGING))
        if not task.all_chunks_uploaded():
            raise UploadError(f"{task.name}: refusing to merge with missing chunks")
        token.raise_if_cancelled()

        result = self._retry.execute(
            lambda t: self._backend.merge(fingerprint, task.name, task.total_chunks, t),
            self._max_retries,
            token,
            retryable=TRANSIENT_ERRORS,
            description=f"{task.name} merge",
        )
        token.raise_if_cancelled()
        if not result.success:
            raise MergeRejectedError(f"Server failed to merge {task.name}")

        self._notify(task.transition(FileStatus.SUCCESS, path=result.path))
        logger.info(f"Uploaded {task.name}: {task.total_chunks} chunks -> {result.path}")

    def _on_chunk_uploaded(self, index: int) -> None:
        snapshot = self._task.add_uploaded_chunk(index)
        logger.debug(
            f"{snapshot.name}: chunk {index} confirmed "
            f"({len(snapshot.uploaded_chunks)}/{snapshot.total_chunks})"
        )
        self._notify(snapshot)

    def _settle(self, status: FileStatus, error: str | None = None) -> None:
        try:
            self._notify(self._task.transition(status, error=error))
        except InvalidTransitionError as e:
            logger.warning(f"Could not settle {self._task.name}: {e}")

    def _notify(self, snapshot: TaskSnapshot) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(snapshot)
        except Exception:
            logger.exception(f"Status observer failed for {snapshot.name}")
