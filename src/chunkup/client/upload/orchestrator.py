"""Upload orchestrator: global file queue and file-level concurrency.

This module provides:
- UploadOrchestrator: Admits files in FIFO order, runs at most
  ``concurrent_files`` state machines at once, and handles cancellation
"""

from __future__ import annotations

import logging
import os
import threading
from collections import deque
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Union

from chunkup.client.upload.cancel import CancellationToken
from chunkup.client.upload.machine import FileStateMachine
from chunkup.client.upload.retry import RetryExecutor
from chunkup.client.upload.scheduler import ChunkScheduler
from chunkup.client.upload.types import FileStatus, FileTask, TaskSnapshot
from chunkup.core.chunking import FileSource, LocalFileSource
from chunkup.core.config import UploaderConfig
from chunkup.core.fingerprint import FingerprintProvider

if TYPE_CHECKING:
    from chunkup.client.api import UploadBackend
    from chunkup.client.upload.types import StatusCallback

logger = logging.getLogger(__name__)

# Something add_files() can turn into a FileSource
UploadItem = Union[str, os.PathLike, FileSource]


def _log_status(snapshot: TaskSnapshot) -> None:
    logger.debug(f"Status: {snapshot}")


class UploadOrchestrator:
    """Queues files and uploads them with bounded concurrency.

    Owns the task list, the pending queue, the registry of cancellation
    tokens for in-flight tasks and the in-flight count. All of them are
    mutated under one RLock; status observers are always called outside it.

    Usage:
        with HTTPClient(ServerConfig("http://localhost:8000")) as client:
            with UploadOrchestrator(client, on_status=print) as uploader:
                uploader.add_files(["a.iso", "b.iso"])
                uploader.wait()
    """

    def __init__(
        self,
        backend: UploadBackend,
        config: UploaderConfig | None = None,
        on_status: StatusCallback | None = None,
        fingerprints: FingerprintProvider | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            backend: Remote check/chunk/merge operations.
            config: Chunk size, concurrency bounds and retry settings.
            on_status: Observer called with a snapshot after every task change.
                Defaults to logging at DEBUG.
            fingerprints: Fingerprint provider. When omitted, one is created
                and shut down together with the orchestrator.
        """
        self._config = config or UploaderConfig()
        self._backend = backend
        self._on_status = on_status or _log_status

        self._owns_fingerprints = fingerprints is None
        self._fingerprints = fingerprints or FingerprintProvider(
            window=self._config.chunk_size
        )
        self._retry = RetryExecutor(
            base_delay=self._config.base_delay,
            max_delay=self._config.max_delay,
        )
        self._scheduler = ChunkScheduler(
            backend,
            self._retry,
            chunk_size=self._config.chunk_size,
            concurrent_chunks=self._config.concurrent_chunks,
            max_retries=self._config.max_retries,
        )

        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._tasks: dict[str, FileTask] = {}
        self._queue: deque[FileTask] = deque()
        self._registry: dict[str, CancellationToken] = {}
        self._in_flight = 0
        self._destroyed = False

        self._executor = ThreadPoolExecutor(
            max_workers=self._config.concurrent_files,
            thread_name_prefix="upload-file",
        )

    @property
    def config(self) -> UploaderConfig:
        return self._config

    @property
    def in_flight_count(self) -> int:
        """Number of dispatched tasks that have not settled yet."""
        with self._lock:
            return self._in_flight

    @property
    def queue_size(self) -> int:
        """Number of tasks waiting for a free slot."""
        with self._lock:
            return len(self._queue)

    @property
    def destroyed(self) -> bool:
        with self._lock:
            return self._destroyed

    def add_files(self, items: Iterable[UploadItem]) -> list[FileTask]:
        """Queue files for upload.

        Local paths are stat'ed to learn their size; nothing else touches
        the disk or the network until the task is dispatched.

        Args:
            items: Paths or FileSource instances.

        Returns:
            The created tasks, in the order given.

        Raises:
            RuntimeError: If the orchestrator was destroyed.
            FileNotFoundError: If a path does not exist.
        """
        sources = [
            item if isinstance(item, FileSource) else LocalFileSource(Path(item))
            for item in items
        ]
        tasks = [FileTask.create(source, self._config.chunk_size) for source in sources]

        with self._lock:
            if self._destroyed:
                raise RuntimeError("Uploader has been destroyed")
            for task in tasks:
                self._tasks[task.id] = task
                self._queue.append(task)

        for task in tasks:
            logger.info(f"Queued {task.name} ({task.size} bytes, {task.total_chunks} chunks)")
            self._notify(task.snapshot())

        self._dispatch()
        return tasks

    def get_files(self) -> list[FileTask]:
        """All known tasks in admission order."""
        with self._lock:
            return list(self._tasks.values())

    def get_task(self, task_id: str) -> FileTask | None:
        with self._lock:
            return self._tasks.get(task_id)

    def cancel_upload(self, task_id: str) -> bool:
        """Cancel one task.

        A queued task is removed from the queue and marked cancelled at once,
        without any network call. An in-flight task has its token cancelled;
        its state machine settles it asynchronously.

        Args:
            task_id: Task identifier.

        Returns:
            True if a cancellation was issued, False for unknown or
            already settled tasks.
        """
        snapshot: TaskSnapshot | None = None
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning(f"Cancel ignored: unknown task {task_id}")
                return False

            if self._take_queued(task_id) is not None:
                snapshot = task.transition(FileStatus.CANCELLED)
                self._idle.notify_all()
            else:
                token = self._registry.pop(task_id, None)
                if token is None:
                    logger.info(f"Cancel ignored: {task.name} is already {task.status.value}")
                    return False
                token.cancel()

        if snapshot is not None:
            logger.info(f"Cancelled queued upload {task.name}")
            self._notify(snapshot)
        else:
            logger.info(f"Cancelling in-flight upload {task.name}")
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the queue is empty and nothing is in flight.

        Args:
            timeout: Maximum seconds to wait (None waits forever).

        Returns:
            True if idle, False on timeout.
        """
        with self._idle:
            return self._idle.wait_for(
                lambda: not self._queue and self._in_flight == 0, timeout
            )

    def destroy(self, wait: bool = True) -> None:
        """Cancel everything and release resources.

        In-flight tasks are cancelled through their tokens, queued tasks are
        marked cancelled, and the task list is cleared. Safe to call twice.

        Args:
            wait: Wait for in-flight state machines to settle. Must be False
                when called from a status observer.
        """
        with self._lock:
            if self._destroyed:
                return
            self._destroyed = True
            tokens = list(self._registry.values())
            self._registry.clear()
            queued = list(self._queue)
            self._queue.clear()
            snapshots = [task.transition(FileStatus.CANCELLED) for task in queued]
            self._tasks.clear()
            self._idle.notify_all()

        logger.info(
            f"Shutting down uploader: {len(tokens)} in flight, {len(queued)} queued"
        )
        for token in tokens:
            token.cancel()
        for snapshot in snapshots:
            self._notify(snapshot)

        self._executor.shutdown(wait=wait, cancel_futures=True)
        if self._owns_fingerprints:
            self._fingerprints.shutdown()

    def __enter__(self) -> UploadOrchestrator:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.destroy()

    def _dispatch(self) -> None:
        """Start queued tasks while slots are free."""
        with self._lock:
            while (
                not self._destroyed
                and self._queue
                and self._in_flight < self._config.concurrent_files
            ):
                task = self._queue.popleft()
                token = CancellationToken(task.name)
                self._registry[task.id] = token
                self._in_flight += 1

                machine = FileStateMachine(
                    task,
                    token,
                    self._backend,
                    self._fingerprints,
                    self._scheduler,
                    self._retry,
                    max_retries=self._config.max_retries,
                    on_status=self._on_status,
                    on_settled=self._release,
                )
                logger.debug(
                    f"Dispatching {task.name} ({self._in_flight}/"
                    f"{self._config.concurrent_files} in flight)"
                )
                future = self._executor.submit(machine.run)
                future.add_done_callback(partial(self._on_machine_done, machine))

    def _release(self, task: FileTask) -> None:
        """Called by a state machine once its task settled."""
        with self._lock:
            self._registry.pop(task.id, None)
            self._in_flight -= 1
            self._idle.notify_all()
        self._dispatch()

    def _on_machine_done(self, machine: FileStateMachine, future: Future) -> None:
        # Dropped by executor shutdown before it started
        if future.cancelled():
            machine.abandon()

    def _take_queued(self, task_id: str) -> FileTask | None:
        for position, task in enumerate(self._queue):
            if task.id == task_id:
                del self._queue[position]
                return task
        return None

    def _notify(self, snapshot: TaskSnapshot) -> None:
        try:
            self._on_status(snapshot)
        except Exception:
            logger.exception(f"Status observer failed for {snapshot.name}")
