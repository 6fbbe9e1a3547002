"""Shared types for upload orchestration.

This module provides:
- UploadError, UploadCancelledError, InvalidTransitionError: Exception classes
- FileStatus: Per-file lifecycle states and their allowed transitions
- FileTask: Mutable, lock-guarded state of one file upload
- TaskSnapshot: Immutable copy of a FileTask handed to status observers
- compute_progress: Progress percentage from chunk counts
- Type aliases for callbacks
"""

from __future__ import annotations

import math
import threading
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from chunkup.core.chunking import FileSource, count_chunks


class UploadError(Exception):
    """Base exception for upload errors."""


class UploadCancelledError(UploadError):
    """Raised when an upload is cancelled."""


class InvalidTransitionError(UploadError):
    """A FileTask was asked to move to a state its lifecycle forbids."""


class FileStatus(str, Enum):
    """Lifecycle state of a file upload."""

    PENDING = "pending"
    CHECKING = "checking"
    UPLOADING = "uploading"
    MERGING = "merging"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Terminal states never change again."""
        return self in TERMINAL_STATES

    @property
    def is_in_flight(self) -> bool:
        """States during which the task holds a cancellation handle."""
        return self in IN_FLIGHT_STATES


TERMINAL_STATES = frozenset({FileStatus.SUCCESS, FileStatus.ERROR, FileStatus.CANCELLED})
IN_FLIGHT_STATES = frozenset({FileStatus.CHECKING, FileStatus.UPLOADING, FileStatus.MERGING})

ALLOWED_TRANSITIONS: dict[FileStatus, frozenset[FileStatus]] = {
    FileStatus.PENDING: frozenset({FileStatus.CHECKING, FileStatus.CANCELLED}),
    FileStatus.CHECKING: frozenset(
        {
            FileStatus.UPLOADING,
            FileStatus.MERGING,
            FileStatus.SUCCESS,  # instant transfer
            FileStatus.ERROR,
            FileStatus.CANCELLED,
        }
    ),
    FileStatus.UPLOADING: frozenset(
        {FileStatus.MERGING, FileStatus.ERROR, FileStatus.CANCELLED}
    ),
    FileStatus.MERGING: frozenset(
        {FileStatus.SUCCESS, FileStatus.ERROR, FileStatus.CANCELLED}
    ),
    FileStatus.SUCCESS: frozenset(),
    FileStatus.ERROR: frozenset(),
    FileStatus.CANCELLED: frozenset(),
}


def compute_progress(uploaded: int, total: int) -> int:
    """Integer percentage of uploaded chunks, rounded half up.

    A file with no chunks reports 0 until it succeeds.
    """
    if total <= 0:
        return 0
    return math.floor(uploaded * 100 / total + 0.5)


@dataclass(frozen=True)
class TaskSnapshot:
    """Immutable view of a FileTask at one instant.

    Attributes:
        id: Task identifier.
        name: File name.
        size: File size in bytes.
        status: Lifecycle state.
        progress: Percentage (0-100).
        total_chunks: Number of chunks in the file.
        uploaded_chunks: Server-confirmed chunk indices.
        fingerprint: Content digest, once computed.
        error: Error message when status is ERROR.
        path: Server-side path of the final artifact, when known.
    """

    id: str
    name: str
    size: int
    status: FileStatus
    progress: int
    total_chunks: int
    uploaded_chunks: frozenset[int]
    fingerprint: str | None = None
    error: str | None = None
    path: str | None = None

    def __str__(self) -> str:
        text = f"{self.name}: {self.status.value} ({self.progress}%)"
        if self.error:
            text += f" - {self.error}"
        return text


@dataclass
class FileTask:
    """State of one file upload.

    All mutators take the task lock and return a TaskSnapshot so callers
    can notify observers without holding the lock.

    Attributes:
        source: Handle to the file's bytes.
        total_chunks: ceil(size / chunk_size), fixed at creation.
        id: Opaque unique identifier.
        status: Current lifecycle state.
        progress: Derived percentage.
        uploaded_chunks: Server-confirmed chunk indices.
        fingerprint: Content digest (set once).
        error: Error message when status is ERROR.
        path: Server-side path of the final artifact, when known.
    """

    source: FileSource
    total_chunks: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: FileStatus = FileStatus.PENDING
    progress: int = 0
    uploaded_chunks: set[int] = field(default_factory=set)
    fingerprint: str | None = None
    error: str | None = None
    path: str | None = None
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    @classmethod
    def create(cls, source: FileSource, chunk_size: int) -> FileTask:
        """Create a pending task for a source."""
        return cls(source=source, total_chunks=count_chunks(source.size, chunk_size))

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def size(self) -> int:
        return self.source.size

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> TaskSnapshot:
        """Return an immutable copy of the current state."""
        with self._lock:
            return self._snapshot()

    def transition(
        self,
        status: FileStatus,
        error: str | None = None,
        path: str | None = None,
    ) -> TaskSnapshot:
        """Move to a new lifecycle state.

        Args:
            status: Target state.
            error: Error message (only kept for ERROR).
            path: Server-side artifact path (kept for SUCCESS).

        Returns:
            Snapshot after the transition.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        with self._lock:
            if status not in ALLOWED_TRANSITIONS[self.status]:
                raise InvalidTransitionError(
                    f"{self.name}: cannot go from {self.status.value} to {status.value}"
                )
            self.status = status
            if status == FileStatus.ERROR:
                self.error = error or "Unknown error"
            if status == FileStatus.SUCCESS:
                self.progress = 100
                if path is not None:
                    self.path = path
            return self._snapshot()

    def set_fingerprint(self, fingerprint: str) -> TaskSnapshot:
        """Record the content fingerprint. It can only be set once."""
        with self._lock:
            if self.fingerprint is not None and self.fingerprint != fingerprint:
                raise UploadError(f"{self.name}: fingerprint already set")
            self.fingerprint = fingerprint
            return self._snapshot()

    def set_resumed_chunks(self, indices: Iterable[int]) -> TaskSnapshot:
        """Merge server-reported chunk indices, ignoring out-of-range ones."""
        with self._lock:
            self._ensure_mutable()
            self.uploaded_chunks.update(
                i for i in indices if isinstance(i, int) and 0 <= i < self.total_chunks
            )
            self.progress = compute_progress(len(self.uploaded_chunks), self.total_chunks)
            return self._snapshot()

    def add_uploaded_chunk(self, index: int) -> TaskSnapshot:
        """Record one confirmed chunk and recompute progress.

        Safe to call concurrently from several chunk workers.
        """
        with self._lock:
            self._ensure_mutable()
            if not 0 <= index < self.total_chunks:
                raise IndexError(
                    f"Chunk index {index} out of range [0, {self.total_chunks})"
                )
            self.uploaded_chunks.add(index)
            self.progress = compute_progress(len(self.uploaded_chunks), self.total_chunks)
            return self._snapshot()

    def pending_chunks(self) -> list[int]:
        """Chunk indices not yet confirmed by the server, ascending."""
        with self._lock:
            return [i for i in range(self.total_chunks) if i not in self.uploaded_chunks]

    def all_chunks_uploaded(self) -> bool:
        with self._lock:
            return len(self.uploaded_chunks) == self.total_chunks

    def _ensure_mutable(self) -> None:
        if self.status.is_terminal:
            raise InvalidTransitionError(
                f"{self.name}: task is {self.status.value} and can no longer change"
            )

    def _snapshot(self) -> TaskSnapshot:
        return TaskSnapshot(
            id=self.id,
            name=self.source.name,
            size=self.source.size,
            status=self.status,
            progress=self.progress,
            total_chunks=self.total_chunks,
            uploaded_chunks=frozenset(self.uploaded_chunks),
            fingerprint=self.fingerprint,
            error=self.error,
            path=self.path,
        )


# Type alias for status observers
StatusCallback = Callable[[TaskSnapshot], None]
