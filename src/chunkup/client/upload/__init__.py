"""Chunked, resumable file uploads.

Architecture:
    UploadOrchestrator → FileStateMachine → ChunkScheduler → RetryExecutor

Components:
- **UploadOrchestrator**: FIFO file queue, file-level concurrency bound, cancellation
- **FileStateMachine**: Fingerprint, check, upload, merge for one file
- **ChunkScheduler**: Bounded chunk workers sharing one cursor
- **RetryExecutor**: Exponential backoff that wakes up on cancellation
- **CancellationToken**: Per-file cancel signal threaded through every call

Usage:
    from chunkup.client.upload import UploadOrchestrator

    with UploadOrchestrator(client, on_status=print) as uploader:
        uploader.add_files(["video.mp4"])
        uploader.wait()
"""

from chunkup.client.upload.cancel import CancellationToken
from chunkup.client.upload.machine import FileStateMachine
from chunkup.client.upload.orchestrator import UploadOrchestrator
from chunkup.client.upload.retry import RetryExecutor, backoff_delay
from chunkup.client.upload.scheduler import ChunkScheduler
from chunkup.client.upload.types import (
    FileStatus,
    FileTask,
    InvalidTransitionError,
    StatusCallback,
    TaskSnapshot,
    UploadCancelledError,
    UploadError,
    compute_progress,
)

__all__ = [
    # Orchestration
    "UploadOrchestrator",
    "FileStateMachine",
    "ChunkScheduler",
    "RetryExecutor",
    "backoff_delay",
    "CancellationToken",
    # Types
    "FileStatus",
    "FileTask",
    "TaskSnapshot",
    "StatusCallback",
    "compute_progress",
    # Errors
    "UploadError",
    "UploadCancelledError",
    "InvalidTransitionError",
]
