"""Shared fixtures for upload client tests.

FakeBackend is an in-memory stand-in for the check/chunk/merge server with
failure injection, call recording and concurrency tracking.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from collections.abc import Callable

import pytest

from chunkup.client.api import CheckResult, MergeRejectedError, MergeResult, ServerError
from chunkup.client.upload.cancel import CancellationToken
from chunkup.core.fingerprint import FingerprintProvider


class FakeBackend:
    """In-memory UploadBackend."""

    def __init__(self, chunk_delay: float = 0.0) -> None:
        self.chunk_delay = chunk_delay
        self.stored: dict[str, str] = {}
        self.chunks: dict[str, dict[int, bytes]] = defaultdict(dict)
        self.merged: dict[str, bytes] = {}
        self.calls: list[tuple[str, str, int | None]] = []

        # index -> failures left before the upload succeeds
        self.fail_chunks: dict[int, int] = {}
        # indices that never succeed
        self.broken_chunks: set[int] = set()
        self.check_failures = 0
        self.merge_success = True

        # Blocks check() until released, counting arrivals
        self.check_gate: threading.Event | None = None
        self.checks_waiting = 0

        self.active_chunks = 0
        self.max_active_chunks = 0
        self.chunk_started = threading.Event()

        self._lock = threading.Lock()

    # === Helpers ===

    def calls_for(self, op: str, fingerprint: str | None = None) -> list[tuple[str, str, int | None]]:
        with self._lock:
            return [
                c for c in self.calls
                if c[0] == op and (fingerprint is None or c[1] == fingerprint)
            ]

    def uploaded_indices(self, fingerprint: str) -> list[int]:
        return sorted(i for _, _, i in self.calls_for("chunk", fingerprint))

    def wait_for_checks(self, count: int, timeout: float = 5.0) -> bool:
        """Wait until ``count`` check() calls are blocked on the gate."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._lock:
                if self.checks_waiting >= count:
                    return True
            time.sleep(0.01)
        return False

    # === UploadBackend ===

    def check(
        self,
        fingerprint: str,
        filename: str,
        token: CancellationToken | None = None,
    ) -> CheckResult:
        with self._lock:
            self.calls.append(("check", fingerprint, None))
            if self.check_failures > 0:
                self.check_failures -= 1
                raise ServerError("HTTP 503: unavailable", 503)
            self.checks_waiting += 1
        try:
            if self.check_gate is not None:
                self.check_gate.wait(10)
        finally:
            with self._lock:
                self.checks_waiting -= 1

        with self._lock:
            if fingerprint in self.stored:
                return CheckResult(exists=True, path=self.stored[fingerprint])
            return CheckResult(exists=False, uploaded_chunks=sorted(self.chunks[fingerprint]))

    def upload_chunk(
        self,
        data: bytes,
        fingerprint: str,
        index: int,
        total_chunks: int,
        token: CancellationToken | None = None,
    ) -> None:
        with self._lock:
            self.calls.append(("chunk", fingerprint, index))
            self.active_chunks += 1
            self.max_active_chunks = max(self.max_active_chunks, self.active_chunks)
        self.chunk_started.set()
        try:
            if self.chunk_delay:
                if token is not None:
                    token.wait(self.chunk_delay)
                    token.raise_if_cancelled()
                else:
                    time.sleep(self.chunk_delay)
            with self._lock:
                if index in self.broken_chunks:
                    raise ServerError(f"HTTP 500: chunk {index} rejected", 500)
                if self.fail_chunks.get(index, 0) > 0:
                    self.fail_chunks[index] -= 1
                    raise ServerError(f"HTTP 502: chunk {index} flaked", 502)
                self.chunks[fingerprint][index] = data
        finally:
            with self._lock:
                self.active_chunks -= 1

    def merge(
        self,
        fingerprint: str,
        filename: str,
        total_chunks: int,
        token: CancellationToken | None = None,
    ) -> MergeResult:
        with self._lock:
            self.calls.append(("merge", fingerprint, total_chunks))
            stored = self.chunks[fingerprint]
            for i in range(total_chunks):
                if i not in stored:
                    raise MergeRejectedError(f"Merge rejected: Missing chunk {i}", 400)
            if not self.merge_success:
                return MergeResult(success=False)
            path = f"uploads/{fingerprint}_{filename}"
            self.merged[fingerprint] = b"".join(stored[i] for i in range(total_chunks))
            self.stored[fingerprint] = path
            self.chunks.pop(fingerprint, None)
            return MergeResult(success=True, path=path)


@pytest.fixture
def backend() -> FakeBackend:
    """Fresh in-memory backend."""
    return FakeBackend()


@pytest.fixture
def fingerprints() -> FingerprintProvider:
    """In-thread fingerprint provider (no process pool in unit tests)."""
    return FingerprintProvider(window=1024, use_processes=False)


@pytest.fixture
def status_log() -> tuple[list, Callable]:
    """Thread-safe list of observed snapshots and the observer that fills it."""
    snapshots: list = []
    lock = threading.Lock()

    def observer(snapshot) -> None:  # type: ignore[no-untyped-def]
        with lock:
            snapshots.append(snapshot)

    return snapshots, observer
