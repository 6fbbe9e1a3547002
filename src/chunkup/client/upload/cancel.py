"""Cooperative cancellation for upload tasks.

This module provides:
- CancellationToken: One-way, thread-safe signal shared by every operation
  belonging to one file
"""

from __future__ import annotations

import logging
import threading

from chunkup.client.upload.types import UploadCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-way cancellation signal backed by a threading.Event.

    Workers poll ``cancelled`` before and after every suspension point and
    sleep through ``wait()`` so a cancel wakes them immediately. Child tokens
    are cancelled together with their parent, but cancelling a child leaves
    the parent untouched.
    """

    def __init__(self, name: str = "") -> None:
        self._name = name
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: list[CancellationToken] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation. Irreversible; repeated calls are no-ops."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            children = list(self._children)
        logger.debug(f"Cancellation signalled: {self._name or hex(id(self))}")
        for child in children:
            child.cancel()

    def child(self, name: str = "") -> CancellationToken:
        """Create a token that is cancelled when this one is."""
        token = CancellationToken(name or self._name)
        with self._lock:
            if not self._event.is_set():
                self._children.append(token)
                return token
        token.cancel()
        return token

    def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to ``timeout`` seconds, waking early on cancellation.

        Returns:
            True if the token is cancelled.
        """
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        """Raise UploadCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise UploadCancelledError(f"Upload cancelled: {self._name or 'task'}")

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"CancellationToken({self._name!r}, {state})"
