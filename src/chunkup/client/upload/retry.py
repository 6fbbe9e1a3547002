"""Retry logic with exponential backoff and cooperative cancellation.

This module provides:
- backoff_delay: Delay before the retry following a failed attempt
- RetryExecutor: Runs one operation with bounded retries, sleeping through
  the task's cancellation token so a cancel interrupts the backoff
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

from chunkup.client.upload.types import UploadCancelledError
from chunkup.core.config import DEFAULT_BASE_DELAY, DEFAULT_MAX_DELAY

if TYPE_CHECKING:
    from chunkup.client.upload.cancel import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BACKOFF_MULTIPLIER = 2.0


def backoff_delay(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
) -> float:
    """Delay after failed attempt number ``attempt`` (0-based).

    Returns:
        min(base_delay * multiplier ** attempt, max_delay) in seconds.
    """
    return min(base_delay * multiplier**attempt, max_delay)


class RetryExecutor:
    """Executes an operation with exponential backoff retry.

    The operation receives the cancellation token so it can abort its own
    in-flight work. Cancellation is checked before each attempt and after
    each backoff wait, and is reported as UploadCancelledError rather than
    as an exhausted retry.

    Usage:
        executor = RetryExecutor(base_delay=1.0, max_delay=10.0)
        executor.execute(lambda t: client.upload_chunk(...), 3, token)
    """

    def __init__(
        self,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    ) -> None:
        """Initialize the executor.

        Args:
            base_delay: Initial backoff time in seconds.
            max_delay: Maximum backoff time in seconds.
            multiplier: Multiplier for each retry.
        """
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._multiplier = multiplier

    def execute(
        self,
        operation: Callable[[CancellationToken], T],
        max_retries: int,
        token: CancellationToken,
        retryable: tuple[type[Exception], ...] = (Exception,),
        fatal: tuple[type[Exception], ...] = (),
        description: str = "operation",
    ) -> T:
        """Run ``operation`` up to ``max_retries + 1`` times.

        Args:
            operation: Callable taking the cancellation token.
            max_retries: Retries allowed after the first attempt.
            token: Cancellation token for the owning task.
            retryable: Exception types worth another attempt.
            fatal: Exception types raised at once even if they match ``retryable``.
            description: Label used in log messages.

        Returns:
            Result of the first successful attempt.

        Raises:
            UploadCancelledError: If cancellation is observed at any point.
            Exception: The last error once all attempts are exhausted, or a
                non-retryable error immediately.
        """
        attempts = max_retries + 1

        for attempt in range(attempts):
            token.raise_if_cancelled()
            try:
                return operation(token)
            except UploadCancelledError:
                raise
            except fatal:
                raise
            except retryable as e:
                if token.cancelled:
                    raise UploadCancelledError(f"{description} cancelled") from e

                if attempt == attempts - 1:
                    logger.error(f"{description}: all {attempts} attempts failed: {e}")
                    raise

                delay = backoff_delay(
                    attempt, self._base_delay, self._max_delay, self._multiplier
                )
                logger.warning(
                    f"{description}: attempt {attempt + 1}/{attempts} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                if token.wait(delay):
                    raise UploadCancelledError(
                        f"{description} cancelled during backoff"
                    ) from e

        # Should not reach here, but satisfy type checker
        raise RuntimeError("Unexpected retry loop exit")
