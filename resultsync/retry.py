"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Retry policy with exponential backoff, bounded by an overall deadline.

Every remote call of a submission goes through ``call_with_retry`` with one
shared ``RetryPolicy`` and one ``Deadline``. Sleeps between attempts wake up
early on cancellation and never run past the deadline.
"""

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from resultsync.client import RemoteTransientError
from resultsync.core.config import SubmissionConfig

T = TypeVar("T")


class TimeoutExceededError(Exception):
    """The overall deadline passed before the operation completed."""

    def __init__(
        self,
        timeout: float | None,
        run_id: str | None = None,
        accepted_ids: list[str] | None = None,
    ):
        self.timeout = timeout
        self.run_id = run_id
        self.accepted_ids = list(accepted_ids or [])
        message = f"Operation did not complete within {timeout}s"
        if run_id is not None:
            message += f" (run {run_id})"
        super().__init__(message)


class OperationCancelledError(Exception):
    """The operation was cancelled by the caller."""


@dataclass
class RetryPolicy:
    """
    Exponential backoff settings.

    ``attempts`` counts every attempt including the first, so ``attempts=1``
    disables retries.
    """

    attempts: int = 3
    delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 60.0
    jitter: bool = True

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    @classmethod
    def from_config(cls, config: SubmissionConfig) -> "RetryPolicy":
        return cls(
            attempts=config.retry_attempts,
            delay=config.retry_delay,
            backoff_factor=config.backoff_factor,
            max_delay=config.timeout,
            jitter=config.jitter,
        )

    def compute_delay(self, attempt: int, retry_after: float | None = None) -> float:
        """
        Delay before the attempt following ``attempt`` (1-based).

        A server ``Retry-After`` hint raises the delay but never beyond
        ``max_delay``.
        """
        current_delay = self.delay * self.backoff_factor ** max(attempt - 1, 0)
        if retry_after is not None:
            current_delay = max(current_delay, retry_after)
        if self.jitter and current_delay > 0:
            # Add 0-25% random jitter
            current_delay = current_delay * (1 + random.random() * 0.25)
        return min(current_delay, self.max_delay)


class Deadline:
    """Overall time budget that can also be cancelled from another thread."""

    def __init__(
        self,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout = timeout
        self.cancel_event = cancel_event or threading.Event()
        self._clock = clock
        self._expires_at = clock() + timeout if timeout is not None else None

    def remaining(self) -> float | None:
        """Seconds left, or ``None`` for an unbounded deadline."""
        if self._expires_at is None:
            return None
        return max(self._expires_at - self._clock(), 0.0)

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def check(self) -> None:
        """
        Raises:
            OperationCancelledError: ``cancel()`` was called
            TimeoutExceededError: The deadline has passed
        """
        if self.cancelled:
            raise OperationCancelledError("Operation cancelled")
        if self.expired:
            raise TimeoutExceededError(self.timeout)

    def sleep(self, seconds: float) -> None:
        """Sleep, waking early on cancellation; raise instead of outliving the deadline."""
        self.check()
        remaining = self.remaining()
        if remaining is not None and seconds >= remaining:
            if self.cancel_event.wait(remaining):
                raise OperationCancelledError("Operation cancelled")
            raise TimeoutExceededError(self.timeout)
        if self.cancel_event.wait(max(seconds, 0)):
            raise OperationCancelledError("Operation cancelled")


def call_with_retry(
    func: Callable[[], T],
    policy: RetryPolicy,
    deadline: Deadline | None = None,
    logger: logging.Logger | None = None,
    operation: str = "remote call",
    retry_on: tuple[type[BaseException], ...] = (RemoteTransientError,),
) -> T:
    """
    Call ``func`` until it succeeds or the policy gives up.

    Only exceptions in ``retry_on`` are retried; anything else propagates at
    once. The last transient error is re-raised when attempts run out.

    Raises:
        OperationCancelledError: Cancelled before or between attempts
        TimeoutExceededError: The deadline passed before or between attempts
    """
    log = logger or logging.getLogger("resultsync.retry")
    deadline = deadline or Deadline()
    attempt = 0

    while True:
        deadline.check()
        attempt += 1
        try:
            return func()
        except retry_on as e:
            if attempt >= policy.attempts:
                log.error(f"{operation} failed after {attempt} attempts: {e}")
                raise

            current_delay = policy.compute_delay(attempt, getattr(e, "retry_after", None))
            log.warning(
                f"{operation} failed: {e}. Retrying in {current_delay:.2f}s "
                f"(attempt {attempt}/{policy.attempts})"
            )
            deadline.sleep(current_delay)
