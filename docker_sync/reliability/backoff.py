"""
Backoff — Bounded retry of transient network failures.

Transient failures (connection errors, timeouts, 5xx, rate limits) are
retried a small number of times with a fixed backoff schedule. Anything
else propagates immediately.

## Usage

    from docker_sync.reliability.backoff import RetryPolicy, call_with_retry

    policy = RetryPolicy(max_attempts=3, backoff_seconds=(1, 2))
    snapshot = call_with_retry(lambda: client.get_run(run_id), policy)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, TypeVar

import httpx

from ..errors import GitHubAPIError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetriesExhausted(Exception):
    """Every attempt of a retried call failed transiently."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")


def is_transient(error: BaseException) -> bool:
    """Check whether an error is worth retrying."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, GitHubAPIError):
        return error.transient
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, and how long to wait between tries."""

    max_attempts: int = 3
    # Delay before attempt 2, 3, ...; the last value repeats.
    backoff_seconds: Tuple[float, ...] = (1.0, 2.0)

    def delay_for(self, attempt: int) -> float:
        """Delay after failed ``attempt`` (1-based)."""
        if not self.backoff_seconds:
            return 0.0
        index = min(attempt - 1, len(self.backoff_seconds) - 1)
        return self.backoff_seconds[index]


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "request",
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Call ``fn`` until it succeeds or the attempt budget is spent.

    Non-transient errors propagate unchanged. When every attempt fails
    transiently, raises RetriesExhausted. A ``deadline`` (on ``clock``)
    stops retrying early rather than sleeping past it.
    """
    max_attempts = max(1, policy.max_attempts)
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as e:
            if not is_transient(e):
                raise
            last_error = e
            logger.warning(f"[retry] {description} failed (attempt {attempt}/{max_attempts}): {e}")

        if attempt >= max_attempts:
            raise RetriesExhausted(attempt, last_error)
        delay = policy.delay_for(attempt)
        if deadline is not None and clock() + delay >= deadline:
            raise RetriesExhausted(attempt, last_error)
        sleep(delay)
