"""Retry utilities (exponential backoff + jitter)."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .errors import RetriesExhausted

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    retries: int = 3  # total attempts = 1 + retries
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 10.0
    jitter: float = 0.25  # up to +25%


def backoff_delay(
    attempt: int, policy: RetryPolicy, *, rand: Callable[[], float] = random.random
) -> float:
    """Delay before retry number `attempt` (1 for the first retry).

    min(base * 2^(attempt-1), max) plus a random [0, jitter) fraction of it.
    """
    delay = policy.base_delay_seconds * (2 ** max(attempt - 1, 0))
    delay = min(delay, policy.max_delay_seconds)
    return max(0.0, delay + delay * policy.jitter * rand())


def retry_call(
    fn: Callable[[], T],
    policy: RetryPolicy,
    should_retry: Callable[[Exception], bool],
    *,
    delay_for: Optional[Callable[[Exception, int], Optional[float]]] = None,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "",
) -> T:
    """Call fn with retries.

    - Retries on exceptions that satisfy should_retry.
    - `delay_for(exc, attempt)` may override the backoff for one retry
      (e.g. a server-supplied Retry-After); None means use the schedule.
    - Non-retryable exceptions propagate unchanged; once all attempts are
      spent on retryable ones, `RetriesExhausted` is raised from the last.
    """
    attempts = 1 + max(policy.retries, 0)
    last_err: Optional[Exception] = None

    for i in range(attempts):
        try:
            return fn()
        except Exception as e:  # noqa: BLE001
            if not should_retry(e):
                raise
            last_err = e
            if i == attempts - 1:
                break
            delay: Optional[float] = delay_for(e, i + 1) if delay_for else None
            if delay is None:
                delay = backoff_delay(i + 1, policy)
            sleep(delay)

    raise RetriesExhausted(label, attempts, last_err) from last_err
