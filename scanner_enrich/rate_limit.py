"""Outbound request pacing.

- `RateLimiter`: one shared gate enforcing a minimum interval between calls,
  whatever the number of worker threads.
- `retry_after_seconds`: parse a `Retry-After` header (delta-seconds or
  HTTP-date) into a delay.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Optional


class RateLimiter:
    """Minimum-interval limiter shared by all workers.

    `wait()` returns no sooner than `interval_seconds` after the previous
    `wait()` returned. An interval <= 0 disables the limiter.
    """

    def __init__(
        self,
        interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.interval = float(interval_seconds)
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.interval > 0

    def wait(self) -> None:
        if self.interval <= 0:
            return
        with self._lock:
            if self._last is not None:
                elapsed = self._clock() - self._last
                if elapsed < self.interval:
                    self._sleep(self.interval - elapsed)
            self._last = self._clock()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        # Avoid accepting floats; Retry-After is integral seconds.
        return int(str(value).strip())
    except ValueError:
        return None


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    wanted = name.lower()
    for k, v in headers.items():
        if k is not None and str(k).lower() == wanted:
            return str(v)
    return None


def retry_after_seconds(
    headers: Optional[Mapping[str, str]], *, now: Optional[datetime] = None
) -> Optional[float]:
    """Return the Retry-After delay in seconds, or None when absent/unparseable.

    Past dates and negative values come back as 0.0.
    """
    if not headers:
        return None
    raw_val = _header(headers, "Retry-After")
    if raw_val is None:
        return None
    raw_val = raw_val.strip()

    # 1) delta-seconds
    seconds = _as_int(raw_val)
    if seconds is not None:
        return float(max(seconds, 0))

    # 2) HTTP-date
    try:
        dt = parsedate_to_datetime(raw_val)
    except (TypeError, ValueError, IndexError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    if now is None:
        now = _utc_now()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return max(0.0, (dt.astimezone(timezone.utc) - now).total_seconds())
