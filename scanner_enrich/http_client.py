"""Retrying HTTP GET client on top of urllib.

Every outbound registry / geolocation request goes through `HttpClient.get`:

- transport errors and 5xx are retried with exponential backoff,
- 429 honours a positive `Retry-After`, otherwise the same backoff,
- any other status (including 4xx) is returned as-is.

Responses are returned as plain `HttpResponse` values so callers (and tests)
never deal with urllib objects.
"""

from __future__ import annotations

import http.client
import logging
import time
import urllib.error
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from urllib.request import Request, urlopen

from .rate_limit import retry_after_seconds
from .retry import RetryPolicy, retry_call

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 12.0
DEFAULT_USER_AGENT = "scanner-enrich/1.0"


def headers_to_dict(headers: Any) -> dict[str, str]:
    out: dict[str, str] = {}
    if headers is None:
        return out

    try:
        items = headers.items()
    except AttributeError:
        return out

    for k, v in items:
        if k is None:
            continue
        out[str(k)] = str(v)
    return out


@dataclass(frozen=True)
class HttpResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class TransientHTTPError(Exception):
    """A 429 / 5xx response that should be retried."""

    def __init__(self, response: HttpResponse):
        self.response = response
        super().__init__(f"HTTP {response.status}")


def _is_transient(e: Exception) -> bool:
    # HTTPError never reaches here (converted to a response in _send), so any
    # URLError / OSError / HTTPException is a transport failure.
    return isinstance(e, (TransientHTTPError, urllib.error.URLError, OSError, http.client.HTTPException))


class HttpClient:
    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        policy: Optional[RetryPolicy] = None,
        opener: Callable[..., Any] = urlopen,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self.policy = policy or RetryPolicy()
        self._opener = opener
        self._sleep = sleep

    def _send(self, url: str) -> HttpResponse:
        req = Request(url, headers={"User-Agent": self.user_agent, "Accept": "application/json"})
        try:
            with self._opener(req, timeout=self.timeout) as resp:
                status = getattr(resp, "status", None)
                if status is None:
                    status = resp.getcode()
                return HttpResponse(
                    status=int(status),
                    headers=headers_to_dict(getattr(resp, "headers", None)),
                    body=resp.read(),
                )
        except urllib.error.HTTPError as e:
            try:
                body = e.read() or b""
            except OSError:
                body = b""
            return HttpResponse(status=int(e.code), headers=headers_to_dict(e.headers), body=body)

    def _attempt(self, url: str) -> HttpResponse:
        resp = self._send(url)
        if resp.status == 429 or resp.status >= 500:
            raise TransientHTTPError(resp)
        return resp

    def _delay_for(self, e: Exception, attempt: int) -> Optional[float]:
        if isinstance(e, TransientHTTPError) and e.response.status == 429:
            ra = retry_after_seconds(e.response.headers)
            if ra is not None and ra > 0:
                logger.debug("429 received, honouring Retry-After=%.1fs", ra)
                return ra
        logger.debug("Retry %d after %s", attempt, e)
        return None

    def get(self, url: str) -> HttpResponse:
        """GET url with retries. Raises `RetriesExhausted` when attempts run out."""
        return retry_call(
            lambda: self._attempt(url),
            policy=self.policy,
            should_retry=_is_transient,
            delay_for=self._delay_for,
            sleep=self._sleep,
            label=url,
        )
