"""Error types raised by scanner-enrich.

Per-address conditions (`NoRegistryResponded`, `RetriesExhausted`) are caught by
the batch runner and counted; the rest propagate to the caller.
"""

from __future__ import annotations

from typing import Optional


class ScannerEnrichError(Exception):
    """Base class for all scanner-enrich errors."""


class DirectoryNotFound(ScannerEnrichError, FileNotFoundError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"rules directory does not exist: {path}")


class ConfigError(ScannerEnrichError, ValueError):
    pass


class RetriesExhausted(ScannerEnrichError):
    """All attempts for one request failed."""

    def __init__(self, url: str, attempts: int, last_error: Optional[BaseException]):
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{url}: giving up after {attempts} attempts ({last_error})")


class NoRegistryResponded(ScannerEnrichError):
    def __init__(self, address: str, attempted: list[str]):
        self.address = address
        self.attempted = list(attempted)
        tried = ", ".join(attempted) or "none"
        super().__init__(f"no RDAP registry answered for {address} (tried: {tried})")


class CacheSaveError(ScannerEnrichError, OSError):
    pass


class ProgressSaveError(ScannerEnrichError, OSError):
    pass
