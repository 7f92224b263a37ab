"""JSON file cache for RDAP / geolocation results.

Goal: avoid re-querying registries for addresses seen in a previous run.

This cache is intentionally simple:
- address -> snapshot of the enrichment fields + cached_at
- TTL handled at load time (stale entries are dropped when the file is read)
- the whole map is rewritten on save

All access goes through one lock so worker threads can share an instance.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from .errors import CacheSaveError
from .models import ENRICHMENT_FIELDS, AddressRecord, utc_now

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 168  # 7 days
CACHE_FORMAT_VERSION = 1


def effective_ttl_hours(ttl_hours: int) -> int:
    return ttl_hours if ttl_hours > 0 else DEFAULT_TTL_HOURS


def _parse_cached_at(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class CacheEntry:
    values: dict[str, str]
    cached_at: str

    def to_dict(self) -> dict[str, str]:
        out = {k: self.values.get(k, "") for k in ENRICHMENT_FIELDS}
        out["cached_at"] = self.cached_at
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        values = {k: str(data.get(k) or "") for k in ENRICHMENT_FIELDS}
        return cls(values=values, cached_at=str(data.get("cached_at") or ""))


class ResultCache:
    def __init__(self, path: str, ttl_hours: int = DEFAULT_TTL_HOURS):
        self.path = path
        self.ttl = timedelta(hours=effective_ttl_hours(ttl_hours))
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, address: object) -> bool:
        with self._lock:
            return address in self._entries

    def load(self, now: Optional[datetime] = None) -> int:
        """Read the cache file, dropping expired entries.

        Never raises: a missing or unreadable file yields an empty cache.
        Returns the number of entries evicted.
        """
        now = now or utc_now()
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            raw = {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable cache file %s: %s", self.path, e)
            raw = {}

        entries_raw = raw.get("entries") if isinstance(raw, dict) else None
        if not isinstance(entries_raw, dict):
            entries_raw = {}

        entries: dict[str, CacheEntry] = {}
        evicted = 0
        for address, data in entries_raw.items():
            if not isinstance(data, dict):
                evicted += 1
                continue
            cached_at = _parse_cached_at(data.get("cached_at"))
            if cached_at is None or now - cached_at > self.ttl:
                evicted += 1
                continue
            entries[str(address)] = CacheEntry.from_dict(data)

        with self._lock:
            self._entries = entries
        if evicted:
            logger.debug("Evicted %d stale cache entries from %s", evicted, self.path)
        return evicted

    def lookup(
        self, address: str, record: Optional[AddressRecord] = None
    ) -> tuple[Optional[CacheEntry], bool]:
        """Return (entry, hit). On a hit, cached fields are merged onto record."""
        with self._lock:
            entry = self._entries.get(address)
        if entry is None:
            return None, False
        if record is not None:
            record.merge(entry.values)
        return entry, True

    def update(self, address: str, record: AddressRecord, now: Optional[datetime] = None) -> CacheEntry:
        entry = CacheEntry(
            values=record.enrichment_snapshot(),
            cached_at=(now or utc_now()).isoformat(),
        )
        with self._lock:
            self._entries[address] = entry
        return entry

    def save(self) -> None:
        """Write the full map to disk, replacing the previous file."""
        with self._lock:
            payload = {
                "version": CACHE_FORMAT_VERSION,
                "saved_at": utc_now().isoformat(),
                "entries": {k: v.to_dict() for k, v in self._entries.items()},
            }
            try:
                parent = os.path.dirname(self.path)
                if parent:
                    os.makedirs(parent, exist_ok=True)
                with open(self.path, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2, ensure_ascii=False)
            except OSError as e:
                raise CacheSaveError(f"cannot write cache file {self.path}: {e}") from e

    def update_and_save(self, address: str, record: AddressRecord) -> CacheEntry:
        with self._lock:
            entry = self.update(address, record)
            self.save()
        return entry

    def clean_expired(self) -> int:
        """Reload (evicting stale entries) and persist. Returns remaining count."""
        with self._lock:
            self.load()
            self.save()
            return len(self._entries)
