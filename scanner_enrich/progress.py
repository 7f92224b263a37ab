"""Batch progress tracking, persisted so an interrupted run can resume.

File format (`rdap_progress.json`):

    {
      "total_records": 120,
      "processed_records": 40,
      "processed_ips": ["1.2.3.4", ...],
      "last_index": 39,
      "started_at": "...", "last_updated_at": "...",
      "workers": 4, "throttle": 1.0, "completed": false
    }
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

from .config import default_progress_path
from .errors import ProgressSaveError
from .models import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ProgressTracker:
    total_records: int = 0
    processed_records: int = 0
    processed_ips: list[str] = field(default_factory=list)
    last_index: int = -1
    started_at: str = ""
    last_updated_at: str = ""
    workers: int = 1
    throttle: float = 0.0
    completed: bool = False

    def __post_init__(self) -> None:
        self._lock = threading.RLock()
        self._seen: set[str] = set(self.processed_ips)
        if not self.started_at:
            self.started_at = utc_now().isoformat()

    def is_processed(self, address: str) -> bool:
        with self._lock:
            return address in self._seen

    def record_processed(self, address: str, index: int = -1) -> int:
        """Mark address done; returns the processed count. Repeats are ignored."""
        with self._lock:
            if address not in self._seen:
                self._seen.add(address)
                self.processed_ips.append(address)
                self.processed_records = len(self.processed_ips)
                self.last_index = max(self.last_index, index)
            return self.processed_records

    def matches(self, addresses: Iterable[str]) -> bool:
        """True when this tracker describes a run over the same address set."""
        wanted = set(addresses)
        with self._lock:
            return self.total_records == len(wanted) and self._seen <= wanted

    def mark_completed(self) -> None:
        with self._lock:
            self.completed = True

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total_records": self.total_records,
                "processed_records": self.processed_records,
                "processed_ips": list(self.processed_ips),
                "last_index": self.last_index,
                "started_at": self.started_at,
                "last_updated_at": self.last_updated_at,
                "workers": self.workers,
                "throttle": self.throttle,
                "completed": self.completed,
            }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProgressTracker:
        ips: list[str] = []
        for ip in data.get("processed_ips") or []:
            if isinstance(ip, str) and ip not in ips:
                ips.append(ip)
        return cls(
            total_records=int(data.get("total_records") or 0),
            processed_records=len(ips),
            processed_ips=ips,
            last_index=int(data.get("last_index", -1)),
            started_at=str(data.get("started_at") or ""),
            last_updated_at=str(data.get("last_updated_at") or ""),
            workers=int(data.get("workers") or 1),
            throttle=float(data.get("throttle") or 0.0),
            completed=bool(data.get("completed", False)),
        )


class ProgressStore:
    """Reads and writes one tracker file."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> ProgressTracker:
        """Never raises: a missing or corrupt file gives a fresh tracker."""
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return ProgressTracker()
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable progress file %s: %s", self.path, e)
            return ProgressTracker()
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed progress file %s", self.path)
            return ProgressTracker()
        try:
            return ProgressTracker.from_dict(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring malformed progress file %s: %s", self.path, e)
            return ProgressTracker()

    def save(self, tracker: ProgressTracker) -> None:
        with tracker._lock:
            tracker.last_updated_at = utc_now().isoformat()
            payload = tracker.to_dict()
        try:
            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
        except OSError as e:
            raise ProgressSaveError(f"cannot write progress file {self.path}: {e}") from e

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass


def load_progress(path: Optional[str] = None) -> ProgressTracker:
    return ProgressStore(path or default_progress_path()).load()


def save_progress(tracker: ProgressTracker, path: Optional[str] = None) -> None:
    ProgressStore(path or default_progress_path()).save(tracker)


def clear_progress(path: Optional[str] = None) -> None:
    ProgressStore(path or default_progress_path()).clear()
