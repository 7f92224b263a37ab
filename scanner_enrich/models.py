"""Models for scanner-enrich.

Records are plain dataclasses (pydantic is only used to decode untrusted
registry payloads, see `enrichment/rdap.py`). The JSON keys of `to_dict()` are
the attribute names and are the stable export / cache contract.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Literal, Optional

ScannerType = Literal[
    "shodan",
    "censys",
    "binaryedge",
    "rapid7",
    "shadowserver",
    "other",
    "unknown",
]

KNOWN_SCANNERS: tuple[ScannerType, ...] = (
    "shodan",
    "censys",
    "binaryedge",
    "rapid7",
    "shadowserver",
)

# Fields filled by RDAP / geolocation lookups. This is exactly what the result
# cache stores for an address.
ENRICHMENT_FIELDS: tuple[str, ...] = (
    "rdap_name",
    "rdap_handle",
    "rdap_cidr",
    "registry",
    "start_address",
    "end_address",
    "ip_version",
    "rdap_type",
    "parent_handle",
    "event_registration",
    "event_last_changed",
    "asn",
    "as_name",
    "reverse_dns",
    "domain",
    "country_code",
    "country_name",
    "isp",
    "organization",
    "abuse_email",
    "tech_email",
)

_TIME_FIELDS = ("first_seen", "last_seen", "export_date", "created_at", "updated_at")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class SourceInfo:
    """Rule file an address was extracted from."""

    scanner_name: str
    scanner_type: ScannerType
    source_file: str


@dataclass
class AddressRecord:
    """One extracted address and everything learned about it."""

    ip_or_cidr: str
    id: str = ""

    scanner_name: str = ""
    scanner_type: ScannerType = "unknown"
    source_file: str = ""

    # Ownership (RDAP)
    organization: str = ""
    rdap_name: str = ""
    rdap_handle: str = ""
    rdap_cidr: str = ""
    registry: str = ""
    start_address: str = ""
    end_address: str = ""
    ip_version: str = ""
    rdap_type: str = ""
    parent_handle: str = ""
    event_registration: str = ""
    event_last_changed: str = ""

    # Network
    asn: str = ""
    as_name: str = ""
    reverse_dns: str = ""
    domain: str = ""

    # Geolocation
    country_code: str = ""
    country_name: str = ""
    isp: str = ""

    # Contacts
    abuse_email: str = ""
    tech_email: str = ""

    # Classification
    abuse_confidence_score: int = 0
    abuse_reports: int = 0
    usage_type: str = ""
    risk_level: str = "unknown"
    tags: list[str] = field(default_factory=list)
    notes: str = ""

    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    export_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not isinstance(self.ip_or_cidr, str) or not self.ip_or_cidr.strip():
            raise ValueError("ip_or_cidr must be a non-empty string")

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "ip_or_cidr" and "ip_or_cidr" in self.__dict__:
            raise AttributeError("ip_or_cidr cannot be changed once set")
        super().__setattr__(name, value)

    @property
    def is_block(self) -> bool:
        return "/" in self.ip_or_cidr

    def merge(self, values: Mapping[str, Any]) -> bool:
        """Apply enrichment values; empty values never overwrite.

        Returns True when at least one field changed.
        """
        changed = False
        for key, value in values.items():
            if key not in ENRICHMENT_FIELDS:
                continue
            if value is None or value == "":
                continue
            value = str(value)
            if getattr(self, key) != value:
                setattr(self, key, value)
                changed = True
        if changed:
            self.updated_at = utc_now()
        return changed

    def enrichment_snapshot(self) -> dict[str, str]:
        return {k: getattr(self, k) for k in ENRICHMENT_FIELDS}

    def has_enrichment(self) -> bool:
        return any(getattr(self, k) for k in ENRICHMENT_FIELDS)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, list):
                value = list(value)
            out[f.name] = value
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AddressRecord:
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {k: v for k, v in data.items() if k in known}
        for k in _TIME_FIELDS:
            if k in kwargs:
                kwargs[k] = _parse_time(kwargs[k])
        for k in ("abuse_confidence_score", "abuse_reports"):
            if k in kwargs:
                try:
                    kwargs[k] = int(kwargs[k] or 0)
                except (TypeError, ValueError):
                    kwargs[k] = 0
        tags = kwargs.get("tags")
        if tags is None:
            kwargs.pop("tags", None)
        elif isinstance(tags, str):
            kwargs["tags"] = [t.strip() for t in tags.split(",") if t.strip()]
        else:
            kwargs["tags"] = [str(t) for t in tags]
        if kwargs.get("scanner_type") not in (*KNOWN_SCANNERS, "other", "unknown"):
            kwargs["scanner_type"] = "unknown"
        for k in ENRICHMENT_FIELDS + ("id", "scanner_name", "source_file", "notes", "usage_type"):
            if k in kwargs and kwargs[k] is None:
                kwargs[k] = ""
        return cls(**kwargs)


def new_record(
    address: str,
    *,
    index: int,
    source: Optional[SourceInfo] = None,
    now: Optional[datetime] = None,
) -> AddressRecord:
    """Base record for a freshly extracted address (enrichment fields empty)."""
    ts = now or utc_now()
    name = source.scanner_name if source else ""
    return AddressRecord(
        ip_or_cidr=address,
        id=f"scanner_{index + 1}",
        scanner_name=name,
        scanner_type=source.scanner_type if source else "unknown",
        source_file=source.source_file if source else "",
        tags=["extracted", name] if name else ["extracted"],
        risk_level="unknown",
        first_seen=ts,
        last_seen=ts,
        export_date=ts,
        created_at=ts,
        updated_at=ts,
    )
