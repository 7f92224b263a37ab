"""Record statistics and search over an enriched record set."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Optional

from .models import AddressRecord

ALL_COUNTRIES = "All Countries"
ALL_SCANNERS = "All Scanners"
ALL_RISK_LEVELS = "All Risk Levels"

HIGH_RISK = "High"


@dataclass
class RecordSummary:
    total: int = 0
    unique_addresses: int = 0
    unique_countries: int = 0
    unique_scanners: int = 0
    high_risk: int = 0
    risk_levels: int = 0
    enriched: int = 0
    by_scanner: dict[str, int] = field(default_factory=dict)
    by_country: dict[str, int] = field(default_factory=dict)


def summarize(records: Iterable[AddressRecord]) -> RecordSummary:
    records = list(records)
    scanners = Counter(r.scanner_name for r in records)
    countries = Counter(r.country_code for r in records if r.country_code)
    return RecordSummary(
        total=len(records),
        unique_addresses=len({r.ip_or_cidr for r in records}),
        unique_countries=len(countries),
        unique_scanners=len(scanners),
        high_risk=sum(1 for r in records if r.risk_level == HIGH_RISK),
        risk_levels=len({r.risk_level for r in records}),
        enriched=sum(1 for r in records if r.has_enrichment()),
        by_scanner=dict(scanners.most_common()),
        by_country=dict(countries.most_common()),
    )


def _is_any(value: Optional[str], wildcard: str) -> bool:
    return value is None or value == "" or value == wildcard


def filter_records(
    records: Iterable[AddressRecord],
    query: str = "",
    country: Optional[str] = None,
    scanner: Optional[str] = None,
    risk: Optional[str] = None,
) -> list[AddressRecord]:
    """Records matching every given criterion.

    `query` is a case-insensitive substring of the address or scanner name.
    `country` / `scanner` / `risk` are exact matches; None, "" or the
    "All ..." labels match everything.
    """
    q = query.lower()
    out: list[AddressRecord] = []
    for r in records:
        if q and q not in r.ip_or_cidr.lower() and q not in r.scanner_name.lower():
            continue
        if not _is_any(country, ALL_COUNTRIES) and r.country_code != country:
            continue
        if not _is_any(scanner, ALL_SCANNERS) and r.scanner_name != scanner:
            continue
        if not _is_any(risk, ALL_RISK_LEVELS) and r.risk_level != risk:
            continue
        out.append(r)
    return out
