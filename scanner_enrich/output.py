"""Export / import of record sets (CSV, JSON).

CSV uses a fixed 35-column layout so spreadsheets built on earlier exports
keep working; JSON is an array of `AddressRecord.to_dict()` objects.
"""

from __future__ import annotations

import csv
import json
import logging
import os
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TextIO

from .models import AddressRecord

logger = logging.getLogger(__name__)

CSV_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def _fmt_time(value: Optional[datetime]) -> str:
    return value.strftime(CSV_TIME_FORMAT) if value else ""


def _parse_time(value: str) -> Optional[datetime]:
    value = value.strip()
    if not value:
        return None
    try:
        return datetime.strptime(value, CSV_TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def _attr(name: str) -> Callable[[AddressRecord], str]:
    return lambda r: str(getattr(r, name))


# (header, record attribute, formatter)
CSV_COLUMNS: list[tuple[str, str, Callable[[AddressRecord], str]]] = [
    ("ID", "id", _attr("id")),
    ("IP/CIDR", "ip_or_cidr", _attr("ip_or_cidr")),
    ("Scanner Name", "scanner_name", _attr("scanner_name")),
    ("Scanner Type", "scanner_type", _attr("scanner_type")),
    ("Source File", "source_file", _attr("source_file")),
    ("Country Code", "country_code", _attr("country_code")),
    ("Country Name", "country_name", _attr("country_name")),
    ("ISP", "isp", _attr("isp")),
    ("Organization", "organization", _attr("organization")),
    ("RDAP Name", "rdap_name", _attr("rdap_name")),
    ("RDAP Handle", "rdap_handle", _attr("rdap_handle")),
    ("RDAP CIDR", "rdap_cidr", _attr("rdap_cidr")),
    ("RDAP Registry", "registry", _attr("registry")),
    ("Start Address", "start_address", _attr("start_address")),
    ("End Address", "end_address", _attr("end_address")),
    ("IP Version", "ip_version", _attr("ip_version")),
    ("RDAP Type", "rdap_type", _attr("rdap_type")),
    ("Parent Handle", "parent_handle", _attr("parent_handle")),
    ("Event Registration", "event_registration", _attr("event_registration")),
    ("Event Last Changed", "event_last_changed", _attr("event_last_changed")),
    ("ASN", "asn", _attr("asn")),
    ("AS Name", "as_name", _attr("as_name")),
    ("Reverse DNS", "reverse_dns", _attr("reverse_dns")),
    ("Abuse Confidence Score", "abuse_confidence_score", _attr("abuse_confidence_score")),
    ("Abuse Reports", "abuse_reports", _attr("abuse_reports")),
    ("Usage Type", "usage_type", _attr("usage_type")),
    ("Domain", "domain", _attr("domain")),
    ("Last Seen", "last_seen", lambda r: _fmt_time(r.last_seen)),
    ("First Seen", "first_seen", lambda r: _fmt_time(r.first_seen)),
    ("Tags", "tags", lambda r: ", ".join(r.tags)),
    ("Notes", "notes", _attr("notes")),
    ("Risk Level", "risk_level", _attr("risk_level")),
    ("Export Date", "export_date", lambda r: _fmt_time(r.export_date)),
    ("Abuse Email", "abuse_email", _attr("abuse_email")),
    ("Tech Email", "tech_email", _attr("tech_email")),
]

CSV_HEADERS: list[str] = [h for h, _, _ in CSV_COLUMNS]
_TIME_COLUMNS = {"last_seen", "first_seen", "export_date"}


def _ensure_parent_dir(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def to_csv_row(record: AddressRecord) -> list[str]:
    return [fmt(record) for _, _, fmt in CSV_COLUMNS]


def write_csv(records: Iterable[AddressRecord], stream: TextIO) -> int:
    """Write header + one row per record to an open text stream."""
    writer = csv.writer(stream)
    writer.writerow(CSV_HEADERS)
    n = 0
    for record in records:
        writer.writerow(to_csv_row(record))
        n += 1
    return n


def write_json(records: Iterable[AddressRecord], stream: TextIO) -> int:
    payload = [r.to_dict() for r in records]
    json.dump(payload, stream, indent=2, ensure_ascii=False)
    stream.write("\n")
    return len(payload)


def export_csv(records: Iterable[AddressRecord], path: str) -> int:
    """Write records as CSV (header + one row each). Returns the row count."""
    _ensure_parent_dir(path)
    with open(path, "w", encoding="utf-8", newline="") as f:
        n = write_csv(records, f)
    logger.info("Wrote %d records to %s", n, path)
    return n


def export_json(records: Iterable[AddressRecord], path: str) -> int:
    """Write records as a JSON array. Returns the record count."""
    _ensure_parent_dir(path)
    with open(path, "w", encoding="utf-8") as f:
        n = write_json(records, f)
    logger.info("Wrote %d records to %s", n, path)
    return n


def load_json(path: str) -> list[AddressRecord]:
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, list):
        raise ValueError(f"{path}: expected a JSON array of records")
    out: list[AddressRecord] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict) or not item.get("ip_or_cidr"):
            logger.warning("%s: skipping entry %d without an address", path, i)
            continue
        out.append(AddressRecord.from_dict(item))
    return out


def load_csv(path: str) -> list[AddressRecord]:
    """Read a CSV export back, mapping columns by header name (case-insensitive).

    Columns may be missing or reordered; rows without an address are skipped.
    """
    with open(path, encoding="utf-8", newline="") as f:
        rows = list(csv.reader(f))
    if not rows:
        raise ValueError(f"{path}: empty CSV file")

    index = {h.strip().lower(): i for i, h in enumerate(rows[0])}
    if "ip/cidr" not in index:
        raise ValueError(f"{path}: missing 'IP/CIDR' column")

    out: list[AddressRecord] = []
    for row in rows[1:]:
        data: dict[str, Any] = {}
        for header, attr, _ in CSV_COLUMNS:
            i = index.get(header.lower())
            if i is None or i >= len(row):
                continue
            value = row[i]
            if attr in _TIME_COLUMNS:
                data[attr] = _parse_time(value)
            else:
                data[attr] = value
        if not str(data.get("ip_or_cidr") or "").strip():
            continue
        out.append(AddressRecord.from_dict(data))
    return out
