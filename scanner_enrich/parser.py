"""Rule-file parsing: address extraction and source mapping.

Rule files are nftables-style `.nft` sets, one file per scanner
(`shodan.nft`, `censys.nft`, ...). Addresses are pulled out with two patterns
(dotted-quad IPv4 and colon-separated IPv6, both with an optional `/prefix`)
and deduplicated by exact text, first occurrence wins.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import Optional

from .errors import DirectoryNotFound
from .models import KNOWN_SCANNERS, AddressRecord, ScannerType, SourceInfo, new_record

logger = logging.getLogger(__name__)

RULE_FILE_SUFFIX = ".nft"

IPV4_RE = re.compile(r"\b(?:[0-9]{1,3}\.){3}[0-9]{1,3}(?:/[0-9]{1,2})?\b")
IPV6_RE = re.compile(r"(?:[a-fA-F0-9]{0,4}:){2,7}[a-fA-F0-9]{0,4}(?:/[0-9]{1,3})?")


def iter_rule_files(root_dir: str) -> Iterator[str]:
    """Yield rule files under root_dir in a stable (sorted) walk order.

    Hidden directories (".git", ".cache", ...) are not descended into.
    """
    if not os.path.isdir(root_dir):
        raise DirectoryNotFound(root_dir)

    for dirpath, dirnames, filenames in os.walk(root_dir):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for name in sorted(filenames):
            if name.lower().endswith(RULE_FILE_SUFFIX):
                yield os.path.join(dirpath, name)


def extract_from_lines(lines: Iterable[str]) -> list[str]:
    """Return every address literal found in lines (duplicates kept)."""
    out: list[str] = []
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        out.extend(IPV4_RE.findall(line))
        out.extend(IPV6_RE.findall(line))
    return out


def extract_from_file(path: str) -> list[str]:
    # Patterns are ASCII-only; stray non-UTF-8 bytes (comments) must not drop the file.
    with open(path, encoding="utf-8", errors="replace") as f:
        return extract_from_lines(f)


def _dedupe(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def extract_addresses(root_dir: str, files: Optional[list[str]] = None) -> list[str]:
    """Extract unique addresses from all rule files under root_dir.

    A file that cannot be read is logged and skipped; a missing root raises
    `DirectoryNotFound`.
    """
    if files is None:
        files = list(iter_rule_files(root_dir))

    found: list[str] = []
    for path in files:
        try:
            file_ips = extract_from_file(path)
        except OSError as e:
            logger.warning("Skipping unreadable rule file %s: %s", path, e)
            continue
        logger.info("%s: %d addresses", os.path.basename(path), len(file_ips))
        found.extend(file_ips)

    unique = _dedupe(found)
    logger.info("%d unique addresses extracted from %d files", len(unique), len(files))
    return unique


def scanner_type_for(scanner_name: str) -> ScannerType:
    name = scanner_name.strip().lower()
    for known in KNOWN_SCANNERS:
        if name == known:
            return known
    return "other"


def source_for_file(path: str) -> SourceInfo:
    file_name = os.path.basename(path)
    stem = file_name[: -len(RULE_FILE_SUFFIX)] if file_name.lower().endswith(RULE_FILE_SUFFIX) else file_name
    return SourceInfo(
        scanner_name=stem,
        scanner_type=scanner_type_for(stem),
        source_file=file_name,
    )


def map_sources(root_dir: str, files: Optional[list[str]] = None) -> dict[str, SourceInfo]:
    """Map each address to the rule file it came from.

    When an address is listed by several files, the file visited last in the
    sorted walk wins.
    """
    if files is None:
        files = list(iter_rule_files(root_dir))

    mapping: dict[str, SourceInfo] = {}
    for path in files:
        try:
            file_ips = extract_from_file(path)
        except OSError as e:
            logger.warning("Cannot map sources from %s: %s", path, e)
            continue
        info = source_for_file(path)
        for ip in file_ips:
            mapping[ip] = info
    return mapping


def build_records(
    addresses: list[str],
    sources: Optional[dict[str, SourceInfo]] = None,
    *,
    now: Optional[datetime] = None,
) -> list[AddressRecord]:
    sources = sources or {}
    return [
        new_record(addr, index=i, source=sources.get(addr), now=now)
        for i, addr in enumerate(addresses)
    ]


def load_records(root_dir: str) -> list[AddressRecord]:
    """Extract, map and build base records in one pass over the file list."""
    files = list(iter_rule_files(root_dir))
    addresses = extract_addresses(root_dir, files=files)
    return build_records(addresses, map_sources(root_dir, files=files))
