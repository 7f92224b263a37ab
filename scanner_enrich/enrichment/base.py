"""Enrichment interface.

An enricher looks one address up against a remote source and returns the
record fields it learned. It never touches the record itself: the caller
merges the values (empty values never overwrite, see `AddressRecord.merge`).
"""

from __future__ import annotations

from dataclasses import dataclass

from ..http_client import HttpClient
from ..models import AddressRecord


@dataclass(frozen=True)
class EnrichmentContext:
    client: HttpClient
    resolve_ptr: bool = True


class Enricher:
    name: str

    def enrich(self, record: AddressRecord, ctx: EnrichmentContext) -> dict[str, str]:
        raise NotImplementedError


def lookup_address(record: AddressRecord) -> str:
    """Address to query for a record: the network address for CIDR blocks."""
    return record.ip_or_cidr.split("/", 1)[0]
