"""Geolocation enrichment.

Online, no API keys:
- ip-api.com (JSON) for country / ISP / AS / reverse name
- system resolver PTR lookup (dnspython) when ip-api gave no reverse name

Best-effort: any failure yields empty fields, never an exception.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional

import dns.exception
import dns.resolver
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import RetriesExhausted
from ..models import AddressRecord
from .base import Enricher, EnrichmentContext, lookup_address

logger = logging.getLogger(__name__)

DEFAULT_GEO_ENDPOINT = "http://ip-api.com/json"
GEO_FIELDS = "status,message,country,countryCode,isp,as,reverse"
PTR_LIFETIME_SECONDS = 5.0


class IpApiResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: Optional[str] = None
    message: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = Field(default=None, alias="countryCode")
    isp: Optional[str] = None
    as_: Optional[str] = Field(default=None, alias="as")
    reverse: Optional[str] = None


@dataclass
class GeoResult:
    country_code: str = ""
    country_name: str = ""
    isp: str = ""
    asn: str = ""
    as_name: str = ""
    reverse_dns: str = ""
    domain: str = ""

    def to_fields(self) -> dict[str, str]:
        return asdict(self)


def split_as(value: str) -> tuple[str, str]:
    """Split ip-api's "AS15169 Google LLC" into ("AS15169", "Google LLC")."""
    value = value.strip()
    parts = value.split(" ", 1)
    if len(parts) == 2 and parts[1].strip():
        return parts[0], parts[1].strip()
    return value, ""


def _reverse_lookup(address: str, lifetime: float = PTR_LIFETIME_SECONDS) -> str:
    try:
        answer = dns.resolver.resolve_address(address, lifetime=lifetime)
    except (dns.exception.DNSException, ValueError) as e:
        logger.debug("PTR lookup failed for %s: %s", address, e)
        return ""
    for rr in answer:
        return str(rr.target).rstrip(".")
    return ""


class GeoEnricher(Enricher):
    name = "geo"

    def __init__(self, endpoint: str = DEFAULT_GEO_ENDPOINT, *, ptr_lifetime: float = PTR_LIFETIME_SECONDS):
        self.endpoint = endpoint.rstrip("/")
        self.ptr_lifetime = ptr_lifetime

    def url_for(self, address: str) -> str:
        return f"{self.endpoint}/{address}?fields={GEO_FIELDS}"

    def lookup(self, address: str, ctx: EnrichmentContext) -> GeoResult:
        result = GeoResult()
        try:
            resp = ctx.client.get(self.url_for(address))
        except RetriesExhausted as e:
            logger.debug("Geolocation unavailable for %s: %s", address, e)
            return result
        if not resp.ok:
            logger.debug("Geolocation answered %d for %s", resp.status, address)
            return result
        try:
            data = IpApiResponse.model_validate_json(resp.body)
        except ValidationError:
            logger.debug("Geolocation returned an undecodable body for %s", address)
            return result
        if (data.status or "").lower() != "success":
            logger.debug("Geolocation failed for %s: %s", address, data.message or "no message")
            return result

        result.country_code = data.country_code or ""
        result.country_name = data.country or ""
        result.isp = data.isp or ""
        if data.as_:
            result.asn, result.as_name = split_as(data.as_)
        if data.reverse:
            result.reverse_dns = data.reverse
            result.domain = data.reverse
        return result

    def enrich(self, record: AddressRecord, ctx: EnrichmentContext) -> dict[str, str]:
        address = lookup_address(record)
        result = self.lookup(address, ctx)

        if record.domain:
            result.domain = ""
        elif not result.domain and ctx.resolve_ptr and not record.is_block:
            name = _reverse_lookup(address, self.ptr_lifetime)
            if name:
                result.domain = name
                if not result.reverse_dns and not record.reverse_dns:
                    result.reverse_dns = name
        return result.to_fields()
