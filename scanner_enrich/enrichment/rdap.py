"""RDAP ownership enrichment.

The five regional registries are asked in order until one returns a 2xx
answer that decodes into `RdapIpNetwork`. Registries redirect or 404 for
space they do not manage, so the fallback order matters.

Payloads are untrusted, so they are decoded into pydantic models where every
field is optional and unknown keys are ignored.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import NoRegistryResponded, RetriesExhausted
from ..models import AddressRecord
from .base import Enricher, EnrichmentContext

logger = logging.getLogger(__name__)

REGISTRY_ENDPOINTS: dict[str, str] = {
    "arin": "https://rdap.arin.net/registry/ip/",
    "ripe": "https://rdap.ripe.net/ip/",
    "apnic": "https://rdap.apnic.net/ip/",
    "lacnic": "https://rdap.lacnic.net/rdap/ip/",
    "afrinic": "https://rdap.afrinic.net/rdap/ip/",
}


class _RdapModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RdapEvent(_RdapModel):
    event_action: Optional[str] = Field(default=None, alias="eventAction")
    event_date: Optional[str] = Field(default=None, alias="eventDate")


class RdapCidr(_RdapModel):
    v4prefix: Optional[str] = None
    v6prefix: Optional[str] = None
    length: Optional[int] = None

    def as_text(self) -> str:
        prefix = self.v4prefix or self.v6prefix
        if not prefix or self.length is None:
            return ""
        return f"{prefix}/{self.length}"


class RdapEntity(_RdapModel):
    handle: Optional[str] = None
    roles: Optional[list[str]] = None
    vcard_array: Optional[list[Any]] = Field(default=None, alias="vcardArray")
    entities: Optional[list[RdapEntity]] = None

    def vcard_values(self, key: str) -> list[str]:
        """Text values of one vCard property (jCard: ["vcard", [[name, params, type, value], ...]])."""
        if not self.vcard_array or len(self.vcard_array) < 2:
            return []
        props = self.vcard_array[1]
        if not isinstance(props, list):
            return []
        out: list[str] = []
        for prop in props:
            if not isinstance(prop, list) or len(prop) < 4:
                continue
            if prop[0] == key and isinstance(prop[3], str) and prop[3]:
                out.append(prop[3])
        return out

    def has_role(self, *names: str) -> bool:
        roles = {r.lower() for r in self.roles or []}
        return any(n in roles for n in names)


class RdapNetworkBlock(_RdapModel):
    cidr0_cidrs: Optional[list[RdapCidr]] = None


class RdapIpNetwork(_RdapModel):
    handle: Optional[str] = None
    name: Optional[str] = None
    port43: Optional[str] = None
    object_class_name: Optional[str] = Field(default=None, alias="objectClassName")
    start_address: Optional[str] = Field(default=None, alias="startAddress")
    end_address: Optional[str] = Field(default=None, alias="endAddress")
    ip_version: Optional[str] = Field(default=None, alias="ipVersion")
    rdap_type: Optional[str] = Field(default=None, alias="type")
    parent_handle: Optional[str] = Field(default=None, alias="parentHandle")
    events: Optional[list[RdapEvent]] = None
    entities: Optional[list[RdapEntity]] = None
    cidr0_cidrs: Optional[list[RdapCidr]] = None
    network: Optional[RdapNetworkBlock] = None

    def first_event(self, action: str) -> str:
        for ev in self.events or []:
            if (ev.event_action or "").lower() == action and ev.event_date:
                return ev.event_date
        return ""

    def cidr_text(self) -> str:
        cidrs = list(self.cidr0_cidrs or [])
        if self.network is not None:
            cidrs.extend(self.network.cidr0_cidrs or [])
        for c in cidrs:
            text = c.as_text()
            if text:
                return text
        if self.start_address and self.end_address:
            return f"{self.start_address} - {self.end_address}"
        return ""

    def walk_entities(self) -> Iterator[RdapEntity]:
        """Depth-first over all entities, nested ones included."""
        stack = list(reversed(self.entities or []))
        while stack:
            ent = stack.pop()
            yield ent
            stack.extend(reversed(ent.entities or []))


RdapEntity.model_rebuild()


def extract_fields(net: RdapIpNetwork, registry_key: str = "") -> dict[str, str]:
    """Flatten an RDAP network object into record fields. Missing values are ""."""
    abuse_email = ""
    tech_email = ""
    fallback_name = ""
    for ent in net.walk_entities():
        emails = ent.vcard_values("email")
        if emails and not abuse_email and ent.has_role("abuse"):
            abuse_email = emails[0]
        if emails and not tech_email and ent.has_role("technical", "tech"):
            tech_email = emails[0]
        if not fallback_name:
            names = ent.vcard_values("fn")
            if names:
                fallback_name = names[0]

    name = net.name or fallback_name
    return {
        "rdap_name": name,
        "organization": name,
        "rdap_handle": net.handle or "",
        "registry": net.port43 or registry_key,
        "start_address": net.start_address or "",
        "end_address": net.end_address or "",
        "ip_version": net.ip_version or "",
        "rdap_type": net.rdap_type or "",
        "parent_handle": net.parent_handle or "",
        "event_registration": net.first_event("registration"),
        "event_last_changed": net.first_event("last changed"),
        "rdap_cidr": net.cidr_text(),
        "abuse_email": abuse_email,
        "tech_email": tech_email,
    }


def select_registries(registries: Iterable[str]) -> list[str]:
    """Known registry keys in the given order; all five when none are given."""
    keys = [r.strip().lower() for r in registries if r and r.strip().lower() in REGISTRY_ENDPOINTS]
    return keys or list(REGISTRY_ENDPOINTS)


class RdapEnricher(Enricher):
    name = "rdap"

    def __init__(self, registries: Iterable[str] = ()):
        self.registries = select_registries(registries)

    def enrich(self, record: AddressRecord, ctx: EnrichmentContext) -> dict[str, str]:
        address = record.ip_or_cidr
        attempted: list[str] = []
        for key in self.registries:
            url = REGISTRY_ENDPOINTS[key] + address
            attempted.append(key)
            try:
                resp = ctx.client.get(url)
            except RetriesExhausted as e:
                logger.debug("RDAP %s unreachable for %s: %s", key, address, e)
                continue
            if not resp.ok:
                logger.debug("RDAP %s answered %d for %s", key, resp.status, address)
                continue
            try:
                net = RdapIpNetwork.model_validate_json(resp.body)
            except ValidationError as e:
                logger.debug("RDAP %s returned an undecodable body for %s: %s", key, address, e.error_count())
                continue
            fields = extract_fields(net, key)
            # Organization only fills a blank; rdap_name follows the registry.
            if record.organization:
                fields["organization"] = ""
            return fields

        raise NoRegistryResponded(address, attempted)
