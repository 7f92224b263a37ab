from __future__ import annotations

import http.client
import io
import json
import unittest
import urllib.response

from scanner_enrich.enrichment.base import EnrichmentContext
from scanner_enrich.enrichment.rdap import (
    REGISTRY_ENDPOINTS,
    RdapEnricher,
    RdapIpNetwork,
    extract_fields,
    select_registries,
)
from scanner_enrich.errors import NoRegistryResponded, RetriesExhausted
from scanner_enrich.http_client import HttpClient, HttpResponse
from scanner_enrich.models import AddressRecord
from scanner_enrich.retry import RetryPolicy

ARIN_8_8_8_8 = {
    "objectClassName": "ip network",
    "handle": "NET-8-8-8-0-2",
    "startAddress": "8.8.8.0",
    "endAddress": "8.8.8.255",
    "ipVersion": "v4",
    "name": "GOGL",
    "type": "DIRECT ALLOCATION",
    "parentHandle": "NET-8-0-0-0-0",
    "port43": "whois.arin.net",
    "cidr0_cidrs": [{"v4prefix": "8.8.8.0", "length": 24}],
    "events": [
        {"eventAction": "last changed", "eventDate": "2023-12-28T17:24:56-05:00"},
        {"eventAction": "registration", "eventDate": "2023-12-28T17:24:33-05:00"},
    ],
    "entities": [
        {
            "handle": "GOGL",
            "roles": ["registrant"],
            "vcardArray": ["vcard", [["version", {}, "text", "4.0"], ["fn", {}, "text", "Google LLC"]]],
            "entities": [
                {
                    "handle": "ABUSE5250-ARIN",
                    "roles": ["abuse"],
                    "vcardArray": [
                        "vcard",
                        [["fn", {}, "text", "Abuse"], ["email", {}, "text", "network-abuse@google.com"]],
                    ],
                },
                {
                    "handle": "ZG39-ARIN",
                    "roles": ["technical", "administrative"],
                    "vcardArray": [
                        "vcard",
                        [["fn", {}, "text", "Google LLC"], ["email", {}, "text", "arin-contact@google.com"]],
                    ],
                },
            ],
        }
    ],
    "someFutureExtension": {"ignored": True},
}


class FakeClient:
    def __init__(self, routes: dict):
        self.routes = routes
        self.calls: list[str] = []

    def get(self, url: str) -> HttpResponse:
        self.calls.append(url)
        for prefix, outcome in self.routes.items():
            if url.startswith(prefix):
                if isinstance(outcome, BaseException):
                    raise outcome
                return outcome
        return HttpResponse(status=404, body=b"")


def _json(status, payload):
    return HttpResponse(status=status, body=json.dumps(payload).encode("utf-8"))


class TestExtractFields(unittest.TestCase):
    def test_arin_payload(self):
        f = extract_fields(RdapIpNetwork.model_validate(ARIN_8_8_8_8), "arin")
        self.assertEqual(f["rdap_name"], "GOGL")
        self.assertEqual(f["rdap_handle"], "NET-8-8-8-0-2")
        self.assertEqual(f["registry"], "whois.arin.net")
        self.assertEqual(f["rdap_cidr"], "8.8.8.0/24")
        self.assertEqual(f["start_address"], "8.8.8.0")
        self.assertEqual(f["end_address"], "8.8.8.255")
        self.assertEqual(f["ip_version"], "v4")
        self.assertEqual(f["rdap_type"], "DIRECT ALLOCATION")
        self.assertEqual(f["parent_handle"], "NET-8-0-0-0-0")
        self.assertEqual(f["event_registration"], "2023-12-28T17:24:33-05:00")
        self.assertEqual(f["event_last_changed"], "2023-12-28T17:24:56-05:00")
        self.assertEqual(f["abuse_email"], "network-abuse@google.com")
        self.assertEqual(f["tech_email"], "arin-contact@google.com")

    def test_fallbacks(self):
        payload = {
            "handle": "RIPE-NET",
            "startAddress": "193.0.0.0",
            "endAddress": "193.0.7.255",
            "network": {"cidr0_cidrs": [{"v4prefix": "193.0.0.0", "length": 21}]},
            "entities": [
                {"roles": ["registrant"], "vcardArray": ["vcard", [["fn", {}, "text", "RIPE NCC"]]]}
            ],
        }
        f = extract_fields(RdapIpNetwork.model_validate(payload), "ripe")
        self.assertEqual(f["rdap_name"], "RIPE NCC")
        self.assertEqual(f["organization"], "RIPE NCC")
        self.assertEqual(f["registry"], "ripe")
        self.assertEqual(f["rdap_cidr"], "193.0.0.0/21")
        self.assertEqual(f["abuse_email"], "")

    def test_cidr_from_range_when_no_cidr0(self):
        payload = {"startAddress": "2001:db8::", "endAddress": "2001:db8:ffff:ffff:ffff:ffff:ffff:ffff"}
        f = extract_fields(RdapIpNetwork.model_validate(payload))
        self.assertEqual(f["rdap_cidr"], "2001:db8:: - 2001:db8:ffff:ffff:ffff:ffff:ffff:ffff")

    def test_null_lists_tolerated(self):
        f = extract_fields(RdapIpNetwork.model_validate({"name": "X", "entities": None, "events": None}))
        self.assertEqual(f["rdap_name"], "X")
        self.assertEqual(f["event_registration"], "")


class TestRdapEnricher(unittest.TestCase):
    def test_registry_selection(self):
        self.assertEqual(select_registries([]), list(REGISTRY_ENDPOINTS))
        self.assertEqual(select_registries(["RIPE", "bogus", "arin"]), ["ripe", "arin"])

    def test_first_success_wins(self):
        client = FakeClient({REGISTRY_ENDPOINTS["arin"]: _json(200, ARIN_8_8_8_8)})
        ctx = EnrichmentContext(client=client)
        out = RdapEnricher().enrich(AddressRecord(ip_or_cidr="8.8.8.8"), ctx)

        self.assertEqual(out["rdap_handle"], "NET-8-8-8-0-2")
        self.assertEqual(client.calls, ["https://rdap.arin.net/registry/ip/8.8.8.8"])

    def test_falls_back_in_configured_order(self):
        ripe_payload = {"handle": "RIPE-1", "name": "EXAMPLE-NET", "port43": "whois.ripe.net"}
        client = FakeClient(
            {
                REGISTRY_ENDPOINTS["apnic"]: RetriesExhausted("apnic", 4, TimeoutError()),
                REGISTRY_ENDPOINTS["arin"]: HttpResponse(status=200, body=b"<html>not json</html>"),
                REGISTRY_ENDPOINTS["ripe"]: _json(200, ripe_payload),
            }
        )
        ctx = EnrichmentContext(client=client)
        out = RdapEnricher(["apnic", "arin", "ripe", "lacnic"]).enrich(AddressRecord(ip_or_cidr="1.2.3.4"), ctx)

        self.assertEqual(out["rdap_handle"], "RIPE-1")
        self.assertEqual(out["registry"], "whois.ripe.net")
        self.assertEqual(len(client.calls), 3)
        self.assertFalse(any("lacnic" in c for c in client.calls))

    def test_existing_organization_kept(self):
        client = FakeClient({REGISTRY_ENDPOINTS["arin"]: _json(200, ARIN_8_8_8_8)})
        record = AddressRecord(ip_or_cidr="8.8.8.8", organization="Known Org")
        out = RdapEnricher(["arin"]).enrich(record, EnrichmentContext(client=client))
        record.merge(out)
        self.assertEqual(record.organization, "Known Org")
        self.assertEqual(record.rdap_name, "GOGL")

    def test_cidr_queried_as_is(self):
        client = FakeClient({})
        with self.assertRaises(NoRegistryResponded):
            RdapEnricher(["arin"]).enrich(AddressRecord(ip_or_cidr="8.8.8.0/24"), EnrichmentContext(client=client))
        self.assertEqual(client.calls, ["https://rdap.arin.net/registry/ip/8.8.8.0/24"])

    def test_protocol_error_falls_through_to_next_registry(self):
        ripe_payload = {"handle": "RIPE-2", "name": "SCAN-NET"}
        calls = []

        def opener(req, timeout=None):
            calls.append(req.full_url)
            if req.full_url.startswith(REGISTRY_ENDPOINTS["arin"]):
                raise http.client.BadStatusLine("\x00\x00")
            body = io.BytesIO(json.dumps(ripe_payload).encode("utf-8"))
            return urllib.response.addinfourl(body, {}, req.full_url, 200)

        client = HttpClient(policy=RetryPolicy(retries=1, jitter=0.0), opener=opener, sleep=lambda s: None)
        out = RdapEnricher(["arin", "ripe"]).enrich(
            AddressRecord(ip_or_cidr="1.2.3.4"), EnrichmentContext(client=client)
        )

        self.assertEqual(out["rdap_handle"], "RIPE-2")
        self.assertEqual(len(calls), 3)

    def test_no_registry_responded(self):
        client = FakeClient({})
        with self.assertRaises(NoRegistryResponded) as ctx:
            RdapEnricher().enrich(AddressRecord(ip_or_cidr="10.0.0.1"), EnrichmentContext(client=client))
        self.assertEqual(ctx.exception.attempted, ["arin", "ripe", "apnic", "lacnic", "afrinic"])
        self.assertEqual(len(client.calls), 5)


if __name__ == "__main__":
    unittest.main()
