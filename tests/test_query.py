import unittest

from scanner_enrich.models import AddressRecord
from scanner_enrich.query import ALL_COUNTRIES, ALL_RISK_LEVELS, ALL_SCANNERS, filter_records, summarize


def _records():
    return [
        AddressRecord(ip_or_cidr="1.1.1.1", scanner_name="shodan", country_code="US", risk_level="High"),
        AddressRecord(ip_or_cidr="1.1.1.2", scanner_name="shodan", country_code="US"),
        AddressRecord(ip_or_cidr="2.2.2.0/24", scanner_name="censys", country_code="DE"),
        AddressRecord(ip_or_cidr="3.3.3.3", scanner_name="binaryedge"),
    ]


class TestSummarize(unittest.TestCase):
    def test_counts(self):
        s = summarize(_records())
        self.assertEqual(s.total, 4)
        self.assertEqual(s.unique_addresses, 4)
        self.assertEqual(s.unique_countries, 2)
        self.assertEqual(s.unique_scanners, 3)
        self.assertEqual(s.high_risk, 1)
        self.assertEqual(s.risk_levels, 2)
        self.assertEqual(s.enriched, 3)
        self.assertEqual(list(s.by_scanner)[0], "shodan")
        self.assertEqual(s.by_country, {"US": 2, "DE": 1})

    def test_empty(self):
        s = summarize([])
        self.assertEqual(s.total, 0)
        self.assertEqual(s.by_scanner, {})


class TestFilter(unittest.TestCase):
    def test_query_matches_address_or_scanner(self):
        self.assertEqual([r.ip_or_cidr for r in filter_records(_records(), "CENSYS")], ["2.2.2.0/24"])
        self.assertEqual(len(filter_records(_records(), "1.1.1")), 2)

    def test_exact_criteria_combine(self):
        out = filter_records(_records(), country="US", risk="High")
        self.assertEqual([r.ip_or_cidr for r in out], ["1.1.1.1"])
        self.assertEqual(filter_records(_records(), scanner="shod"), [])

    def test_wildcards_match_everything(self):
        out = filter_records(_records(), country=ALL_COUNTRIES, scanner=ALL_SCANNERS, risk=ALL_RISK_LEVELS)
        self.assertEqual(len(out), 4)
        self.assertEqual(len(filter_records(_records(), country="")), 4)


if __name__ == "__main__":
    unittest.main()
