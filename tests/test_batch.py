from __future__ import annotations

import json
import os
import tempfile
import threading
import unittest
from unittest.mock import patch

from scanner_enrich.batch import SAVE_EVERY, BatchControl, enrich_batch, enrich_one
from scanner_enrich.cache import ResultCache
from scanner_enrich.config import EnrichmentConfig
from scanner_enrich.enrichment import REGISTRY_ENDPOINTS
from scanner_enrich.errors import CacheSaveError
from scanner_enrich.http_client import HttpResponse
from scanner_enrich.models import AddressRecord
from scanner_enrich.progress import ProgressStore, ProgressTracker
from scanner_enrich.rate_limit import RateLimiter


class FakeClient:
    """RDAP answers with a per-address network; geolocation answers for everyone."""

    def __init__(self, rdap_down: frozenset = frozenset(), on_get=None):
        self.rdap_down = rdap_down
        self.on_get = on_get
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def get(self, url: str) -> HttpResponse:
        with self._lock:
            self.calls.append(url)
        if self.on_get is not None:
            self.on_get(url)
        if url.startswith(REGISTRY_ENDPOINTS["arin"]):
            address = url.rsplit("/ip/", 1)[1]
            if address in self.rdap_down:
                return HttpResponse(status=404, body=b"")
            payload = {"handle": f"NET-{address}", "name": "SCAN-NET", "port43": "whois.arin.net"}
            return HttpResponse(status=200, body=json.dumps(payload).encode("utf-8"))
        payload = {"status": "success", "countryCode": "US", "country": "United States", "as": "AS64500 Scan Co"}
        return HttpResponse(status=200, body=json.dumps(payload).encode("utf-8"))

    def queried(self, address: str) -> bool:
        return any(c.endswith("/ip/" + address) for c in self.calls)


def _config(**kw) -> EnrichmentConfig:
    base = {"registries": ("arin",), "throttle_seconds": 0.0, "parallelism": 1}
    base.update(kw)
    return EnrichmentConfig(**base)


class RecordingStore(ProgressStore):
    """Keeps a snapshot of the processed addresses at every save."""

    def __init__(self, path: str):
        super().__init__(path)
        self.snapshots: list[list[str]] = []

    def save(self, tracker: ProgressTracker) -> None:
        self.snapshots.append(list(tracker.processed_ips))
        super().save(tracker)


class CountingLimiter(RateLimiter):
    def __init__(self):
        super().__init__(0)
        self.waits = 0

    def wait(self) -> None:
        self.waits += 1


class BatchTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = self._tmp.name
        self.cache_path = os.path.join(self.tmp, "rdap_cache.json")
        self.progress_path = os.path.join(self.tmp, "rdap_progress.json")

    def tearDown(self):
        self._tmp.cleanup()

    def run_batch(self, addresses, client, config=None, **kw):
        kw.setdefault("limiter", RateLimiter(0))
        return enrich_batch(
            addresses,
            config or _config(),
            client=client,
            cache_path=self.cache_path,
            progress_path=self.progress_path,
            resolve_ptr=False,
            **kw,
        )


class TestEnrichBatch(BatchTestCase):
    def test_sequential_run_enriches_and_clears_progress(self):
        client = FakeClient()
        result = self.run_batch(["1.1.1.1", "2.2.2.2"], client)

        self.assertEqual(result.enriched, 2)
        self.assertEqual(result.failed, 0)
        self.assertFalse(result.cancelled)
        self.assertEqual([r.ip_or_cidr for r in result.records], ["1.1.1.1", "2.2.2.2"])
        self.assertEqual(result.records[0].rdap_handle, "NET-1.1.1.1")
        self.assertEqual(result.records[0].asn, "AS64500")
        self.assertEqual(result.records[1].country_code, "US")
        self.assertFalse(os.path.exists(self.progress_path))

        with open(self.cache_path, encoding="utf-8") as f:
            entries = json.load(f)["entries"]
        self.assertEqual(set(entries), {"1.1.1.1", "2.2.2.2"})

    def test_parallel_run_keeps_input_order(self):
        addresses = [f"10.1.0.{i}" for i in range(25)]
        client = FakeClient()
        result = self.run_batch(addresses, client, config=_config(parallelism=4))

        self.assertEqual(result.enriched, 25)
        self.assertEqual([r.ip_or_cidr for r in result.records], addresses)
        self.assertTrue(all(r.rdap_handle == f"NET-{r.ip_or_cidr}" for r in result.records))
        self.assertFalse(os.path.exists(self.progress_path))

    def test_cache_hit_skips_network(self):
        self.run_batch(["1.1.1.1"], FakeClient())

        client = FakeClient()
        result = self.run_batch(["1.1.1.1"], client)
        self.assertEqual(result.from_cache, 1)
        self.assertEqual(result.enriched, 0)
        self.assertEqual(client.calls, [])
        self.assertEqual(result.records[0].rdap_handle, "NET-1.1.1.1")

    def test_no_registry_counts_as_failed_but_keeps_geo(self):
        client = FakeClient(rdap_down=frozenset({"3.3.3.3"}))
        result = self.run_batch(["1.1.1.1", "3.3.3.3"], client)

        self.assertEqual(result.enriched, 1)
        self.assertEqual(result.failed, 1)
        failed = result.records[1]
        self.assertEqual(failed.rdap_handle, "")
        self.assertEqual(failed.country_code, "US")

    def test_resume_skips_processed_and_restores_from_cache(self):
        addresses = ["1.1.1.1", "2.2.2.2", "3.3.3.3"]
        cache = ResultCache(self.cache_path)
        cache.update_and_save("1.1.1.1", AddressRecord(ip_or_cidr="1.1.1.1", organization="Cached Org"))
        tracker = ProgressTracker(total_records=3)
        tracker.record_processed("1.1.1.1", 0)
        ProgressStore(self.progress_path).save(tracker)

        client = FakeClient()
        result = self.run_batch(addresses, client)

        self.assertEqual(result.skipped, 1)
        self.assertEqual(result.enriched, 2)
        self.assertFalse(client.queried("1.1.1.1"))
        self.assertEqual(result.records[0].organization, "Cached Org")

    def test_no_resume_starts_over(self):
        tracker = ProgressTracker(total_records=2)
        tracker.record_processed("1.1.1.1", 0)
        ProgressStore(self.progress_path).save(tracker)

        client = FakeClient()
        result = self.run_batch(["1.1.1.1", "2.2.2.2"], client, resume=False)
        self.assertEqual(result.skipped, 0)
        self.assertTrue(client.queried("1.1.1.1"))

    def test_progress_for_other_batch_is_ignored(self):
        tracker = ProgressTracker(total_records=2)
        tracker.record_processed("9.9.9.9", 0)
        ProgressStore(self.progress_path).save(tracker)

        result = self.run_batch(["1.1.1.1", "2.2.2.2"], FakeClient())
        self.assertEqual(result.skipped, 0)
        self.assertEqual(result.enriched, 2)

    def test_cancel_keeps_progress_then_resume_finishes(self):
        control = BatchControl()

        def cancel_after_first_geo(url):
            if "ip-api" in url:
                control.cancel()

        addresses = ["1.1.1.1", "2.2.2.2", "3.3.3.3"]
        result = self.run_batch(addresses, FakeClient(on_get=cancel_after_first_geo), control=control)

        self.assertTrue(result.cancelled)
        self.assertEqual(result.enriched, 1)
        saved = ProgressStore(self.progress_path).load()
        self.assertEqual(saved.processed_ips, ["1.1.1.1"])
        self.assertFalse(saved.completed)

        client = FakeClient()
        resumed = self.run_batch(addresses, client)
        self.assertEqual(resumed.skipped, 1)
        self.assertEqual(resumed.enriched, 2)
        self.assertFalse(client.queried("1.1.1.1"))
        self.assertFalse(os.path.exists(self.progress_path))

    def test_keyboard_interrupt_is_a_cancel(self):
        def interrupt(url):
            if url.endswith("/2.2.2.2"):
                raise KeyboardInterrupt

        result = self.run_batch(["1.1.1.1", "2.2.2.2"], FakeClient(on_get=interrupt))
        self.assertTrue(result.cancelled)
        self.assertEqual(ProgressStore(self.progress_path).load().processed_ips, ["1.1.1.1"])

    def test_cache_save_error_aborts_batch(self):
        blocker = os.path.join(self.tmp, "blocker")
        with open(blocker, "w", encoding="utf-8") as f:
            f.write("")
        cache = ResultCache(os.path.join(blocker, "rdap_cache.json"))

        with self.assertLogs("scanner_enrich.batch", level="ERROR"):
            with self.assertRaises(CacheSaveError):
                self.run_batch(["1.1.1.1"], FakeClient(), cache=cache)

    def test_progress_saved_every_ten_addresses(self):
        addresses = [f"10.2.0.{i}" for i in range(2 * SAVE_EVERY + 3)]
        store = RecordingStore(self.progress_path)
        self.run_batch(addresses, FakeClient(), progress_store=store)

        counts = [len(s) for s in store.snapshots]
        self.assertEqual(counts, [10, 20, 23, 23])
        self.assertEqual(store.snapshots[0], addresses[:10])
        self.assertEqual(store.snapshots[1], addresses[:20])

    def test_interrupted_run_keeps_periodic_save_on_disk(self):
        addresses = [f"10.3.0.{i}" for i in range(SAVE_EVERY + 2)]
        store = RecordingStore(self.progress_path)

        def interrupt(url):
            if url.endswith("/" + addresses[SAVE_EVERY + 1]):
                raise KeyboardInterrupt

        result = self.run_batch(addresses, FakeClient(on_get=interrupt), progress_store=store)

        self.assertTrue(result.cancelled)
        self.assertEqual(store.snapshots[0], addresses[:SAVE_EVERY])
        self.assertEqual(store.load().processed_ips, addresses[: SAVE_EVERY + 1])

    def test_limiter_waits_on_cache_miss_only(self):
        cache = ResultCache(self.cache_path)
        cache.update_and_save("2.2.2.2", AddressRecord(ip_or_cidr="2.2.2.2", organization="Cached Org"))
        limiter = CountingLimiter()

        result = self.run_batch(["1.1.1.1", "2.2.2.2", "3.3.3.3"], FakeClient(), limiter=limiter)

        self.assertEqual(result.from_cache, 1)
        self.assertEqual(result.enriched, 2)
        self.assertEqual(limiter.waits, 2)

    def test_default_paths_skip_dotenv(self):
        with patch.dict(os.environ, {"XDG_CACHE_HOME": self.tmp}), patch(
            "scanner_enrich.config.load_dotenv"
        ) as load_dotenv:
            result = enrich_batch(
                ["1.1.1.1"], _config(), client=FakeClient(), limiter=RateLimiter(0), resolve_ptr=False
            )

        self.assertEqual(result.enriched, 1)
        load_dotenv.assert_not_called()
        self.assertTrue(os.path.exists(os.path.join(self.tmp, "scanner-enrich", "rdap_cache.json")))

    def test_string_and_record_inputs(self):
        record = AddressRecord(ip_or_cidr="4.4.4.4", scanner_name="shodan")
        result = self.run_batch([record, "5.5.5.5"], FakeClient())
        self.assertIs(result.records[0], record)
        self.assertEqual(record.scanner_name, "shodan")
        self.assertEqual(result.records[1].id, "scanner_2")
        self.assertEqual(result.total, 2)


class TestBatchControl(unittest.TestCase):
    def test_pause_resume_cancel(self):
        control = BatchControl()
        self.assertFalse(control.is_paused())
        control.pause()
        self.assertTrue(control.is_paused())
        control.resume()
        self.assertTrue(control.wait_if_paused())
        control.pause()
        control.cancel()
        self.assertFalse(control.is_paused())
        self.assertFalse(control.wait_if_paused())


class TestEnrichOne(BatchTestCase):
    def test_enrich_one_uses_cache(self):
        client = FakeClient()
        record = enrich_one("1.1.1.1", _config(), client=client, cache_path=self.cache_path, resolve_ptr=False)
        self.assertEqual(record.rdap_handle, "NET-1.1.1.1")
        self.assertEqual(record.registry, "whois.arin.net")
        self.assertTrue(os.path.exists(self.cache_path))

        again = FakeClient()
        record = enrich_one("1.1.1.1", _config(), client=again, cache_path=self.cache_path, resolve_ptr=False)
        self.assertEqual(again.calls, [])
        self.assertEqual(record.rdap_handle, "NET-1.1.1.1")
        self.assertFalse(os.path.exists(self.progress_path))


if __name__ == "__main__":
    unittest.main()
