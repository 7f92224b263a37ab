"""Batch enrichment: cache check, pacing, RDAP + geolocation, progress.

Per address:

1. cache hit -> merge cached fields, no network
2. otherwise wait on the shared rate limiter, query RDAP then geolocation,
   store the result in the cache and persist it
3. mark the address processed (the tracker is saved every `SAVE_EVERY`)

Per-address failures are logged and counted. Cache / progress save failures
abort the batch and propagate.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Union

from .cache import ResultCache
from .config import EnrichmentConfig, default_cache_path, default_progress_path
from .enrichment import EnrichmentContext, GeoEnricher, RdapEnricher
from .errors import CacheSaveError, NoRegistryResponded, ProgressSaveError
from .http_client import HttpClient
from .models import AddressRecord, new_record
from .progress import ProgressStore, ProgressTracker
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

SAVE_EVERY = 10

ENRICHED = "enriched"
FROM_CACHE = "from_cache"
FAILED = "failed"


class BatchControl:
    """Cooperative cancel / pause switch shared with the workers.

    In-flight items always finish; cancel and pause take effect between items.
    """

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._running = threading.Event()
        self._running.set()

    def cancel(self) -> None:
        self._cancelled.set()
        self._running.set()  # release paused workers so they can exit

    def pause(self) -> None:
        self._running.clear()

    def resume(self) -> None:
        self._running.set()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def is_paused(self) -> bool:
        return not self._running.is_set()

    def wait_if_paused(self) -> bool:
        """Block while paused. Returns False when the batch was cancelled."""
        self._running.wait()
        return not self._cancelled.is_set()


@dataclass
class BatchResult:
    records: list[AddressRecord] = field(default_factory=list)
    enriched: int = 0
    from_cache: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False

    @property
    def total(self) -> int:
        return len(self.records)


class AddressEnricher:
    """Enriches one record at a time; safe to share between worker threads."""

    def __init__(
        self,
        config: EnrichmentConfig,
        cache: ResultCache,
        *,
        client: Optional[HttpClient] = None,
        limiter: Optional[RateLimiter] = None,
        resolve_ptr: bool = True,
    ):
        self.config = config
        self.cache = cache
        self.limiter = limiter or RateLimiter(config.throttle_seconds)
        self.ctx = EnrichmentContext(
            client=client or HttpClient(timeout=config.http_timeout_seconds),
            resolve_ptr=resolve_ptr,
        )
        self.rdap = RdapEnricher(config.registries)
        self.geo = GeoEnricher(config.geo_endpoint)

    def enrich(self, record: AddressRecord) -> str:
        """Fill record in place. Returns ENRICHED, FROM_CACHE or FAILED.

        FAILED means no registry answered; geolocation fields may still be set.
        """
        address = record.ip_or_cidr
        _, hit = self.cache.lookup(address, record)
        if hit:
            logger.debug("Cache hit for %s", address)
            return FROM_CACHE

        self.limiter.wait()

        outcome = ENRICHED
        try:
            record.merge(self.rdap.enrich(record, self.ctx))
        except NoRegistryResponded as e:
            logger.warning("%s", e)
            outcome = FAILED

        record.merge(self.geo.enrich(record, self.ctx))

        if record.has_enrichment():
            self.cache.update_and_save(address, record)
        return outcome


def _as_records(addresses: Iterable[Union[str, AddressRecord]]) -> list[AddressRecord]:
    out: list[AddressRecord] = []
    for i, item in enumerate(addresses):
        out.append(item if isinstance(item, AddressRecord) else new_record(item, index=i))
    return out


def _open_cache(config: EnrichmentConfig, cache: Optional[ResultCache], cache_path: Optional[str]) -> ResultCache:
    if cache is not None:
        return cache
    cache = ResultCache(cache_path or default_cache_path(), config.cache_ttl_hours)
    cache.load()
    return cache


def enrich_one(
    address: Union[str, AddressRecord],
    config: EnrichmentConfig,
    *,
    cache: Optional[ResultCache] = None,
    client: Optional[HttpClient] = None,
    cache_path: Optional[str] = None,
    resolve_ptr: bool = True,
) -> AddressRecord:
    """Enrich a single address synchronously (cache used, no progress tracking)."""
    record = address if isinstance(address, AddressRecord) else new_record(address, index=0)
    enricher = AddressEnricher(
        config,
        _open_cache(config, cache, cache_path),
        client=client,
        limiter=RateLimiter(0),
        resolve_ptr=resolve_ptr,
    )
    enricher.enrich(record)
    return record


def _start_tracker(
    store: ProgressStore, keys: Sequence[str], config: EnrichmentConfig, resume: bool
) -> ProgressTracker:
    tracker = store.load()
    if resume and not tracker.completed and tracker.total_records > 0 and tracker.matches(keys):
        logger.info(
            "Resuming batch: %d/%d addresses already processed",
            tracker.processed_records,
            tracker.total_records,
        )
        tracker.workers = config.parallelism
        tracker.throttle = config.throttle_seconds
        return tracker

    store.clear()
    return ProgressTracker(
        total_records=len(set(keys)),
        workers=config.parallelism,
        throttle=config.throttle_seconds,
    )


def enrich_batch(
    addresses: Iterable[Union[str, AddressRecord]],
    config: EnrichmentConfig,
    control: Optional[BatchControl] = None,
    *,
    resume: bool = True,
    cache: Optional[ResultCache] = None,
    progress_store: Optional[ProgressStore] = None,
    client: Optional[HttpClient] = None,
    limiter: Optional[RateLimiter] = None,
    cache_path: Optional[str] = None,
    progress_path: Optional[str] = None,
    resolve_ptr: bool = True,
) -> BatchResult:
    """Enrich a batch of addresses, resuming an interrupted run when possible.

    Records come back in input order. Ctrl-C (KeyboardInterrupt) is treated
    as a cancel: in-flight items finish and progress is kept for resume.
    """
    control = control or BatchControl()
    records = _as_records(addresses)
    keys = [r.ip_or_cidr for r in records]
    result = BatchResult(records=records)

    cache = _open_cache(config, cache, cache_path)
    store = progress_store or ProgressStore(progress_path or default_progress_path())
    tracker = _start_tracker(store, keys, config, resume)
    enricher = AddressEnricher(config, cache, client=client, limiter=limiter, resolve_ptr=resolve_ptr)

    pending: list[tuple[int, AddressRecord]] = []
    for i, record in enumerate(records):
        if tracker.is_processed(record.ip_or_cidr):
            cache.lookup(record.ip_or_cidr, record)
            result.skipped += 1
        else:
            pending.append((i, record))

    logger.info(
        "Enriching %d addresses (%d already done, %d workers, throttle %.2fs)",
        len(pending),
        result.skipped,
        config.parallelism,
        config.throttle_seconds,
    )

    counts_lock = threading.Lock()
    abort = threading.Event()

    def stopped() -> bool:
        return control.is_cancelled() or abort.is_set()

    def process(index: int, record: AddressRecord) -> None:
        try:
            outcome = enricher.enrich(record)
        except (CacheSaveError, ProgressSaveError):
            raise
        except Exception as e:  # noqa: BLE001
            logger.warning("Enrichment failed for %s: %s", record.ip_or_cidr, e)
            outcome = FAILED

        with counts_lock:
            if outcome == ENRICHED:
                result.enriched += 1
            elif outcome == FROM_CACHE:
                result.from_cache += 1
            else:
                result.failed += 1

        done = tracker.record_processed(record.ip_or_cidr, index)
        if done % SAVE_EVERY == 0:
            store.save(tracker)

    def run_sequential() -> None:
        for index, record in pending:
            if stopped() or not control.wait_if_paused():
                break
            process(index, record)

    def run_parallel() -> None:
        work: queue.Queue[tuple[int, AddressRecord]] = queue.Queue()
        for item in pending:
            work.put(item)

        def worker() -> None:
            while not stopped():
                if not control.wait_if_paused():
                    return
                try:
                    index, record = work.get_nowait()
                except queue.Empty:
                    return
                try:
                    process(index, record)
                except BaseException:
                    abort.set()
                    raise

        with ThreadPoolExecutor(max_workers=config.parallelism) as executor:
            futures = [executor.submit(worker) for _ in range(config.parallelism)]
            try:
                for fut in futures:
                    fut.result()
            except KeyboardInterrupt:
                control.cancel()
                raise

    try:
        if config.parallelism <= 1:
            run_sequential()
        else:
            run_parallel()
    except KeyboardInterrupt:
        logger.warning("Interrupted; stopping after in-flight addresses")
        control.cancel()
    except (CacheSaveError, ProgressSaveError) as e:
        logger.error("Batch aborted: %s", e)
        raise

    result.cancelled = control.is_cancelled()
    store.save(tracker)
    if not result.cancelled:
        tracker.mark_completed()
        store.save(tracker)
        store.clear()

    logger.info(
        "Batch %s: %d enriched, %d from cache, %d failed, %d skipped",
        "cancelled" if result.cancelled else "finished",
        result.enriched,
        result.from_cache,
        result.failed,
        result.skipped,
    )
    return result
