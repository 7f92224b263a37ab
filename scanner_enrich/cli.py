#!/usr/bin/env python3
"""
scanner-enrich - CLI entry point
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Optional

from .batch import BatchControl, enrich_batch, enrich_one
from .cache import ResultCache
from .config import AppConfig, load_config, with_overrides
from .errors import ConfigError, ScannerEnrichError
from .models import AddressRecord
from .output import export_csv, export_json, load_csv, load_json, write_csv, write_json
from .parser import build_records, extract_addresses, iter_rule_files, map_sources
from .progress import ProgressStore
from .query import filter_records, summarize

logger = logging.getLogger(__name__)


def _split(value: Optional[str]) -> Optional[tuple[str, ...]]:
    if value is None:
        return None
    return tuple(p.strip() for p in value.split(",") if p.strip())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scanner-enrich",
        description="Extract internet-scanner addresses from rule files and enrich them with RDAP / geolocation data",
    )
    parser.add_argument("--config", "-c", default=None, help="JSON config file (default: ./config/config.json)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (default: from config, INFO)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("extract", help="List unique addresses found in the rule files")
    p.add_argument("--rules-dir", default=None, help="Directory of .nft rule files")
    p.add_argument("--json", "-j", action="store_true", help="Output base records as JSON")

    p = sub.add_parser("enrich", help="Extract, enrich and export all addresses")
    p.add_argument("--rules-dir", default=None, help="Directory of .nft rule files")
    p.add_argument("--input", "-i", default=None, help="Re-enrich a previous CSV/JSON export instead of extracting")
    p.add_argument("--workers", "-w", type=int, default=None, help="Parallel workers (default: from config, 1)")
    p.add_argument("--throttle", type=float, default=None, help="Seconds between outbound lookups (0 disables)")
    p.add_argument("--registries", default=None, help="Comma-separated RDAP registries, in query order")
    p.add_argument("--no-resume", action="store_true", help="Ignore saved progress and start over")
    p.add_argument("--format", choices=["csv", "json"], default="csv", help="Export format (default: csv)")
    p.add_argument("--output", "-o", default=None, help="Output file ('-' for stdout; default: results dir)")

    p = sub.add_parser("lookup", help="Enrich a single address")
    p.add_argument("address")
    p.add_argument("--registries", default=None, help="Comma-separated RDAP registries, in query order")
    p.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    p = sub.add_parser("stats", help="Summarize or search a previous CSV/JSON export")
    p.add_argument("input")
    p.add_argument("--query", "-q", default="", help="Substring of address or scanner name")
    p.add_argument("--country", default=None, help="Country code")
    p.add_argument("--scanner", default=None, help="Scanner name")
    p.add_argument("--risk", default=None, help="Risk level")
    p.add_argument("--json", "-j", action="store_true", help="Output matching records as JSON")

    sub.add_parser("cache-clean", help="Drop expired entries from the result cache")

    p = sub.add_parser("progress", help="Show (or clear) saved batch progress")
    p.add_argument("--clear", action="store_true", help="Delete the progress file")

    return parser


def load_records_file(path: str) -> list[AddressRecord]:
    if path.lower().endswith(".json"):
        return load_json(path)
    return load_csv(path)


def default_output_path(results_dir: str, fmt: str) -> str:
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    return os.path.join(results_dir, f"scanner_enrich_export_{ts}.{fmt}")


def write_records(records: list[AddressRecord], fmt: str, output: str) -> None:
    if output == "-":
        if fmt == "json":
            write_json(records, sys.stdout)
        else:
            write_csv(records, sys.stdout)
        return
    if fmt == "json":
        export_json(records, output)
    else:
        export_csv(records, output)


def cmd_extract(args: argparse.Namespace, config: AppConfig) -> int:
    rules_dir = args.rules_dir or config.rules_dir
    files = list(iter_rule_files(rules_dir))
    addresses = extract_addresses(rules_dir, files=files)
    if args.json:
        records = build_records(addresses, map_sources(rules_dir, files=files))
        print(json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False))
    else:
        for addr in addresses:
            print(addr)
    return 0


def cmd_enrich(args: argparse.Namespace, config: AppConfig) -> int:
    enr = with_overrides(
        config.enrichment,
        parallelism=args.workers,
        throttle_seconds=args.throttle,
        registries=_split(args.registries),
    )

    if args.input:
        records = load_records_file(args.input)
    else:
        rules_dir = args.rules_dir or config.rules_dir
        files = list(iter_rule_files(rules_dir))
        records = build_records(
            extract_addresses(rules_dir, files=files), map_sources(rules_dir, files=files)
        )

    control = BatchControl()
    result = enrich_batch(
        records,
        enr,
        control,
        resume=not args.no_resume,
        cache_path=config.cache_path,
        progress_path=config.progress_path,
    )

    output = args.output or default_output_path(config.results_dir, args.format)
    write_records(result.records, args.format, output)

    print(
        f"{result.total} addresses: {result.enriched} enriched, {result.from_cache} from cache, "
        f"{result.failed} without registry data, {result.skipped} resumed",
        file=sys.stderr,
    )
    if result.cancelled:
        print("Cancelled; run again to resume.", file=sys.stderr)
    if output != "-":
        print(f"Results written to {output}", file=sys.stderr)
    return 0


def print_record(record: AddressRecord) -> None:
    rows = [
        ("Address", record.ip_or_cidr),
        ("Organization", record.organization),
        ("RDAP name", record.rdap_name),
        ("Handle", record.rdap_handle),
        ("CIDR", record.rdap_cidr),
        ("Registry", record.registry),
        ("Country", f"{record.country_name} ({record.country_code})" if record.country_code else ""),
        ("ISP", record.isp),
        ("ASN", f"{record.asn} {record.as_name}".strip()),
        ("Reverse DNS", record.reverse_dns),
        ("Abuse email", record.abuse_email),
        ("Tech email", record.tech_email),
    ]
    for label, value in rows:
        print(f"{label + ':':<14}{value or '-'}")


def cmd_lookup(args: argparse.Namespace, config: AppConfig) -> int:
    enr = with_overrides(config.enrichment, registries=_split(args.registries))
    record = enrich_one(args.address, enr, cache_path=config.cache_path)
    if args.json:
        print(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))
    else:
        print_record(record)
    return 0


def cmd_stats(args: argparse.Namespace, config: AppConfig) -> int:
    records = load_records_file(args.input)
    matched = filter_records(records, args.query, args.country, args.scanner, args.risk)
    if args.json:
        print(json.dumps([r.to_dict() for r in matched], indent=2, ensure_ascii=False))
        return 0

    s = summarize(matched)
    print(f"Records:         {s.total}")
    print(f"Unique IPs:      {s.unique_addresses}")
    print(f"Countries:       {s.unique_countries}")
    print(f"Scanners:        {s.unique_scanners}")
    print(f"High risk:       {s.high_risk}")
    print(f"Enriched:        {s.enriched}")
    for name, count in s.by_scanner.items():
        print(f"  {name or '(unknown)'}: {count}")
    return 0


def cmd_cache_clean(args: argparse.Namespace, config: AppConfig) -> int:
    cache = ResultCache(config.cache_path, config.enrichment.cache_ttl_hours)
    remaining = cache.clean_expired()
    print(f"Cache cleaned: {remaining} entries remaining")
    return 0


def cmd_progress(args: argparse.Namespace, config: AppConfig) -> int:
    store = ProgressStore(config.progress_path)
    if args.clear:
        store.clear()
        print("Progress cleared")
        return 0
    tracker = store.load()
    payload: dict[str, Any] = tracker.to_dict()
    payload.pop("processed_ips")
    print(json.dumps(payload, indent=2))
    return 0


COMMANDS = {
    "extract": cmd_extract,
    "enrich": cmd_enrich,
    "lookup": cmd_lookup,
    "stats": cmd_stats,
    "cache-clean": cmd_cache_clean,
    "progress": cmd_progress,
}


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except (ConfigError, FileNotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        raise SystemExit(2) from e

    logging.basicConfig(
        level=args.log_level or config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        exit_code = COMMANDS[args.command](args, config)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        exit_code = 2
    except (ScannerEnrichError, OSError, ValueError) as e:
        logger.error("%s", e)
        exit_code = 1

    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
