"""scanner-enrich - internet-scanner address extraction and RDAP / geolocation enrichment."""

from .batch import BatchControl, BatchResult, enrich_batch, enrich_one
from .config import AppConfig, EnrichmentConfig, load_config, save_config
from .errors import (
    CacheSaveError,
    ConfigError,
    DirectoryNotFound,
    NoRegistryResponded,
    ProgressSaveError,
    RetriesExhausted,
    ScannerEnrichError,
)
from .models import AddressRecord, SourceInfo
from .output import export_csv, export_json, load_csv, load_json
from .parser import build_records, extract_addresses, map_sources
from .progress import ProgressTracker, clear_progress, load_progress, save_progress
from .query import filter_records, summarize

__version__ = "1.0.0"
__all__ = [
    "AddressRecord",
    "SourceInfo",
    "AppConfig",
    "EnrichmentConfig",
    "load_config",
    "save_config",
    "extract_addresses",
    "map_sources",
    "build_records",
    "enrich_batch",
    "enrich_one",
    "BatchControl",
    "BatchResult",
    "ProgressTracker",
    "load_progress",
    "save_progress",
    "clear_progress",
    "export_csv",
    "export_json",
    "load_csv",
    "load_json",
    "summarize",
    "filter_records",
    "ScannerEnrichError",
    "DirectoryNotFound",
    "ConfigError",
    "RetriesExhausted",
    "NoRegistryResponded",
    "CacheSaveError",
    "ProgressSaveError",
]
