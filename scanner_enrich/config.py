"""Configuration: defaults, JSON config file, `.env` and environment overrides.

Precedence (lowest first):

1. built-in defaults
2. JSON config file (`./config/config.json` unless a path is given)
3. `SCANNER_ENRICH_*` environment variables (a `.env` file in the current
   directory or home directory is loaded first, without overriding variables
   already set)

The JSON file may use the flat layout written by `save_config`, or the older
layout with a `"database"` section (`local_path`, `results_dir`,
`api_throttle`, `parallelism`, `registries`, `cache_ttl_hours`).
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from .cache import DEFAULT_TTL_HOURS
from .enrichment.geo import DEFAULT_GEO_ENDPOINT
from .enrichment.rdap import REGISTRY_ENDPOINTS
from .errors import ConfigError
from .http_client import DEFAULT_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join("config", "config.json")
DEFAULT_RULES_DIR = "internet-scanners"
DEFAULT_RESULTS_DIR = "results"
DEFAULT_THROTTLE_SECONDS = 1.0
CACHE_FILE_NAME = "rdap_cache.json"
PROGRESS_FILE_NAME = "rdap_progress.json"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

ENV_PREFIX = "SCANNER_ENRICH_"


def default_data_dir() -> str:
    base = os.getenv("XDG_CACHE_HOME") or os.path.expanduser("~/.cache")
    return os.path.join(base, "scanner-enrich")


def default_cache_path() -> str:
    return os.path.join(default_data_dir(), CACHE_FILE_NAME)


def default_progress_path() -> str:
    return os.path.join(default_data_dir(), PROGRESS_FILE_NAME)


@dataclass(frozen=True)
class EnrichmentConfig:
    registries: tuple[str, ...] = ()
    throttle_seconds: float = DEFAULT_THROTTLE_SECONDS
    parallelism: int = 1
    cache_ttl_hours: int = DEFAULT_TTL_HOURS
    http_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    geo_endpoint: str = DEFAULT_GEO_ENDPOINT

    def __post_init__(self) -> None:
        object.__setattr__(self, "registries", tuple(r.strip().lower() for r in self.registries if r.strip()))
        unknown = [r for r in self.registries if r not in REGISTRY_ENDPOINTS]
        if unknown:
            raise ConfigError(
                f"unknown registries: {', '.join(unknown)} (known: {', '.join(REGISTRY_ENDPOINTS)})"
            )
        if self.throttle_seconds < 0:
            raise ConfigError("throttle_seconds must be >= 0")
        if self.parallelism < 1:
            raise ConfigError("parallelism must be >= 1")
        if self.http_timeout_seconds <= 0:
            raise ConfigError("http_timeout_seconds must be > 0")
        if not self.geo_endpoint.startswith(("http://", "https://")):
            raise ConfigError(f"geo_endpoint must be an http(s) URL: {self.geo_endpoint!r}")

    @property
    def effective_registries(self) -> tuple[str, ...]:
        return self.registries or tuple(REGISTRY_ENDPOINTS)


@dataclass(frozen=True)
class AppConfig:
    rules_dir: str = DEFAULT_RULES_DIR
    results_dir: str = DEFAULT_RESULTS_DIR
    data_dir: str = field(default_factory=default_data_dir)
    log_level: str = "INFO"
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)

    def __post_init__(self) -> None:
        level = self.log_level.strip().upper()
        if level not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        object.__setattr__(self, "log_level", level)

    @property
    def cache_path(self) -> str:
        return os.path.join(self.data_dir, CACHE_FILE_NAME)

    @property
    def progress_path(self) -> str:
        return os.path.join(self.data_dir, PROGRESS_FILE_NAME)

    def to_dict(self) -> dict[str, Any]:
        e = self.enrichment
        return {
            "rules_dir": self.rules_dir,
            "results_dir": self.results_dir,
            "data_dir": self.data_dir,
            "log_level": self.log_level,
            "enrichment": {
                "registries": list(e.registries),
                "throttle_seconds": e.throttle_seconds,
                "parallelism": e.parallelism,
                "cache_ttl_hours": e.cache_ttl_hours,
                "http_timeout_seconds": e.http_timeout_seconds,
                "geo_endpoint": e.geo_endpoint,
            },
        }


def _load_env_files() -> None:
    # Current dir first, then home dir; existing variables win.
    for env_path in [Path(".env"), Path.home() / ".scanner-enrich.env"]:
        if env_path.exists():
            load_dotenv(env_path)
            break


def _split_list(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(p.strip() for p in value.split(",") if p.strip())
    if isinstance(value, (list, tuple)):
        return tuple(str(p).strip() for p in value if str(p).strip())
    raise ConfigError(f"expected a list or comma-separated string, got {type(value).__name__}")


def _coerce(name: str, value: Any, kind: type) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {name}: {value!r}") from e


def _read_file(path: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except ValueError as e:
        raise ConfigError(f"invalid JSON in config file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"config file {path} must contain a JSON object")
    return raw


def _from_file(raw: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return (app kwargs, enrichment kwargs) found in a config file."""
    app: dict[str, Any] = {}
    enr: dict[str, Any] = {}

    legacy = raw.get("database")
    if isinstance(legacy, Mapping):
        if legacy.get("local_path"):
            app["rules_dir"] = str(legacy["local_path"])
        if legacy.get("results_dir"):
            app["results_dir"] = str(legacy["results_dir"])
        if "api_throttle" in legacy:
            enr["throttle_seconds"] = _coerce("api_throttle", legacy["api_throttle"], float)
        if "parallelism" in legacy:
            enr["parallelism"] = _coerce("parallelism", legacy["parallelism"], int)
        if "registries" in legacy:
            enr["registries"] = _split_list(legacy["registries"])
        if "cache_ttl_hours" in legacy:
            enr["cache_ttl_hours"] = _coerce("cache_ttl_hours", legacy["cache_ttl_hours"], int)

    for key in ("rules_dir", "results_dir", "data_dir", "log_level"):
        if raw.get(key):
            app[key] = str(raw[key])

    section = raw.get("enrichment")
    if isinstance(section, Mapping):
        if "registries" in section:
            enr["registries"] = _split_list(section["registries"])
        for key, kind in (
            ("throttle_seconds", float),
            ("parallelism", int),
            ("cache_ttl_hours", int),
            ("http_timeout_seconds", float),
        ):
            if key in section:
                enr[key] = _coerce(key, section[key], kind)
        if section.get("geo_endpoint"):
            enr["geo_endpoint"] = str(section["geo_endpoint"])

    return app, enr


def _from_env(env: Mapping[str, str]) -> tuple[dict[str, Any], dict[str, Any]]:
    app: dict[str, Any] = {}
    enr: dict[str, Any] = {}

    def get(name: str) -> Optional[str]:
        v = env.get(ENV_PREFIX + name)
        return v.strip() if v and v.strip() else None

    for name, key in (
        ("RULES_DIR", "rules_dir"),
        ("RESULTS_DIR", "results_dir"),
        ("DATA_DIR", "data_dir"),
        ("LOG_LEVEL", "log_level"),
    ):
        v = get(name)
        if v is not None:
            app[key] = v

    for name, key, kind in (
        ("THROTTLE", "throttle_seconds", float),
        ("WORKERS", "parallelism", int),
        ("CACHE_TTL_HOURS", "cache_ttl_hours", int),
        ("HTTP_TIMEOUT", "http_timeout_seconds", float),
    ):
        v = get(name)
        if v is not None:
            enr[key] = _coerce(ENV_PREFIX + name, v, kind)

    v = get("REGISTRIES")
    if v is not None:
        enr["registries"] = _split_list(v)
    return app, enr


def load_config(path: Optional[str] = None, *, env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build the effective configuration.

    An explicit `path` that does not exist raises FileNotFoundError; a missing
    default file is silently skipped. Invalid values raise `ConfigError`.
    `env` replaces the process environment (and skips `.env` loading).
    """
    if env is None:
        _load_env_files()
        env = os.environ

    app: dict[str, Any] = {}
    enr: dict[str, Any] = {}

    resolved = path or DEFAULT_CONFIG_PATH
    if path is not None or os.path.exists(resolved):
        logger.debug("Loading config from %s", resolved)
        file_app, file_enr = _from_file(_read_file(resolved))
        app.update(file_app)
        enr.update(file_enr)

    env_app, env_enr = _from_env(env)
    app.update(env_app)
    enr.update(env_enr)

    return AppConfig(enrichment=EnrichmentConfig(**enr), **app)


def save_config(config: AppConfig, path: str = DEFAULT_CONFIG_PATH) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
        f.write("\n")


def with_overrides(config: EnrichmentConfig, **changes: Any) -> EnrichmentConfig:
    """Copy of config with the non-None changes applied (CLI flags)."""
    return replace(config, **{k: v for k, v in changes.items() if v is not None})
