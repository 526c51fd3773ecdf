"""
Service configuration loader for symbolapi.

Loads symbolapi.json, applies environment overrides, computes config_digest.
Config is loaded once at startup and immutable during runtime.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

from .digest import digest_ref


__all__ = [
    "SymbolApiConfig",
    "load_config",
    "get_config",
    "reset_config_cache",
    "default_max_workers",
]

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "symbolapi.json"
DEFAULT_SYMBOL_URL = "https://s3-us-west-2.amazonaws.com/org.mozilla.crash-stats.symbols-public/v1"
DEFAULT_CACHE_DIR = "testdata/symbols"
_CACHE_BACKENDS = ("filesystem", "memory")


@dataclass(frozen=True)
class SymbolApiConfig:
    """Immutable service configuration."""

    # Remote symbol store base URLs, tried in order
    symbol_urls: tuple[str, ...]

    # Local symbol cache
    cache_backend: str
    cache_dir: Path

    # Outbound fetch limits
    fetch_timeout_ms: int
    max_symbol_bytes: int

    # Upper bound on concurrent module resolutions
    max_workers: int

    schema_version: str
    config_digest: str

    _raw: Mapping[str, Any]

    @property
    def fetch_timeout_s(self) -> float:
        return self.fetch_timeout_ms / 1000.0


def load_config(path: Path | None = None) -> SymbolApiConfig:
    """
    Load configuration from a JSON file.

    Args:
        path: Path to symbolapi.json. Defaults to SYMBOLAPI_CONFIG or
            config/symbolapi.json.

    Returns:
        Immutable SymbolApiConfig with computed digest. When no path was
        requested and the default file is absent, built-in defaults are used.

    Raises:
        FileNotFoundError: If an explicitly requested file doesn't exist.
        ValueError: If config is invalid.
    """
    config_path, explicit = (path, True) if path is not None else _resolve_config_path()

    if not config_path.exists():
        if explicit:
            raise FileNotFoundError(f"symbolapi config not found: {config_path}")
        return _parse_config({"schema_version": "1"})

    with open(config_path, "r", encoding="utf-8") as f:
        raw = json.load(f)

    if not isinstance(raw, Mapping):
        raise ValueError("config must be an object")
    return _parse_config(raw)


def _resolve_config_path() -> tuple[Path, bool]:
    env_path = os.environ.get("SYMBOLAPI_CONFIG")
    if env_path:
        return Path(env_path), True
    return DEFAULT_CONFIG_PATH, False


def default_max_workers() -> int:
    return min(32, (os.cpu_count() or 1) + 4)


def _parse_config(raw: Mapping[str, Any]) -> SymbolApiConfig:
    schema_version = raw.get("schema_version")
    if schema_version != "1":
        raise ValueError(f"Unsupported schema_version: {schema_version}")

    symbol_urls = raw.get("symbol_urls", [DEFAULT_SYMBOL_URL])
    if not isinstance(symbol_urls, list) or not all(isinstance(u, str) for u in symbol_urls):
        raise ValueError("symbol_urls must be list[str]")

    cache_cfg = raw.get("cache", {})
    if not isinstance(cache_cfg, Mapping):
        raise ValueError("cache must be an object")
    cache_backend = cache_cfg.get("backend", "filesystem")
    if cache_backend not in _CACHE_BACKENDS:
        raise ValueError("cache.backend must be filesystem or memory")
    cache_dir = cache_cfg.get("dir", DEFAULT_CACHE_DIR)
    if not isinstance(cache_dir, str) or not cache_dir.strip():
        raise ValueError("cache.dir must be a non-empty string")

    fetch_cfg = raw.get("fetch", {})
    if not isinstance(fetch_cfg, Mapping):
        raise ValueError("fetch must be an object")
    fetch_timeout_ms = fetch_cfg.get("timeout_ms", 10000)
    if not isinstance(fetch_timeout_ms, int) or fetch_timeout_ms < 100:
        raise ValueError("fetch.timeout_ms must be int >= 100")
    max_bytes = fetch_cfg.get("max_bytes", 256 * 1024 * 1024)
    if not isinstance(max_bytes, int) or max_bytes < 1024:
        raise ValueError("fetch.max_bytes must be int >= 1024")

    resolver_cfg = raw.get("resolver", {})
    if not isinstance(resolver_cfg, Mapping):
        raise ValueError("resolver must be an object")
    max_workers = resolver_cfg.get("max_workers", default_max_workers())
    if not isinstance(max_workers, int) or max_workers < 1:
        raise ValueError("resolver.max_workers must be a positive integer")

    # Env overrides (explicit)
    def _env_int(name: str) -> int | None:
        raw_val = os.getenv(name)
        if raw_val is None:
            return None
        try:
            return int(raw_val.strip())
        except ValueError:
            return None

    env_urls = os.getenv("SYMBOLAPI_SYMBOL_URLS")
    if env_urls is not None:
        items = [u.strip() for u in env_urls.split(",") if u.strip()]
        if items:
            symbol_urls = items
    env_dir = os.getenv("SYMBOLAPI_CACHE_DIR")
    if env_dir is not None and env_dir.strip():
        cache_dir = env_dir.strip()
    env_backend = os.getenv("SYMBOLAPI_CACHE_BACKEND")
    if env_backend is not None and env_backend.strip().lower() in _CACHE_BACKENDS:
        cache_backend = env_backend.strip().lower()
    env_timeout = _env_int("SYMBOLAPI_FETCH_TIMEOUT_MS")
    if env_timeout is not None and env_timeout >= 100:
        fetch_timeout_ms = env_timeout
    env_max = _env_int("SYMBOLAPI_MAX_SYMBOL_BYTES")
    if env_max is not None and env_max >= 1024:
        max_bytes = env_max
    env_workers = _env_int("SYMBOLAPI_MAX_WORKERS")
    if env_workers is not None and env_workers >= 1:
        max_workers = env_workers

    urls = tuple(u.strip().rstrip("/") for u in symbol_urls if u.strip())
    if not urls:
        raise ValueError("symbol_urls must name at least one URL")
    for url in urls:
        if urlparse(url).scheme not in ("http", "https"):
            raise ValueError(f"symbol url must be http(s): {url}")

    return SymbolApiConfig(
        symbol_urls=urls,
        cache_backend=cache_backend,
        cache_dir=Path(cache_dir),
        fetch_timeout_ms=fetch_timeout_ms,
        max_symbol_bytes=max_bytes,
        max_workers=max_workers,
        schema_version=str(schema_version),
        config_digest=digest_ref(raw),
        _raw=raw,
    )


@lru_cache(maxsize=1)
def get_config() -> SymbolApiConfig:
    """
    Get cached configuration.

    Loads once at first call, immutable thereafter.
    """
    return load_config()


def reset_config_cache() -> None:
    """Reset config cache. Only for testing."""
    get_config.cache_clear()
