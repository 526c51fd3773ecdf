from __future__ import annotations

from ..config import SymbolApiConfig
from .base import SymbolCache
from .filesystem import SymbolCacheFS
from .memory import SymbolCacheMemory


def create_cache(config: SymbolApiConfig) -> SymbolCache:
    backend = config.cache_backend.strip().lower()
    if backend == "filesystem" or backend == "":
        return SymbolCacheFS(config.cache_dir)
    if backend == "memory":
        return SymbolCacheMemory()
    raise ValueError(f"unsupported cache backend: {backend}")
