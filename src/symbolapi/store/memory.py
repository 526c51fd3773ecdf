from __future__ import annotations

from threading import Lock
from typing import ContextManager

from ..errors import CacheMiss
from ..models import ModuleKey
from .locks import KeyLocks


class SymbolCacheMemory:
    def __init__(self) -> None:
        self._data: dict[ModuleKey, bytes] = {}
        self._lock = Lock()
        self._key_locks = KeyLocks()

    def exists(self, key: ModuleKey) -> bool:
        with self._lock:
            return key in self._data

    def read(self, key: ModuleKey) -> bytes:
        with self._lock:
            data = self._data.get(key)
        if data is None:
            raise CacheMiss(f"symbol file not cached: {key}", module=str(key))
        return data

    def write(self, key: ModuleKey, data: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(data)

    def lock(self, key: ModuleKey) -> ContextManager[None]:
        return self._key_locks.hold(key)

    def close(self) -> None:
        with self._lock:
            self._data.clear()
