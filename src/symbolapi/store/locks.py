from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Iterator

from ..models import ModuleKey


class KeyLocks:
    """One mutex per key, created on demand. Distinct keys never contend."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[ModuleKey, Lock] = {}

    def get(self, key: ModuleKey) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: ModuleKey) -> Iterator[None]:
        with self.get(key):
            yield
