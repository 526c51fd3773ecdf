from __future__ import annotations

from typing import ContextManager, Protocol

from ..models import ModuleKey


class SymbolCache(Protocol):
    def exists(self, key: ModuleKey) -> bool:
        ...

    def read(self, key: ModuleKey) -> bytes:
        ...

    def write(self, key: ModuleKey, data: bytes) -> None:
        ...

    def lock(self, key: ModuleKey) -> ContextManager[None]:
        ...

    def close(self) -> None:
        ...
