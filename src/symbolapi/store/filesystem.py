from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import ContextManager

from ..errors import CacheIOError, CacheMiss
from ..models import ModuleKey
from .locks import KeyLocks

_LOGGER = logging.getLogger(__name__)


class SymbolCacheFS:
    """
    Symbol files on disk under ``{root}/{name}/{id}/{symbol_file}``.

    A file that exists is complete: writes go to a temp file in the target
    directory and are moved into place with ``os.replace``.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._key_locks = KeyLocks()

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: ModuleKey) -> Path:
        return self._root.joinpath(*key.relative_parts())

    def exists(self, key: ModuleKey) -> bool:
        return self.path_for(key).is_file()

    def read(self, key: ModuleKey) -> bytes:
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise CacheMiss(f"symbol file not cached: {key}", module=str(key)) from exc
        except OSError as exc:
            raise CacheIOError(f"cannot read {path}: {exc}", module=str(key)) from exc

    def write(self, key: ModuleKey, data: bytes) -> None:
        path = self.path_for(key)
        tmp_name: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as exc:
            raise CacheIOError(f"cannot write {path}: {exc}", module=str(key)) from exc
        finally:
            if tmp_name is not None:
                try:
                    Path(tmp_name).unlink(missing_ok=True)
                except OSError:
                    _LOGGER.warning("cache.tmp_cleanup_failed path=%s", tmp_name)
        _LOGGER.info("cache.write key=%s bytes=%d", key, len(data))

    def lock(self, key: ModuleKey) -> ContextManager[None]:
        return self._key_locks.hold(key)

    def close(self) -> None:
        return None
