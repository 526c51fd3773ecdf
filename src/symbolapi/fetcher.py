from __future__ import annotations

import logging
import time
from typing import Sequence

import httpx

from .errors import DecodeError, FetchError
from .models import ModuleKey
from .store.base import SymbolCache

__all__ = ["SymbolFetcher", "symbol_url"]

_LOGGER = logging.getLogger(__name__)


def symbol_url(base_url: str, key: ModuleKey) -> str:
    name, debug_id, symbol_file = key.relative_parts()
    return f"{base_url.rstrip('/')}/{name}/{debug_id}/{symbol_file}"


class SymbolFetcher:
    """
    Cache-or-remote access to raw symbol files.

    A cached file is returned as-is without touching the network. Otherwise
    each base URL is tried in order; a 404 moves on to the next one, any other
    failure stops the fetch. Downloads are persisted before being returned.
    """

    def __init__(
        self,
        cache: SymbolCache,
        symbol_urls: Sequence[str],
        *,
        timeout_s: float = 10.0,
        max_bytes: int = 256 * 1024 * 1024,
        client: httpx.Client | None = None,
    ) -> None:
        if not symbol_urls:
            raise ValueError("at least one symbol url is required")
        self._cache = cache
        self._symbol_urls = tuple(symbol_urls)
        self._timeout_s = timeout_s
        self._max_bytes = max_bytes
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout_s, follow_redirects=True)

    def fetch(self, key: ModuleKey) -> bytes:
        if self._cache.exists(key):
            _LOGGER.debug("symbol_fetch.cache_hit key=%s", key)
            return self._cache.read(key)
        with self._cache.lock(key):
            # another task may have finished the download while we waited
            if self._cache.exists(key):
                _LOGGER.debug("symbol_fetch.cache_hit key=%s", key)
                return self._cache.read(key)
            data = self._download(key)
            self._cache.write(key, data)
            return data

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _download(self, key: ModuleKey) -> bytes:
        for base_url in self._symbol_urls:
            data = self._get(symbol_url(base_url, key), key)
            if data is not None:
                return data
        raise FetchError(f"symbol file not found: {key}", module=str(key), status_code=404)

    def _get(self, url: str, key: ModuleKey) -> bytes | None:
        start = time.perf_counter()
        deadline = start + self._timeout_s
        try:
            _LOGGER.info("symbol_fetch.start url=%s timeout_s=%.3f", url, self._timeout_s)
            with self._client.stream("GET", url, timeout=self._timeout_s) as resp:
                if resp.status_code == 404:
                    _LOGGER.info("symbol_fetch.not_found url=%s", url)
                    return None
                if resp.status_code >= 400:
                    raise FetchError(
                        f"symbol fetch failed: {url} status={resp.status_code}",
                        module=str(key),
                        status_code=resp.status_code,
                    )
                body = bytearray()
                # size cap applies to decoded bytes
                for chunk in resp.iter_bytes():
                    body.extend(chunk)
                    if len(body) > self._max_bytes:
                        raise FetchError(
                            f"symbol file exceeds {self._max_bytes} bytes: {url}",
                            module=str(key),
                        )
                    if time.perf_counter() > deadline:
                        elapsed_ms = int((time.perf_counter() - start) * 1000)
                        _LOGGER.warning(
                            "symbol_fetch.deadline url=%s elapsed_ms=%d", url, elapsed_ms
                        )
                        raise FetchError(
                            f"symbol fetch exceeded deadline: {url}", module=str(key)
                        )
                encoding = resp.headers.get("content-encoding", "")
        except httpx.TimeoutException as exc:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            _LOGGER.warning("symbol_fetch.timeout url=%s elapsed_ms=%d", url, elapsed_ms)
            raise FetchError(f"symbol fetch timed out: {url}", module=str(key)) from exc
        except httpx.DecodingError as exc:
            raise DecodeError(
                f"body could not be decoded: {url}: {exc}", module=str(key)
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"symbol fetch error: {url}: {exc}", module=str(key)) from exc
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _LOGGER.info(
            "symbol_fetch.done url=%s bytes=%d encoding=%s elapsed_ms=%d",
            url,
            len(body),
            encoding or "identity",
            elapsed_ms,
        )
        return bytes(body)
