"""
Concurrent symbolication of one request.

Each module in the memory map with addresses to resolve becomes one task on a
bounded thread pool. Results land in a list indexed by module position and are
joined in memory map order, so the response never depends on which task
finished first.
"""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Sequence

from .config import default_max_workers
from .errors import SymbolApiError
from .fetcher import SymbolFetcher
from .models import ModuleKey, ModuleResolutionResult, SymbolRequest, SymbolResponse
from .stack_map import build_stack_map
from .symbols import SymbolTable, SymbolTableProvider
from .wire_contract import NO_MODULE_INDEX, format_address

__all__ = ["SymbolResolver", "resolve_module"]

_LOGGER = logging.getLogger(__name__)


def resolve_module(
    key: ModuleKey,
    addresses: Sequence[int],
    *,
    fetcher: SymbolFetcher,
    provider: SymbolTableProvider,
) -> ModuleResolutionResult:
    """
    Resolve every address of one module.

    A failure to obtain, parse or query the symbol table marks the whole
    module unknown and falls back to hex for each address.
    """
    try:
        table = provider(fetcher.fetch(key))
        symbols: list[str] = []
        known = True
        for address in addresses:
            name = table.lookup(address)
            if name is None:
                symbols.append(format_address(address))
                known = False
            else:
                symbols.append(name)
    except SymbolApiError as exc:
        _LOGGER.warning("module.unresolved key=%s code=%s error=%s", key, exc.code, exc)
        return _unknown_module(key, addresses)
    except Exception:
        _LOGGER.exception("module.failed key=%s", key)
        return _unknown_module(key, addresses)
    return ModuleResolutionResult(
        module_name=key.module_name,
        symbols=tuple(symbols),
        known_module=known,
    )


def _unknown_module(key: ModuleKey, addresses: Sequence[int]) -> ModuleResolutionResult:
    return ModuleResolutionResult(
        module_name=key.module_name,
        symbols=tuple(format_address(a) for a in addresses),
        known_module=False,
    )


class SymbolResolver:
    def __init__(
        self,
        fetcher: SymbolFetcher,
        *,
        provider: SymbolTableProvider = SymbolTable.from_bytes,
        max_workers: int | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._provider = provider
        self._max_workers = max_workers or default_max_workers()
        self._pool = ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="symbolapi-resolve",
        )

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def symbolicate(self, request: SymbolRequest) -> SymbolResponse:
        if len(request.stacks) > 1:
            _LOGGER.warning("request.extra_stacks_ignored count=%d", len(request.stacks) - 1)
        stack_map = build_stack_map(request.stacks)

        futures: list[Future[ModuleResolutionResult] | None] = []
        for index, key in enumerate(request.memory_map):
            addresses = stack_map.get(index)
            if not addresses:
                futures.append(None)
                continue
            futures.append(
                self._pool.submit(
                    resolve_module,
                    key,
                    tuple(addresses),
                    fetcher=self._fetcher,
                    provider=self._provider,
                )
            )

        results: list[ModuleResolutionResult] = [
            ModuleResolutionResult(module_name=key.module_name, symbols=(), known_module=True)
            for key in request.memory_map
        ]
        for index, future in enumerate(futures):
            if future is None:
                continue
            results[index] = future.result()

        row = [format_address(a) for a in stack_map.get(NO_MODULE_INDEX, [])]
        for result in results:
            row.extend(f"{symbol} (in {result.module_name})" for symbol in result.symbols)
        return {
            "symbolicatedStacks": [row],
            "knownModules": [result.known_module for result in results],
        }

    def close(self) -> None:
        self._pool.shutdown(wait=True)
