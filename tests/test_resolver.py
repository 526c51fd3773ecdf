from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from symbol_fixtures import (
    SCENARIO_REQUEST,
    SYMBOL_BASE_URL,
    WNTDLL,
    XUL,
    FakeSymbolStore,
    default_files,
    sym_path,
)
from symbolapi.fetcher import SymbolFetcher
from symbolapi.resolver import SymbolResolver
from symbolapi.store.filesystem import SymbolCacheFS
from symbolapi.store.memory import SymbolCacheMemory
from symbolapi.wire_contract import parse_symbol_request

EXPECTED = {
    "symbolicatedStacks": [
        [
            "XREMain::XRE_mainRun() (in xul.pdb)",
            "KiUserCallbackDispatcher (in wntdll.pdb)",
        ]
    ],
    "knownModules": [True, True],
}


def _resolver(store: FakeSymbolStore, cache=None, **kwargs) -> SymbolResolver:
    fetcher = SymbolFetcher(cache or SymbolCacheMemory(), [SYMBOL_BASE_URL], client=store.client())
    return SymbolResolver(fetcher, max_workers=kwargs.pop("max_workers", 4), **kwargs)


def test_scenario_request() -> None:
    resolver = _resolver(FakeSymbolStore(default_files()))
    try:
        result = resolver.symbolicate(parse_symbol_request(SCENARIO_REQUEST))
    finally:
        resolver.close()
    assert result == EXPECTED


def test_unresolved_address_falls_back_to_hex() -> None:
    body = {
        "stacks": [[[0, 11723767], [0, 0x10], [1, 65802]]],
        "memoryMap": [list(XUL), list(WNTDLL)],
        "version": 4,
    }
    resolver = _resolver(FakeSymbolStore(default_files()))
    try:
        result = resolver.symbolicate(parse_symbol_request(body))
    finally:
        resolver.close()
    assert result["symbolicatedStacks"] == [
        [
            "XREMain::XRE_mainRun() (in xul.pdb)",
            "0x10 (in xul.pdb)",
            "KiUserCallbackDispatcher (in wntdll.pdb)",
        ]
    ]
    assert result["knownModules"] == [False, True]


def test_unknown_stays_sticky_after_later_hits() -> None:
    body = {
        "stacks": [[[0, 0x10], [0, 11723767]]],
        "memoryMap": [list(XUL)],
        "version": 4,
    }
    resolver = _resolver(FakeSymbolStore(default_files()))
    try:
        result = resolver.symbolicate(parse_symbol_request(body))
    finally:
        resolver.close()
    assert result["knownModules"] == [False]


def test_fetch_failure_degrades_only_that_module() -> None:
    store = FakeSymbolStore(default_files(), fail={sym_path(XUL): 503})
    resolver = _resolver(store)
    try:
        result = resolver.symbolicate(parse_symbol_request(SCENARIO_REQUEST))
    finally:
        resolver.close()
    assert result == {
        "symbolicatedStacks": [
            ["0xb2e3f7 (in xul.pdb)", "KiUserCallbackDispatcher (in wntdll.pdb)"]
        ],
        "knownModules": [False, True],
    }


def test_unparsable_symbol_file_degrades_module() -> None:
    files = default_files()
    files[sym_path(WNTDLL)] = b"<html>not a symbol file</html>"
    resolver = _resolver(FakeSymbolStore(files))
    try:
        result = resolver.symbolicate(parse_symbol_request(SCENARIO_REQUEST))
    finally:
        resolver.close()
    assert result["symbolicatedStacks"] == [
        ["XREMain::XRE_mainRun() (in xul.pdb)", "0x1010a (in wntdll.pdb)"]
    ]
    assert result["knownModules"] == [True, False]


def test_provider_crash_degrades_module() -> None:
    def exploding_provider(data: bytes):
        raise RuntimeError("boom")

    resolver = _resolver(FakeSymbolStore(default_files()), provider=exploding_provider)
    try:
        result = resolver.symbolicate(parse_symbol_request(SCENARIO_REQUEST))
    finally:
        resolver.close()
    assert result["knownModules"] == [False, False]
    assert result["symbolicatedStacks"] == [["0xb2e3f7 (in xul.pdb)", "0x1010a (in wntdll.pdb)"]]


def test_lookup_crash_degrades_module() -> None:
    class ExplodingTable:
        def lookup(self, address: int) -> str | None:
            raise RuntimeError("lookup blew up")

    resolver = _resolver(
        FakeSymbolStore(default_files()), provider=lambda data: ExplodingTable()
    )
    try:
        result = resolver.symbolicate(parse_symbol_request(SCENARIO_REQUEST))
    finally:
        resolver.close()
    assert result == {
        "symbolicatedStacks": [["0xb2e3f7 (in xul.pdb)", "0x1010a (in wntdll.pdb)"]],
        "knownModules": [False, False],
    }


def test_no_module_entries_come_first() -> None:
    body = {
        "stacks": [[[0, 11723767], [-1, 0xDEADBEEF], [1, 65802], [-1, 0x10]]],
        "memoryMap": [list(XUL), list(WNTDLL)],
        "version": 4,
    }
    resolver = _resolver(FakeSymbolStore(default_files()))
    try:
        result = resolver.symbolicate(parse_symbol_request(body))
    finally:
        resolver.close()
    assert result["symbolicatedStacks"] == [
        [
            "0xdeadbeef",
            "0x10",
            "XREMain::XRE_mainRun() (in xul.pdb)",
            "KiUserCallbackDispatcher (in wntdll.pdb)",
        ]
    ]
    assert result["knownModules"] == [True, True]


def test_modules_without_addresses_are_known_and_not_fetched() -> None:
    body = {"stacks": [[[1, 65802]]], "memoryMap": [list(XUL), list(WNTDLL)], "version": 4}
    store = FakeSymbolStore(default_files())
    resolver = _resolver(store)
    try:
        result = resolver.symbolicate(parse_symbol_request(body))
    finally:
        resolver.close()
    assert result["knownModules"] == [True, True]
    assert store.calls == [sym_path(WNTDLL)]


def test_empty_request() -> None:
    resolver = _resolver(FakeSymbolStore({}))
    try:
        result = resolver.symbolicate(
            parse_symbol_request({"stacks": [], "memoryMap": [], "version": 4})
        )
    finally:
        resolver.close()
    assert result == {"symbolicatedStacks": [[]], "knownModules": []}


def test_output_independent_of_completion_order() -> None:
    body = {
        "stacks": [[[0, 11723767], [1, 65802], [0, 0xB2F000], [1, 0x10200]]],
        "memoryMap": [list(XUL), list(WNTDLL)],
        "version": 4,
    }
    request = parse_symbol_request(body)
    outputs = []
    for delays in (
        {sym_path(XUL): 0.3},
        {sym_path(WNTDLL): 0.3},
        {},
    ):
        resolver = _resolver(FakeSymbolStore(default_files(), delays=delays))
        try:
            outputs.append(resolver.symbolicate(request))
        finally:
            resolver.close()
    assert outputs[0] == outputs[1] == outputs[2]
    assert outputs[0]["symbolicatedStacks"][0] == [
        "XREMain::XRE_mainRun() (in xul.pdb)",
        "XRE_main (in xul.pdb)",
        "KiUserCallbackDispatcher (in wntdll.pdb)",
        "KiRaiseUserExceptionDispatcher (in wntdll.pdb)",
    ]


def test_modules_resolve_in_parallel() -> None:
    store = FakeSymbolStore(
        default_files(),
        delays={sym_path(XUL): 0.5, sym_path(WNTDLL): 0.5},
    )
    resolver = _resolver(store)
    try:
        start = time.monotonic()
        resolver.symbolicate(parse_symbol_request(SCENARIO_REQUEST))
        elapsed = time.monotonic() - start
    finally:
        resolver.close()
    assert elapsed < 0.9


def test_in_flight_tasks_are_bounded() -> None:
    active = 0
    peak = 0
    lock = threading.Lock()

    class CountingProvider:
        def __call__(self, data: bytes):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with lock:
                active -= 1
            return _NullTable()

    memory_map = [[f"mod{i}.pdb", f"ID{i}"] for i in range(10)]
    files = {f"/v1/mod{i}.pdb/ID{i}/mod{i}.sym": b"MODULE x" for i in range(10)}
    body = {
        "stacks": [[[i, 0x100] for i in range(10)]],
        "memoryMap": memory_map,
        "version": 4,
    }
    resolver = _resolver(FakeSymbolStore(files), provider=CountingProvider(), max_workers=2)
    try:
        result = resolver.symbolicate(parse_symbol_request(body))
    finally:
        resolver.close()
    assert peak <= 2
    assert result["knownModules"] == [False] * 10
    assert len(result["symbolicatedStacks"][0]) == 10


def test_cache_idempotence_across_requests(tmp_path: Path) -> None:
    store = FakeSymbolStore(default_files())
    cache = SymbolCacheFS(tmp_path)
    request = parse_symbol_request(SCENARIO_REQUEST)
    first_resolver = _resolver(store, cache)
    try:
        first = first_resolver.symbolicate(request)
    finally:
        first_resolver.close()
    second_resolver = _resolver(store, SymbolCacheFS(tmp_path))
    try:
        second = second_resolver.symbolicate(request)
    finally:
        second_resolver.close()
    assert first == second == EXPECTED
    assert store.calls_for(sym_path(XUL)) == 1
    assert store.calls_for(sym_path(WNTDLL)) == 1


def test_duplicate_module_entries_fetch_once() -> None:
    body = {
        "stacks": [[[0, 11723767], [1, 0xB2F000]]],
        "memoryMap": [list(XUL), list(XUL)],
        "version": 4,
    }
    store = FakeSymbolStore(default_files(), delays={sym_path(XUL): 0.1})
    resolver = _resolver(store)
    try:
        result = resolver.symbolicate(parse_symbol_request(body))
    finally:
        resolver.close()
    assert store.calls_for(sym_path(XUL)) == 1
    assert result["symbolicatedStacks"] == [
        ["XREMain::XRE_mainRun() (in xul.pdb)", "XRE_main (in xul.pdb)"]
    ]


def test_gzip_and_plain_responses_resolve_identically() -> None:
    request = parse_symbol_request(SCENARIO_REQUEST)
    results = []
    for gzip_encode in (False, True):
        resolver = _resolver(FakeSymbolStore(default_files(), gzip_encode=gzip_encode))
        try:
            results.append(resolver.symbolicate(request))
        finally:
            resolver.close()
    assert results[0] == results[1] == EXPECTED


@pytest.mark.parametrize("extra", [[], [[0, 1]], [[1, 2], [-1, 3]]])
def test_only_first_stack_is_symbolicated(extra) -> None:
    body = dict(SCENARIO_REQUEST, stacks=SCENARIO_REQUEST["stacks"] + [extra])
    resolver = _resolver(FakeSymbolStore(default_files()))
    try:
        result = resolver.symbolicate(parse_symbol_request(body))
    finally:
        resolver.close()
    assert result == EXPECTED


class _NullTable:
    def lookup(self, address: int) -> str | None:
        return None
