"""
Breakpad text symbol files as address lookup tables.

Only the records needed to name a function are read:

    MODULE <os> <arch> <debug_id> <debug_file>
    FUNC [m] <address> <size> <parameter_size> <name>
    PUBLIC [m] <address> <parameter_size> <name>

Addresses and sizes are hex. Every other record type (FILE, STACK, INFO,
INLINE, line records) is skipped.
"""
from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import Callable, Protocol

from .errors import SymbolParseError

__all__ = ["SymbolLookup", "SymbolTable", "SymbolTableProvider"]


class SymbolLookup(Protocol):
    def lookup(self, address: int) -> str | None:
        ...


SymbolTableProvider = Callable[[bytes], SymbolLookup]


@dataclass(frozen=True)
class _Func:
    start: int
    end: int
    name: str


class SymbolTable:
    def __init__(self, funcs: list[_Func], publics: dict[int, str]) -> None:
        self._funcs = sorted(funcs, key=lambda f: f.start)
        self._func_starts = [f.start for f in self._funcs]
        # running max of FUNC ends, so overlapping ranges can be walked back
        self._max_ends: list[int] = []
        max_end = 0
        for func in self._funcs:
            max_end = max(max_end, func.end)
            self._max_ends.append(max_end)
        self._public_addrs = sorted(publics)
        self._public_names = [publics[a] for a in self._public_addrs]

    def __len__(self) -> int:
        return len(self._funcs) + len(self._public_addrs)

    @classmethod
    def from_bytes(cls, data: bytes) -> "SymbolTable":
        # undecodable bytes become U+FFFD
        text = data.decode("utf-8", errors="replace")
        lines = text.splitlines()
        if not lines or not lines[0].startswith("MODULE "):
            raise SymbolParseError("symbol file must start with a MODULE record")

        funcs: list[_Func] = []
        publics: dict[int, str] = {}
        for line_number, line in enumerate(lines[1:], start=2):
            if line.startswith("FUNC "):
                funcs.append(_parse_func(line, line_number))
            elif line.startswith("PUBLIC "):
                address, name = _parse_public(line, line_number)
                publics.setdefault(address, name)
        return cls(funcs, publics)

    def lookup(self, address: int) -> str | None:
        idx = bisect_right(self._func_starts, address) - 1
        while idx >= 0 and address < self._max_ends[idx]:
            if address < self._funcs[idx].end:
                return self._funcs[idx].name
            idx -= 1

        idx = bisect_right(self._public_addrs, address) - 1
        if idx < 0:
            return None
        public_addr = self._public_addrs[idx]
        bound = self._public_addrs[idx + 1] if idx + 1 < len(self._public_addrs) else None
        next_func = bisect_right(self._func_starts, public_addr)
        if next_func < len(self._func_starts):
            func_start = self._func_starts[next_func]
            bound = func_start if bound is None else min(bound, func_start)
        if bound is not None and address >= bound:
            return None
        return self._public_names[idx]


def _split_record(line: str, fields: int) -> list[str]:
    record, _, rest = line.partition(" ")
    rest = rest.lstrip()
    # optional "m" flag marks functions folded into another symbol
    if rest.startswith("m "):
        rest = rest[2:].lstrip()
    return [record] + rest.split(None, fields - 1)


def _parse_func(line: str, line_number: int) -> _Func:
    # FUNC [m] address size parameter_size name
    parts = _split_record(line, 4)
    if len(parts) < 5:
        raise SymbolParseError(f"FUNC line {line_number} has too few fields")
    try:
        start = int(parts[1], 16)
        size = int(parts[2], 16)
    except ValueError as exc:
        raise SymbolParseError(f"FUNC line {line_number} has a bad address") from exc
    return _Func(start=start, end=start + max(size, 1), name=parts[4].strip())


def _parse_public(line: str, line_number: int) -> tuple[int, str]:
    # PUBLIC [m] address parameter_size name
    parts = _split_record(line, 3)
    if len(parts) < 4:
        raise SymbolParseError(f"PUBLIC line {line_number} has too few fields")
    try:
        address = int(parts[1], 16)
    except ValueError as exc:
        raise SymbolParseError(f"PUBLIC line {line_number} has a bad address") from exc
    return address, parts[3].strip()
