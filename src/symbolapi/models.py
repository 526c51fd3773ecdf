from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, TypedDict

StackMap = Dict[int, List[int]]

DEBUG_FILE_EXTENSION = ".pdb"
SYMBOL_FILE_EXTENSION = ".sym"


@dataclass(frozen=True)
class ModuleKey:
    """Identifies one symbol file: debug file name plus build debug id."""

    module_name: str
    module_id: str

    @property
    def symbol_file_name(self) -> str:
        if self.module_name.endswith(DEBUG_FILE_EXTENSION):
            return self.module_name[: -len(DEBUG_FILE_EXTENSION)] + SYMBOL_FILE_EXTENSION
        return self.module_name + SYMBOL_FILE_EXTENSION

    def relative_parts(self) -> tuple[str, str, str]:
        return (self.module_name, self.module_id, self.symbol_file_name)

    def __str__(self) -> str:
        return f"{self.module_name}/{self.module_id}"


@dataclass(frozen=True)
class SymbolRequest:
    memory_map: tuple[ModuleKey, ...]
    # (module_index, address); module_index -1 means no known module
    stacks: tuple[tuple[tuple[int, int], ...], ...]
    version: int


@dataclass(frozen=True)
class ModuleResolutionResult:
    module_name: str
    symbols: tuple[str, ...]
    known_module: bool


SymbolResponse = TypedDict(
    "SymbolResponse",
    {
        "symbolicatedStacks": List[List[str]],
        "knownModules": List[bool],
    },
)
