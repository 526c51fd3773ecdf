from __future__ import annotations

from typing import Any, Mapping

from .errors import MalformedRequest
from .models import ModuleKey, SymbolRequest, SymbolResponse

NO_MODULE_INDEX = -1
MAX_ADDRESS = 2**64
_FORBIDDEN_PATH_PARTS = {"", ".", ".."}


def format_address(address: int) -> str:
    return f"0x{address:x}"


def parse_symbol_request(body: object) -> SymbolRequest:
    if not isinstance(body, Mapping):
        raise MalformedRequest("request body must be an object")
    memory_map = _parse_memory_map(_require(body, "memoryMap"))
    stacks = _parse_stacks(_require(body, "stacks"), module_count=len(memory_map))
    version = _require(body, "version")
    if isinstance(version, bool) or not isinstance(version, int):
        raise MalformedRequest("version must be an int")
    return SymbolRequest(memory_map=memory_map, stacks=stacks, version=version)


def validate_symbol_response(value: object) -> SymbolResponse:
    if not isinstance(value, Mapping):
        raise ValueError("response must be a mapping")
    stacks = value.get("symbolicatedStacks")
    if not isinstance(stacks, list) or len(stacks) != 1:
        raise ValueError("symbolicatedStacks must hold exactly one list")
    row = stacks[0]
    if not isinstance(row, list) or not all(isinstance(item, str) for item in row):
        raise ValueError("symbolicatedStacks[0] must be a list of strings")
    known = value.get("knownModules")
    if not isinstance(known, list) or not all(isinstance(item, bool) for item in known):
        raise ValueError("knownModules must be a list of bools")
    return {"symbolicatedStacks": [list(row)], "knownModules": list(known)}


def _require(body: Mapping[str, Any], key: str) -> Any:
    if key not in body:
        raise MalformedRequest(f"missing key: {key}")
    return body[key]


def _parse_memory_map(value: object) -> tuple[ModuleKey, ...]:
    if not isinstance(value, list):
        raise MalformedRequest("memoryMap must be a list")
    modules: list[ModuleKey] = []
    for position, entry in enumerate(value):
        if not isinstance(entry, list) or len(entry) != 2:
            raise MalformedRequest(f"memoryMap[{position}] must be a [name, id] pair")
        name, debug_id = entry
        _require_path_part(name, f"memoryMap[{position}][0]")
        _require_path_part(debug_id, f"memoryMap[{position}][1]")
        modules.append(ModuleKey(module_name=name, module_id=debug_id))
    return tuple(modules)


def _require_path_part(value: object, name: str) -> None:
    if not isinstance(value, str):
        raise MalformedRequest(f"{name} must be a string")
    if value.strip() in _FORBIDDEN_PATH_PARTS or "/" in value or "\\" in value:
        raise MalformedRequest(f"{name} is not a valid path component")


def _parse_stacks(value: object, *, module_count: int) -> tuple[tuple[tuple[int, int], ...], ...]:
    if not isinstance(value, list):
        raise MalformedRequest("stacks must be a list")
    stacks: list[tuple[tuple[int, int], ...]] = []
    for stack_pos, stack in enumerate(value):
        if not isinstance(stack, list):
            raise MalformedRequest(f"stacks[{stack_pos}] must be a list")
        frames: list[tuple[int, int]] = []
        for frame_pos, frame in enumerate(stack):
            where = f"stacks[{stack_pos}][{frame_pos}]"
            if not isinstance(frame, list) or len(frame) != 2:
                raise MalformedRequest(f"{where} must be a [moduleIndex, address] pair")
            module_index, address = frame
            if not _is_int(module_index) or not _is_int(address):
                raise MalformedRequest(f"{where} must hold integers")
            if module_index < NO_MODULE_INDEX or module_index >= module_count:
                raise MalformedRequest(f"{where} module index {module_index} out of range")
            if address < 0 or address >= MAX_ADDRESS:
                raise MalformedRequest(f"{where} address out of range")
            frames.append((module_index, address))
        stacks.append(tuple(frames))
    return tuple(stacks)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
