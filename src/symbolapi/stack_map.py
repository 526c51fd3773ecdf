from __future__ import annotations

from typing import Sequence

from .models import StackMap

__all__ = ["build_stack_map"]


def build_stack_map(stacks: Sequence[Sequence[tuple[int, int]]]) -> StackMap:
    """
    Group the frames of the first stack by module index.

    Addresses keep their input order within each bucket and are not
    deduplicated. Only ``stacks[0]`` is read; an empty ``stacks`` yields {}.
    """
    stack_map: StackMap = {}
    if not stacks:
        return stack_map
    for module_index, address in stacks[0]:
        stack_map.setdefault(module_index, []).append(address)
    return stack_map
