"""Splitting a function's instructions into basic blocks and linking them."""

from __future__ import annotations

from typing import Sequence

from .instruction import (
    Equal,
    InitNumericForLoop,
    Instruction,
    IterateGenericForLoop,
    IterateNumericForLoop,
    Jump,
    LessThan,
    LessThanOrEqual,
    LoadBoolean,
    Return,
    SetList,
    Test,
    TestSet,
)
from .ir import BranchType

# Instructions that either run the next instruction or skip over it.
_CONDITIONAL = (
    Equal,
    LessThan,
    LessThanOrEqual,
    Test,
    TestSet,
    IterateGenericForLoop,
)


class UnsupportedBytecodeError(Exception):
    """The bytecode uses a construct that cannot be split into blocks."""


def jump_target(index: int, skip: int) -> int:
    """The instruction a jump of ``skip`` at ``index`` lands on."""
    target = index + 1 + skip
    if target < 0:
        raise UnsupportedBytecodeError(
            f"jump at {index} by {skip} lands before the first instruction"
        )
    return target


def block_starts(code: Sequence[Instruction]) -> list[int]:
    """Indices at which basic blocks begin, in the order they are found.

    The first entry is always 0. An index may be one past the last
    instruction, when the code ends with a return or a branch.
    """
    starts: dict[int, None] = {0: None}
    for index, instruction in enumerate(code):
        if isinstance(instruction, SetList) and instruction.block_number == 0:
            raise UnsupportedBytecodeError(
                f"SETLIST with an extended block number at {index}"
            )
        if isinstance(instruction, LoadBoolean) and instruction.skip_next:
            starts.setdefault(index + 1)
            starts.setdefault(index + 2)
        elif isinstance(instruction, _CONDITIONAL):
            starts.setdefault(index + 1)
            starts.setdefault(index + 2)
        elif isinstance(instruction, Jump):
            starts.setdefault(jump_target(index, instruction.skip))
            starts.setdefault(index + 1)
        elif isinstance(instruction, (IterateNumericForLoop, InitNumericForLoop)):
            starts.setdefault(jump_target(index, instruction.skip))
            starts.setdefault(index + 1)
        elif isinstance(instruction, Return):
            starts.setdefault(index + 1)
    return list(starts)


def code_ranges(starts: Sequence[int], length: int) -> list[tuple[int, int]]:
    """Inclusive (start, end) instruction ranges of the blocks, by start.

    Each block ends just before the next one starts; the last ends at the
    last instruction.
    """
    if length <= 0:
        raise UnsupportedBytecodeError("function has no instructions")
    ordered = sorted(set(starts))
    ends = [following - 1 for following in ordered[1:]] + [length - 1]
    return list(zip(ordered, ends))


def block_successors(
    code: Sequence[Instruction], end: int
) -> list[tuple[int, BranchType]]:
    """Where control goes after the block whose last instruction is ``end``.

    Targets are instruction indices paired with the kind of branch.
    """
    instruction = code[end]
    if isinstance(instruction, _CONDITIONAL):
        return [(end + 1, BranchType.THEN), (end + 2, BranchType.ELSE)]
    if isinstance(instruction, IterateNumericForLoop):
        return [
            (jump_target(end, instruction.skip), BranchType.THEN),
            (end + 1, BranchType.ELSE),
        ]
    if isinstance(instruction, (Jump, InitNumericForLoop)):
        return [(jump_target(end, instruction.skip), BranchType.UNCONDITIONAL)]
    if isinstance(instruction, Return):
        return []
    if isinstance(instruction, LoadBoolean):
        return [(end + 1 + int(instruction.skip_next), BranchType.UNCONDITIONAL)]
    if end + 1 != len(code):
        return [(end + 1, BranchType.UNCONDITIONAL)]
    return []