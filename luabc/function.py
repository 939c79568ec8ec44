"""Function prototypes of Lua 5.1 bytecode, with their debug information."""

from __future__ import annotations

from dataclasses import dataclass, field

from .instruction import Instruction, parse_instruction
from .value import (
    ByteReader,
    InvalidDataError,
    LuaValue,
    parse_string,
    parse_strings,
    parse_value,
)


@dataclass(frozen=True)
class Local:
    """A named local variable and the instruction span in which it is live."""

    name: bytes
    start: int
    end: int

    @property
    def range(self) -> range:
        return range(self.start, self.end)


@dataclass(frozen=True)
class Position:
    """The source line of one instruction."""

    instruction: int
    source: int


@dataclass
class Function:
    """A function prototype.

    ``name`` and ``upvalues`` are kept exactly as stored, terminator included.
    """

    name: bytes
    line_defined: int
    last_line_defined: int
    number_of_upvalues: int
    number_of_parameters: int
    vararg_flag: int
    maximum_stack_size: int
    code: list[Instruction] = field(default_factory=list)
    constants: list[LuaValue] = field(default_factory=list)
    closures: list[Function] = field(default_factory=list)
    positions: list[Position] = field(default_factory=list)
    locals: list[Local] = field(default_factory=list)
    upvalues: list[bytes] = field(default_factory=list)


def _parse_local(reader: ByteReader) -> Local:
    offset = reader.offset
    name = parse_string(reader)
    if not name:
        raise InvalidDataError("empty local variable name", offset)
    start = reader.read_u32()
    end = reader.read_u32()
    return Local(name[:-1], start, end)


def parse_locals(reader: ByteReader) -> list[Local]:
    """Read a count followed by that many local variable records."""
    count = reader.read_u32()
    return [_parse_local(reader) for _ in range(count)]


def parse_positions(reader: ByteReader) -> list[Position]:
    """Read the line information, one source line per instruction."""
    count = reader.read_u32()
    return [Position(index, reader.read_u32()) for index in range(count)]


def parse_function(reader: ByteReader) -> Function:
    """Read one function prototype, its nested prototypes included.

    Debug sections that the input is too short to hold are left empty.
    """
    name = parse_string(reader)
    line_defined = reader.read_u32()
    last_line_defined = reader.read_u32()
    number_of_upvalues = reader.read_u8()
    number_of_parameters = reader.read_u8()
    vararg_flag = reader.read_u8()
    maximum_stack_size = reader.read_u8()
    code = [parse_instruction(reader) for _ in range(reader.read_u32())]
    constants = [parse_value(reader) for _ in range(reader.read_u32())]
    closures = [parse_function(reader) for _ in range(reader.read_u32())]
    positions = reader.optional(parse_positions)
    locals_ = reader.optional(parse_locals)
    upvalues = reader.optional(parse_strings)
    return Function(
        name=name,
        line_defined=line_defined,
        last_line_defined=last_line_defined,
        number_of_upvalues=number_of_upvalues,
        number_of_parameters=number_of_parameters,
        vararg_flag=vararg_flag,
        maximum_stack_size=maximum_stack_size,
        code=code,
        constants=constants,
        closures=closures,
        positions=positions or [],
        locals=locals_ or [],
        upvalues=upvalues or [],
    )