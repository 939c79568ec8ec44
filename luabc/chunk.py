"""Top-level Lua 5.1 bytecode chunks: the header and the main function."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TypeVar

from .function import Function, parse_function
from .value import ByteReader, InvalidDataError

SIGNATURE = b"\x1bLua"
LUA51_VERSION = 0x51

_INT_WIDTH = 4
_SIZE_T_WIDTH = 4
_INSTRUCTION_WIDTH = 4
_NUMBER_WIDTH = 8

E = TypeVar("E", bound=enum.IntEnum)


class Endianness(enum.IntEnum):
    BIG = 0
    LITTLE = 1


class Format(enum.IntEnum):
    OFFICIAL = 0


@dataclass(frozen=True)
class Header:
    version_number: int
    format: Format
    endianness: Endianness
    int_width: int
    size_t_width: int
    instr_width: int
    number_width: int
    number_is_integral: bool


@dataclass
class Chunk:
    header: Header
    function: Function


def _read_enum(reader: ByteReader, kind: type[E], what: str) -> E:
    offset = reader.offset
    raw = reader.read_u8()
    try:
        return kind(raw)
    except ValueError:
        raise InvalidDataError(f"invalid {what} byte {raw}", offset) from None


def parse_header(reader: ByteReader) -> Header:
    """Read and check the signature, then the header fields."""
    offset = reader.offset
    if reader.read_bytes(len(SIGNATURE)) != SIGNATURE:
        raise InvalidDataError("missing Lua signature", offset)
    version_number = reader.read_u8()
    format_ = _read_enum(reader, Format, "format")
    endianness = _read_enum(reader, Endianness, "endianness")
    int_width = reader.read_u8()
    size_t_width = reader.read_u8()
    instr_width = reader.read_u8()
    number_width = reader.read_u8()
    integral_offset = reader.offset
    integral = reader.read_u8()
    if integral not in (0, 1):
        raise InvalidDataError(f"invalid integral flag {integral}", integral_offset)
    return Header(
        version_number=version_number,
        format=format_,
        endianness=endianness,
        int_width=int_width,
        size_t_width=size_t_width,
        instr_width=instr_width,
        number_width=number_width,
        number_is_integral=integral == 1,
    )


def _check_supported(header: Header) -> None:
    checks = [
        (header.version_number == LUA51_VERSION, "version"),
        (header.format is Format.OFFICIAL, "format"),
        (header.endianness is Endianness.LITTLE, "endianness"),
        (header.int_width == _INT_WIDTH, "int width"),
        (header.size_t_width == _SIZE_T_WIDTH, "size_t width"),
        (header.instr_width == _INSTRUCTION_WIDTH, "instruction width"),
        (header.number_width == _NUMBER_WIDTH, "number width"),
        (not header.number_is_integral, "integral numbers"),
    ]
    for ok, what in checks:
        if not ok:
            raise InvalidDataError(f"unsupported {what} in chunk header", 0)


def parse_chunk(data: bytes) -> Chunk:
    """Parse a whole chunk of little-endian, 32-bit Lua 5.1 bytecode."""
    reader = ByteReader(data)
    header = parse_header(reader)
    _check_supported(header)
    return Chunk(header, parse_function(reader))