"""Low-level reading of Lua 5.1 bytecode: a byte reader, constants and strings."""

from __future__ import annotations

import struct
from typing import Callable, TypeVar, Union

T = TypeVar("T")

LuaValue = Union[None, bool, float, bytes]

_U32 = struct.Struct("<I")
_F64 = struct.Struct("<d")

NIL_TAG = 0
BOOLEAN_TAG = 1
NUMBER_TAG = 3
STRING_TAG = 4


class ParseError(Exception):
    """Raised when bytecode cannot be parsed."""

    def __init__(self, message: str, offset: int) -> None:
        super().__init__(f"{message} (at offset {offset})")
        self.offset = offset


class TruncatedError(ParseError):
    """The input ended before a complete item could be read."""


class InvalidDataError(ParseError):
    """The input holds a value that is not allowed at this point."""


class ByteReader:
    """A cursor over a byte string that reads little-endian fields."""

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self.data = bytes(data)
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read_bytes(self, size: int) -> bytes:
        if size > self.remaining:
            raise TruncatedError(
                f"needed {size} bytes but only {self.remaining} remain", self.offset
            )
        start = self.offset
        self.offset += size
        return self.data[start : self.offset]

    def read_u8(self) -> int:
        return self.read_bytes(1)[0]

    def read_u32(self) -> int:
        return _U32.unpack(self.read_bytes(_U32.size))[0]

    def read_f64(self) -> float:
        return _F64.unpack(self.read_bytes(_F64.size))[0]

    def optional(self, parser: Callable[["ByteReader"], T]) -> T | None:
        """Run ``parser``; if the input runs out, rewind and return None."""
        start = self.offset
        try:
            return parser(self)
        except TruncatedError:
            self.offset = start
            return None


def parse_string(reader: ByteReader) -> bytes:
    """Read a length-prefixed byte string, terminator included."""
    return reader.read_bytes(reader.read_u32())


def parse_strings(reader: ByteReader) -> list[bytes]:
    """Read a count followed by that many length-prefixed strings."""
    count = reader.read_u32()
    return [parse_string(reader) for _ in range(count)]


def parse_value(reader: ByteReader) -> LuaValue:
    """Read one constant: None, a bool, a float, or bytes without terminator."""
    tag_offset = reader.offset
    tag = reader.read_u8()
    if tag == NIL_TAG:
        return None
    if tag == BOOLEAN_TAG:
        return reader.read_u8() != 0
    if tag == NUMBER_TAG:
        return reader.read_f64()
    if tag == STRING_TAG:
        value_offset = reader.offset
        value = parse_string(reader)
        if not value:
            raise InvalidDataError("empty string constant", value_offset)
        return value[:-1]
    raise InvalidDataError(f"unknown constant type {tag}", tag_offset)