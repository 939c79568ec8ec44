"""Decoding of Lua 5.1 virtual machine instructions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Union

from .value import ByteReader, InvalidDataError

# Largest signed 18-bit value, the bias applied to sBx operands.
_SBX_BIAS = ((1 << 18) - 1) >> 1


@dataclass(frozen=True)
class Register:
    index: int


@dataclass(frozen=True)
class Constant:
    index: int


@dataclass(frozen=True)
class Upvalue:
    index: int


@dataclass(frozen=True)
class ClosureIndex:
    index: int


RegisterOrConstant = Union[Register, Constant]


def register_or_constant(value: int) -> RegisterOrConstant:
    """Decode an RK operand: values above 255 name a constant."""
    if value > 255:
        return Constant(value - 256)
    return Register(value)


class LayoutKind(enum.Enum):
    BC = "BC"
    BX = "BX"
    BSX = "BSx"


@dataclass(frozen=True)
class Layout:
    kind: LayoutKind
    a: int
    b: int = 0
    c: int = 0
    bx: int = 0
    sbx: int = 0


class OpCode(enum.IntEnum):
    MOVE = 0
    LOAD_CONSTANT = 1
    LOAD_BOOLEAN = 2
    LOAD_NIL = 3
    GET_UPVALUE = 4
    GET_GLOBAL = 5
    GET_INDEX = 6
    SET_GLOBAL = 7
    SET_UPVALUE = 8
    SET_INDEX = 9
    NEW_TABLE = 10
    PREP_METHOD_CALL = 11
    ADD = 12
    SUBTRACT = 13
    MULTIPLY = 14
    DIVIDE = 15
    MODULO = 16
    POWER = 17
    MINUS = 18
    NOT = 19
    LENGTH = 20
    CONCATENATE = 21
    JUMP = 22
    EQUAL = 23
    LESS_THAN = 24
    LESS_THAN_OR_EQUAL = 25
    TEST = 26
    TEST_SET = 27
    CALL = 28
    TAIL_CALL = 29
    RETURN = 30
    ITERATE_NUMERIC_FOR_LOOP = 31
    INIT_NUMERIC_FOR_LOOP = 32
    ITERATE_GENERIC_FOR_LOOP = 33
    SET_LIST = 34
    CLOSE = 35
    CLOSURE = 36
    VAR_ARG = 37

    def layout(self) -> LayoutKind:
        if self in _BX_OPCODES:
            return LayoutKind.BX
        if self in _BSX_OPCODES:
            return LayoutKind.BSX
        return LayoutKind.BC


_BX_OPCODES = frozenset(
    {OpCode.LOAD_CONSTANT, OpCode.GET_GLOBAL, OpCode.SET_GLOBAL, OpCode.CLOSURE}
)
_BSX_OPCODES = frozenset(
    {OpCode.JUMP, OpCode.ITERATE_NUMERIC_FOR_LOOP, OpCode.INIT_NUMERIC_FOR_LOOP}
)


def decode_layout(word: int, opcode: OpCode) -> Layout:
    """Split a 32-bit instruction word into the operands its opcode uses."""
    kind = opcode.layout()
    a = (word >> 6) & 0xFF
    if kind is LayoutKind.BC:
        return Layout(kind, a, b=(word >> 23) & 0x1FF, c=(word >> 14) & 0x1FF)
    bx = (word >> 14) & 0x3FFFF
    if kind is LayoutKind.BX:
        return Layout(kind, a, bx=bx)
    return Layout(kind, a, sbx=bx - _SBX_BIAS)


class Instruction:
    """Base class of all decoded instructions."""

    __slots__ = ()


@dataclass(frozen=True)
class Move(Instruction):
    destination: Register
    source: Register


@dataclass(frozen=True)
class LoadConstant(Instruction):
    destination: Register
    source: Constant


@dataclass(frozen=True)
class LoadBoolean(Instruction):
    destination: Register
    value: bool
    skip_next: bool


@dataclass(frozen=True)
class LoadNil(Instruction):
    registers: tuple[Register, ...]


@dataclass(frozen=True)
class GetUpvalue(Instruction):
    destination: Register
    upvalue: Upvalue


@dataclass(frozen=True)
class GetGlobal(Instruction):
    destination: Register
    global_name: Constant


@dataclass(frozen=True)
class GetIndex(Instruction):
    destination: Register
    object: Register
    key: RegisterOrConstant


@dataclass(frozen=True)
class SetGlobal(Instruction):
    destination: Constant
    value: Register


@dataclass(frozen=True)
class SetUpvalue(Instruction):
    destination: Upvalue
    source: Register


@dataclass(frozen=True)
class SetIndex(Instruction):
    object: Register
    key: RegisterOrConstant
    value: RegisterOrConstant


@dataclass(frozen=True)
class NewTable(Instruction):
    destination: Register
    array_size: int
    hash_size: int


@dataclass(frozen=True)
class PrepMethodCall(Instruction):
    destination: Register
    self_arg: Register
    object: Register
    method: RegisterOrConstant


@dataclass(frozen=True)
class _Arithmetic(Instruction):
    destination: Register
    lhs: RegisterOrConstant
    rhs: RegisterOrConstant


@dataclass(frozen=True)
class Add(_Arithmetic):
    pass


@dataclass(frozen=True)
class Sub(_Arithmetic):
    pass


@dataclass(frozen=True)
class Mul(_Arithmetic):
    pass


@dataclass(frozen=True)
class Div(_Arithmetic):
    pass


@dataclass(frozen=True)
class Mod(_Arithmetic):
    pass


@dataclass(frozen=True)
class Pow(_Arithmetic):
    pass


@dataclass(frozen=True)
class _UnaryOp(Instruction):
    destination: Register
    operand: Register


@dataclass(frozen=True)
class Minus(_UnaryOp):
    pass


@dataclass(frozen=True)
class Not(_UnaryOp):
    pass


@dataclass(frozen=True)
class Length(_UnaryOp):
    pass


@dataclass(frozen=True)
class Concatenate(Instruction):
    destination: Register
    operands: tuple[Register, ...]


@dataclass(frozen=True)
class Jump(Instruction):
    skip: int


@dataclass(frozen=True)
class _Comparison(Instruction):
    lhs: RegisterOrConstant
    rhs: RegisterOrConstant
    invert: bool


@dataclass(frozen=True)
class Equal(_Comparison):
    pass


@dataclass(frozen=True)
class LessThan(_Comparison):
    pass


@dataclass(frozen=True)
class LessThanOrEqual(_Comparison):
    pass


@dataclass(frozen=True)
class Test(Instruction):
    value: Register
    invert: bool


@dataclass(frozen=True)
class TestSet(Instruction):
    destination: Register
    value: Register
    invert: bool


@dataclass(frozen=True)
class Call(Instruction):
    function: Register
    arguments: int
    return_values: int


@dataclass(frozen=True)
class TailCall(Instruction):
    function: Register
    arguments: int


@dataclass(frozen=True)
class Return(Instruction):
    start: Register
    count: int


@dataclass(frozen=True)
class IterateNumericForLoop(Instruction):
    control: tuple[Register, ...]
    skip: int


@dataclass(frozen=True)
class InitNumericForLoop(Instruction):
    control: tuple[Register, ...]
    skip: int


@dataclass(frozen=True)
class IterateGenericForLoop(Instruction):
    generator: Register
    state: Register
    internal_control: Register
    vars: tuple[Register, ...] = field(default=())


@dataclass(frozen=True)
class SetList(Instruction):
    table: Register
    number_of_elements: int
    block_number: int


@dataclass(frozen=True)
class Close(Instruction):
    start: Register


@dataclass(frozen=True)
class Closure(Instruction):
    destination: Register
    function: ClosureIndex


@dataclass(frozen=True)
class VarArg(Instruction):
    destination: Register
    count: int


def _registers(first: int, last: int) -> tuple[Register, ...]:
    return tuple(Register(r & 0xFF) for r in range(first, last + 1))


_ARITHMETIC = {
    OpCode.ADD: Add,
    OpCode.SUBTRACT: Sub,
    OpCode.MULTIPLY: Mul,
    OpCode.DIVIDE: Div,
    OpCode.MODULO: Mod,
    OpCode.POWER: Pow,
}
_UNARY = {OpCode.MINUS: Minus, OpCode.NOT: Not, OpCode.LENGTH: Length}
_COMPARISON = {
    OpCode.EQUAL: Equal,
    OpCode.LESS_THAN: LessThan,
    OpCode.LESS_THAN_OR_EQUAL: LessThanOrEqual,
}


def parse_instruction(reader: ByteReader) -> Instruction:
    """Read and decode one 32-bit instruction."""
    start = reader.offset
    word = reader.read_u32()
    try:
        opcode = OpCode(word & 0x3F)
    except ValueError:
        raise InvalidDataError(f"unknown opcode {word & 0x3F}", start) from None
    lay = decode_layout(word, opcode)
    a, b, c = lay.a, lay.b, lay.c

    if opcode in _ARITHMETIC:
        return _ARITHMETIC[opcode](
            Register(a), register_or_constant(b), register_or_constant(c)
        )
    if opcode in _UNARY:
        return _UNARY[opcode](Register(a), Register(b & 0xFF))
    if opcode in _COMPARISON:
        return _COMPARISON[opcode](
            register_or_constant(b), register_or_constant(c), a != 1
        )

    match opcode:
        case OpCode.MOVE:
            return Move(Register(a), Register(b & 0xFF))
        case OpCode.LOAD_CONSTANT:
            return LoadConstant(Register(a), Constant(lay.bx))
        case OpCode.LOAD_BOOLEAN:
            return LoadBoolean(Register(a), b == 1, c == 1)
        case OpCode.LOAD_NIL:
            return LoadNil(_registers(a, b & 0xFF))
        case OpCode.GET_UPVALUE:
            return GetUpvalue(Register(a), Upvalue(b & 0xFF))
        case OpCode.GET_GLOBAL:
            return GetGlobal(Register(a), Constant(lay.bx))
        case OpCode.GET_INDEX:
            return GetIndex(Register(a), Register(b & 0xFF), register_or_constant(c))
        case OpCode.SET_GLOBAL:
            return SetGlobal(Constant(lay.bx), Register(a))
        case OpCode.SET_UPVALUE:
            return SetUpvalue(Upvalue(b & 0xFF), Register(a))
        case OpCode.SET_INDEX:
            return SetIndex(
                Register(a), register_or_constant(b), register_or_constant(c)
            )
        case OpCode.NEW_TABLE:
            return NewTable(Register(a), b & 0xFF, c & 0xFF)
        case OpCode.PREP_METHOD_CALL:
            return PrepMethodCall(
                Register(a),
                Register(a + 1),
                Register(b & 0xFF),
                register_or_constant(c),
            )
        case OpCode.CONCATENATE:
            return Concatenate(Register(a), _registers(b, c))
        case OpCode.JUMP:
            return Jump(lay.sbx)
        case OpCode.TEST:
            return Test(Register(a), c != 1)
        case OpCode.TEST_SET:
            return TestSet(Register(a), Register(b & 0xFF), c != 1)
        case OpCode.CALL:
            return Call(Register(a), b & 0xFF, c & 0xFF)
        case OpCode.TAIL_CALL:
            return TailCall(Register(a), b & 0xFF)
        case OpCode.RETURN:
            return Return(Register(a), b & 0xFF)
        case OpCode.ITERATE_NUMERIC_FOR_LOOP:
            return IterateNumericForLoop(_registers(a, a + 4), lay.sbx)
        case OpCode.INIT_NUMERIC_FOR_LOOP:
            return InitNumericForLoop(_registers(a, a + 4), lay.sbx)
        case OpCode.ITERATE_GENERIC_FOR_LOOP:
            variables = tuple(Register(r) for r in range(a + 3, a + 3 + (c & 0xFF)))
            if not variables:
                raise InvalidDataError(
                    "generic for loop without a control variable", start
                )
            return IterateGenericForLoop(
                Register(a), Register(a + 1), Register(a + 2), variables
            )
        case OpCode.SET_LIST:
            return SetList(Register(a), b & 0xFF, c & 0xFF)
        case OpCode.CLOSE:
            return Close(Register(a))
        case OpCode.CLOSURE:
            return Closure(Register(a), ClosureIndex(lay.bx))
        case OpCode.VAR_ARG:
            return VarArg(Register(a), b & 0xFF)
    raise InvalidDataError(f"unhandled opcode {opcode.name}", start)