# luabc

`luabc` reads compiled Lua 5.1 chunks in the official 5.1 layout, turns
their function prototypes into Python objects, and lifts each function into
a control-flow graph of simple intermediate statements.

It uses only the standard library and needs Python 3.10 or later.

## What it accepts

A chunk must be little-endian, with 4-byte `int`, 4-byte `size_t`, 4-byte
instructions and 8-byte floating-point numbers, and version byte `0x51`.
Any other header is rejected with `InvalidDataError` rather than misread.

Malformed input raises a subclass of `luabc.value.ParseError`, which carries
the byte `offset` where the problem was found:

- `TruncatedError` when the data ends before an item is complete;
- `InvalidDataError` when a signature, constant tag, opcode, header field or
  string has a value the format does not allow.

## Reading a chunk

```python
from pathlib import Path

from luabc.chunk import parse_chunk

chunk = parse_chunk(Path("script.luac").read_bytes())
print(chunk.header.version_number)

main = chunk.function
print(main.maximum_stack_size, main.number_of_parameters)
for instruction in main.code:
    print(instruction)
for constant in main.constants:
    print(constant)
print(len(main.closures), "nested functions")
```

What the modules provide:

- `luabc.chunk`: `parse_chunk(data)`, `parse_header(reader)`, and the
  `Chunk`, `Header`, `Endianness` and `Format` types.
- `luabc.function`: `Function` prototypes with `code`, `constants`,
  `closures`, `positions`, `locals` and `upvalues`, plus the `Local` and
  `Position` records and `parse_function`, `parse_locals`,
  `parse_positions`. A prototype's `name` and upvalue names are kept as
  stored, terminating zero byte included; local names have it stripped.
  Debug sections the input is too short to hold are left empty.
- `luabc.instruction`: all 38 Lua 5.1 opcodes (`OpCode`) decoded into small
  frozen dataclasses such as `Move`, `LoadConstant`, `Call`, `Jump` or
  `IterateNumericForLoop`, holding `Register`, `Constant`, `Upvalue` and
  `ClosureIndex` operands. `parse_instruction(reader)` reads one
  instruction; `decode_layout(word, opcode)` and `register_or_constant(value)`
  expose the operand decoding.
- `luabc.value`: `ByteReader`, a little-endian cursor over bytes, and
  `parse_value`, `parse_string`, `parse_strings`. Constants become `None`
  (nil), `bool`, `float` or `bytes`.

Because instructions are dataclasses they work well with `match`:

```python
from luabc.instruction import Call, Jump

for instruction in main.code:
    match instruction:
        case Call(function=register, arguments=count):
            print("call from register", register.index, "with", count)
        case Jump(skip=skip):
            print("jump by", skip)
```

## Lifting to a control-flow graph

```python
from luabc.lifter import lift

for lifted in lift(chunk.function):
    graph = lifted.graph
    for edge in graph.edges():
        print(edge.source, "->", edge.target, edge.branch.value)
```

`lift` returns a list of `LiftedFunction` objects, the main function first
and then every nested function. Each holds a `graph`
(`luabc.ir.ControlFlowGraph`) and the `upvalues` locals that stand for its
captured variables; `ClosureExpr` statements refer to these objects by
identity.

The graph's blocks hold statements from `luabc.ir` (`Assign`, `If`,
`ReturnStat`, `SetListStat`, `CloseStat`, `NumForInit`, `NumForNext`, and
bare `Call`), built from expressions such as `LocalVar`, `Literal`,
`Global`, `Index`, `Unary`, `Binary`, `Select`, `VarArgs` and `Table`.
Edges are `Edge(source, target, branch)` with a `BranchType` of
`UNCONDITIONAL`, `THEN` or `ELSE`. The entry block sets every non-parameter
stack slot to nil and then falls through to the first instruction's block.

`luabc.blocks` holds the block splitting on its own: `block_starts`,
`code_ranges`, `block_successors` and `jump_target`.

Bytecode the lifter cannot handle raises `luabc.lifter.LiftError`;
constructs it does not support, such as `SETLIST` with an extended block
number or jumps before the first instruction, raise
`luabc.blocks.UnsupportedBytecodeError`.

## What it does not do

`luabc` is a library only: it has no command-line program. It stops at the
control-flow graph; it does not structure the graph into loops and
conditionals, name locals, or print Lua source text.

## Running the tests

Install the `test` extra and run `pytest`.