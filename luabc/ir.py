"""Expressions, statements and the control flow graph produced by lifting."""

from __future__ import annotations

import enum
import itertools
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

_serials = itertools.count()


@dataclass(eq=False)
class LocalVar:
    """A local variable; two locals are the same only if they are one object."""

    name: Optional[str] = None
    serial: int = field(default_factory=lambda: next(_serials))

    def __repr__(self) -> str:
        return f"LocalVar({self.name or '_'}#{self.serial})"


@dataclass(frozen=True)
class Literal:
    """A constant: None is nil, else a bool, a float or a byte string."""

    value: Union[None, bool, float, bytes] = None


@dataclass(frozen=True)
class Global:
    name: bytes


@dataclass
class Index:
    left: Any
    right: Any


class UnaryOperation(enum.Enum):
    NOT = "not"
    LENGTH = "#"
    NEGATE = "-"


class BinaryOperation(enum.Enum):
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    MOD = "%"
    POW = "^"
    CONCAT = ".."
    EQUAL = "=="
    NOT_EQUAL = "~="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUAL = "<="


@dataclass
class Unary:
    value: Any
    operation: UnaryOperation


@dataclass
class Binary:
    left: Any
    right: Any
    operation: BinaryOperation


@dataclass
class Call:
    value: Any
    arguments: list = field(default_factory=list)


@dataclass
class Select:
    """A call or vararg whose several results are spread over many targets."""

    value: Any


@dataclass(frozen=True)
class VarArgs:
    pass


@dataclass
class ClosureExpr:
    function: Any
    upvalues: list[LocalVar] = field(default_factory=list)


@dataclass(frozen=True)
class Table:
    pass


Expression = Union[
    LocalVar, Literal, Global, Index, Unary, Binary, Call, Select, VarArgs,
    ClosureExpr, Table,
]


@dataclass
class Assign:
    left: list
    right: list


@dataclass
class If:
    condition: Any
    then_block: list = field(default_factory=list)
    else_block: list = field(default_factory=list)


@dataclass
class ReturnStat:
    values: list = field(default_factory=list)


@dataclass
class SetListStat:
    table: LocalVar
    index: int
    values: list
    tail: Any = None


@dataclass
class CloseStat:
    locals: list[LocalVar] = field(default_factory=list)


@dataclass
class NumForInit:
    counter: LocalVar
    limit: LocalVar
    step: LocalVar


@dataclass
class NumForNext:
    counter: LocalVar
    limit: Any
    step: Any


Statement = Union[
    Assign, If, ReturnStat, SetListStat, CloseStat, NumForInit, NumForNext, Call
]


class BranchType(enum.Enum):
    UNCONDITIONAL = "unconditional"
    THEN = "then"
    ELSE = "else"


@dataclass(frozen=True)
class Edge:
    source: int
    target: int
    branch: BranchType


class ControlFlowGraph:
    """Basic blocks of statements joined by typed edges."""

    def __init__(self) -> None:
        self._blocks: dict[int, list] = {}
        self._edges: list[Edge] = []
        self._next_node = 0
        self.entry: Optional[int] = None
        self.parameters: list[LocalVar] = []
        self.is_variadic = False

    def _require(self, node: int) -> None:
        if node not in self._blocks:
            raise KeyError(f"no block {node}")

    def new_block(self) -> int:
        node = self._next_node
        self._next_node += 1
        self._blocks[node] = []
        return node

    def block(self, node: int) -> list:
        """The statement list of a block; changes to it change the block."""
        self._require(node)
        return self._blocks[node]

    def set_block(self, node: int, statements: Iterable) -> None:
        self._require(node)
        self._blocks[node] = list(statements)

    def set_edges(
        self, node: int, edges: Iterable[tuple[int, BranchType]]
    ) -> None:
        """Replace the outgoing edges of ``node`` with (target, branch) pairs."""
        self._require(node)
        new_edges = [Edge(node, target, branch) for target, branch in edges]
        for edge in new_edges:
            self._require(edge.target)
        self._edges = [e for e in self._edges if e.source != node]
        self._edges.extend(new_edges)

    def set_entry(self, node: int) -> None:
        self._require(node)
        self.entry = node

    def successors(self, node: int) -> list[int]:
        self._require(node)
        return [e.target for e in self._edges if e.source == node]

    def predecessors(self, node: int) -> list[int]:
        """Sources of the edges into ``node``, one entry per edge."""
        self._require(node)
        return [e.source for e in self._edges if e.target == node]

    def edges(self) -> list[Edge]:
        return list(self._edges)

    def remove_edge(self, edge: Edge) -> Edge:
        try:
            self._edges.remove(edge)
        except ValueError:
            raise KeyError(f"no edge {edge}") from None
        return edge

    def add_edge(self, edge: Edge) -> None:
        self._require(edge.source)
        self._require(edge.target)
        self._edges.append(edge)