"""Lifting of Lua 5.1 function prototypes into a control flow graph of statements."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from . import instruction as bc
from . import ir
from .blocks import block_successors, block_starts, code_ranges, jump_target
from .function import Function

FIELDS_PER_FLUSH = 50

_ARITHMETIC_OPS = {
    bc.Add: ir.BinaryOperation.ADD,
    bc.Sub: ir.BinaryOperation.SUB,
    bc.Mul: ir.BinaryOperation.MUL,
    bc.Div: ir.BinaryOperation.DIV,
    bc.Mod: ir.BinaryOperation.MOD,
    bc.Pow: ir.BinaryOperation.POW,
}
_UNARY_OPS = {
    bc.Not: ir.UnaryOperation.NOT,
    bc.Length: ir.UnaryOperation.LENGTH,
    bc.Minus: ir.UnaryOperation.NEGATE,
}
_COMPARISON_OPS = {
    bc.Equal: ir.BinaryOperation.EQUAL,
    bc.LessThan: ir.BinaryOperation.LESS_THAN,
    bc.LessThanOrEqual: ir.BinaryOperation.LESS_THAN_OR_EQUAL,
}


class LiftError(Exception):
    """The bytecode cannot be turned into statements."""


@dataclass(eq=False)
class LiftedFunction:
    """A lifted function: its graph and the locals standing for its upvalues.

    Closure expressions refer to these objects; they compare by identity.
    """

    graph: ir.ControlFlowGraph
    upvalues: list[ir.LocalVar] = field(default_factory=list)


def _negate_if(condition: Any, invert: bool) -> Any:
    return ir.Unary(condition, ir.UnaryOperation.NOT) if invert else condition


class Lifter:
    """Lifts one function prototype; nested prototypes go to ``lifted_functions``."""

    def __init__(
        self, bytecode: Function, lifted_functions: Optional[list] = None
    ) -> None:
        self.bytecode = bytecode
        self.lifted_functions: list[LiftedFunction] = (
            [] if lifted_functions is None else lifted_functions
        )
        self.graph = ir.ControlFlowGraph()
        self.upvalues: list[ir.LocalVar] = []
        self._nodes: dict[int, int] = {}
        self._insert_between: dict[int, tuple[int, Any]] = {}
        self._locals: dict[bc.Register, ir.LocalVar] = {}
        self._constants: dict[int, ir.Literal] = {}
        self._top: Optional[tuple[Any, int]] = None
        self._done = False

    # -- lookups -----------------------------------------------------------

    def _node(self, index: int) -> int:
        try:
            return self._nodes[index]
        except KeyError:
            raise LiftError(f"no block starts at instruction {index}") from None

    def _local(self, register: bc.Register) -> ir.LocalVar:
        try:
            return self._locals[register]
        except KeyError:
            raise LiftError(
                f"register {register.index} is outside the stack frame"
            ) from None

    def _locals_range(self, first: int, stop: int) -> list[ir.LocalVar]:
        return [self._local(bc.Register(r)) for r in range(first, stop)]

    def _upvalue(self, index: int) -> ir.LocalVar:
        if not 0 <= index < len(self.upvalues):
            raise LiftError(f"upvalue {index} does not exist")
        return self.upvalues[index]

    def _constant(self, constant: bc.Constant) -> ir.Literal:
        index = constant.index
        if index not in self._constants:
            if not 0 <= index < len(self.bytecode.constants):
                raise LiftError(f"constant {index} does not exist")
            self._constants[index] = ir.Literal(self.bytecode.constants[index])
        return self._constants[index]

    def _string_constant(self, constant: bc.Constant) -> bytes:
        value = self._constant(constant).value
        if not isinstance(value, bytes):
            raise LiftError(f"constant {constant.index} is not a string")
        return value

    def _rk(self, value: bc.RegisterOrConstant) -> Any:
        if isinstance(value, bc.Constant):
            return self._constant(value)
        return self._local(value)

    def _take_top(self) -> tuple[Any, int]:
        if self._top is None:
            raise LiftError("variable result count without a preceding open call")
        top, self._top = self._top, None
        return top

    # -- setup -------------------------------------------------------------

    def _create_block_map(self) -> None:
        self._nodes = {
            start: self.graph.new_block() for start in block_starts(self.bytecode.code)
        }

    def _allocate_locals(self) -> None:
        self.upvalues = [ir.LocalVar() for _ in range(self.bytecode.number_of_upvalues)]
        for i in range(self.bytecode.maximum_stack_size):
            local = ir.LocalVar()
            if i < self.bytecode.number_of_parameters:
                self.graph.parameters.append(local)
            self._locals[bc.Register(i)] = local

    # -- instructions ------------------------------------------------------

    def _assign(self, statements: list, target: Any, value: Any) -> None:
        statements.append(ir.Assign([target], [value]))

    def _record_loop_body(self, start: int, body: int, statement: Any) -> None:
        node = self._node(start)
        if node in self._insert_between:
            raise LiftError(f"block at {start} already has a loop statement")
        self._insert_between[node] = (body, statement)

    def _lift_closure(
        self, instruction: bc.Closure, rest: Iterator, statements: list
    ) -> None:
        index = instruction.function.index
        if not 0 <= index < len(self.bytecode.closures):
            raise LiftError(f"closure prototype {index} does not exist")
        prototype = self.bytecode.closures[index]
        passed = []
        for _ in range(prototype.number_of_upvalues):
            following = next(rest, None)
            if isinstance(following, bc.Move):
                passed.append(self._local(following.source))
            elif isinstance(following, bc.GetUpvalue):
                passed.append(self._upvalue(following.upvalue.index))
            else:
                raise LiftError("closure is not followed by its upvalue captures")
        graph, upvalues = Lifter(prototype, self.lifted_functions).lift()
        lifted = LiftedFunction(graph, upvalues)
        self.lifted_functions.append(lifted)
        self._assign(
            statements,
            self._local(instruction.destination),
            ir.ClosureExpr(lifted, passed),
        )

    def _lift_call(self, instruction: Any, statements: list) -> None:
        base = instruction.function.index
        if instruction.arguments != 0:
            arguments = self._locals_range(base + 1, base + instruction.arguments)
        else:
            tail, stop = self._take_top()
            arguments = [*self._locals_range(base + 1, stop), tail]
        call = ir.Call(self._local(instruction.function), arguments)
        results = getattr(instruction, "return_values", 0)
        if isinstance(instruction, bc.Call) and results != 0:
            if results == 1:
                statements.append(call)
            else:
                statements.append(
                    ir.Assign(
                        self._locals_range(base, base + results - 1), [ir.Select(call)]
                    )
                )
        else:
            self._top = (call, base)

    def _lift_instruction(
        self, ins: Any, rest: Iterator, start: int, end: int, statements: list
    ) -> None:
        kind = type(ins)
        if kind in _ARITHMETIC_OPS:
            value = ir.Binary(self._rk(ins.lhs), self._rk(ins.rhs), _ARITHMETIC_OPS[kind])
            self._assign(statements, self._local(ins.destination), value)
        elif kind in _UNARY_OPS:
            value = ir.Unary(self._local(ins.operand), _UNARY_OPS[kind])
            self._assign(statements, self._local(ins.destination), value)
        elif kind in _COMPARISON_OPS:
            value = ir.Binary(self._rk(ins.lhs), self._rk(ins.rhs), _COMPARISON_OPS[kind])
            statements.append(ir.If(_negate_if(value, ins.invert)))
        elif isinstance(ins, bc.Move):
            self._assign(statements, self._local(ins.destination), self._local(ins.source))
        elif isinstance(ins, bc.LoadBoolean):
            self._assign(statements, self._local(ins.destination), ir.Literal(ins.value))
        elif isinstance(ins, bc.LoadConstant):
            self._assign(
                statements, self._local(ins.destination), self._constant(ins.source)
            )
        elif isinstance(ins, bc.LoadNil):
            for register in ins.registers:
                self._assign(statements, self._local(register), ir.Literal(None))
        elif isinstance(ins, bc.GetGlobal):
            name = self._string_constant(ins.global_name)
            self._assign(statements, self._local(ins.destination), ir.Global(name))
        elif isinstance(ins, bc.SetGlobal):
            name = self._string_constant(ins.destination)
            self._assign(statements, ir.Global(name), self._local(ins.value))
        elif isinstance(ins, bc.GetIndex):
            value = ir.Index(self._local(ins.object), self._rk(ins.key))
            self._assign(statements, self._local(ins.destination), value)
        elif isinstance(ins, bc.Test):
            statements.append(ir.If(_negate_if(self._local(ins.value), ins.invert)))
        elif isinstance(ins, bc.Return):
            first = ins.start.index
            if ins.count != 0:
                values = self._locals_range(first, first + ins.count - 1)
            else:
                tail, stop = self._take_top()
                values = [*self._locals_range(first, stop), tail]
            statements.append(ir.ReturnStat(values))
        elif isinstance(ins, bc.Jump):
            pass
        elif isinstance(ins, bc.Concatenate):
            if len(ins.operands) < 2:
                raise LiftError("concatenation needs at least two operands")
            *others, left, right = [self._local(r) for r in ins.operands]
            concat = ir.Binary(left, right, ir.BinaryOperation.CONCAT)
            for operand in reversed(others):
                concat = ir.Binary(operand, concat, ir.BinaryOperation.CONCAT)
            self._assign(statements, self._local(ins.destination), concat)
        elif isinstance(ins, bc.TestSet):
            value = self._local(ins.value)
            statements.append(ir.If(_negate_if(value, ins.invert)))
            self.graph.block(self._node(end + 1)).append(
                ir.Assign([self._local(ins.destination)], [value])
            )
        elif isinstance(ins, bc.PrepMethodCall):
            obj = self._local(ins.object)
            self._assign(statements, self._local(ins.self_arg), obj)
            self._assign(
                statements, self._local(ins.destination), ir.Index(obj, self._rk(ins.method))
            )
        elif isinstance(ins, (bc.Call, bc.TailCall)):
            self._lift_call(ins, statements)
        elif isinstance(ins, bc.GetUpvalue):
            self._assign(
                statements, self._local(ins.destination), self._upvalue(ins.upvalue.index)
            )
        elif isinstance(ins, bc.SetUpvalue):
            self._assign(
                statements, self._upvalue(ins.destination.index), self._local(ins.source)
            )
        elif isinstance(ins, bc.VarArg):
            first = ins.destination.index
            if ins.count != 0:
                statements.append(
                    ir.Assign(
                        self._locals_range(first, first + ins.count - 1),
                        [ir.Select(ir.VarArgs())],
                    )
                )
            else:
                self._top = (ir.VarArgs(), first)
        elif isinstance(ins, bc.Closure):
            self._lift_closure(ins, rest, statements)
        elif isinstance(ins, bc.NewTable):
            self._assign(statements, self._local(ins.destination), ir.Table())
        elif isinstance(ins, bc.SetList):
            table = ins.table.index
            index = (ins.block_number - 1) * FIELDS_PER_FLUSH + 1
            if ins.number_of_elements != 0:
                values = self._locals_range(table + 1, table + 1 + ins.number_of_elements)
                tail = None
            else:
                tail, stop = self._take_top()
                values = self._locals_range(table + 1, stop)
            statements.append(
                ir.SetListStat(self._local(ins.table), index, values, tail)
            )
        elif isinstance(ins, bc.Close):
            statements.append(
                ir.CloseStat(
                    self._locals_range(ins.start.index, self.bytecode.maximum_stack_size)
                )
            )
        elif isinstance(ins, bc.SetIndex):
            key = self._rk(ins.key)
            value = self._rk(ins.value)
            self._assign(statements, ir.Index(self._local(ins.object), key), value)
        elif isinstance(ins, bc.InitNumericForLoop):
            counter, limit, step = (self._local(r) for r in ins.control[:3])
            statements.append(ir.NumForInit(counter, limit, step))
        elif isinstance(ins, bc.IterateNumericForLoop):
            counter, limit, step, external = (self._local(r) for r in ins.control[:4])
            statements.append(ir.NumForNext(counter, limit, step))
            body = self._node(jump_target(end, ins.skip))
            self._record_loop_body(start, body, ir.Assign([external], [counter]))
        elif isinstance(ins, bc.IterateGenericForLoop):
            generator = self._local(ins.generator)
            state = self._local(ins.state)
            internal = self._local(ins.internal_control)
            variables = [self._local(r) for r in ins.vars]
            control = variables[0]
            statements.append(
                ir.Assign(variables, [ir.Call(generator, [state, internal])])
            )
            statements.append(
                ir.If(
                    ir.Binary(control, ir.Literal(None), ir.BinaryOperation.NOT_EQUAL)
                )
            )
            body = self._node(end + 1)
            self._record_loop_body(start, body, ir.Assign([internal], [control]))
        else:
            raise LiftError(f"cannot lift instruction {ins!r}")

    def _lift_range(self, start: int, end: int, statements: list) -> None:
        self._top = None
        rest = iter(self.bytecode.code[start : end + 1])
        for ins in rest:
            self._lift_instruction(ins, rest, start, end, statements)
            if isinstance(ins, bc.Return):
                break

    def _lift_blocks(self) -> None:
        code = self.bytecode.code
        for start, end in code_ranges(list(self._nodes), len(code)):
            if end >= len(code):
                raise LiftError(f"block at {start} runs past the end of the code")
            node = self._node(start)
            self._lift_range(start, end, self.graph.block(node))
            self.graph.set_edges(
                node,
                [(self._node(target), branch) for target, branch in block_successors(code, end)],
            )

    # -- driver ------------------------------------------------------------

    def lift(self) -> tuple[ir.ControlFlowGraph, list[ir.LocalVar]]:
        """Lift the prototype; returns the graph and the upvalue locals."""
        if self._done:
            raise LiftError("this function has already been lifted")
        self._done = True

        self._create_block_map()
        self._allocate_locals()
        self._lift_blocks()

        graph = self.graph
        stack_init = graph.new_block()
        graph.block(stack_init).extend(
            ir.Assign([local], [ir.Literal(None)])
            for local in self._locals.values()
            if local not in graph.parameters
        )
        graph.set_edges(stack_init, [(self._node(0), ir.BranchType.UNCONDITIONAL)])
        graph.set_entry(stack_init)

        for node, (successor, statement) in self._insert_between.items():
            if len(graph.predecessors(successor)) == 1:
                graph.block(successor).insert(0, statement)
                continue
            between = graph.new_block()
            graph.block(between).append(statement)
            graph.set_edges(between, [(successor, ir.BranchType.UNCONDITIONAL)])
            for edge in graph.edges():
                if edge.source == node and edge.target == successor:
                    graph.remove_edge(edge)
                    graph.add_edge(ir.Edge(node, between, edge.branch))

        return graph, self.upvalues


def lift(bytecode: Function) -> list[LiftedFunction]:
    """Lift a prototype and all nested ones; the main function comes first."""
    nested: list[LiftedFunction] = []
    graph, upvalues = Lifter(bytecode, nested).lift()
    return [LiftedFunction(graph, upvalues), *reversed(nested)]