import pytest

from luabc import instruction as bc
from luabc import ir
from luabc.blocks import UnsupportedBytecodeError
from luabc.function import Function
from luabc.lifter import LiftedFunction, LiftError, Lifter, lift

R = bc.Register
K = bc.Constant


def proto(code, constants=(), max_stack=4, params=0, nups=0, closures=()):
    return Function(
        name=b"",
        line_defined=0,
        last_line_defined=0,
        number_of_upvalues=nups,
        number_of_parameters=params,
        vararg_flag=0,
        maximum_stack_size=max_stack,
        code=list(code),
        constants=list(constants),
        closures=list(closures),
    )


def registers(graph):
    init = graph.block(graph.entry)
    return list(graph.parameters) + [s.left[0] for s in init]


def first_block(graph):
    (node,) = graph.successors(graph.entry)
    return node


def out_edges(graph, node):
    return {e.branch: e.target for e in graph.edges() if e.source == node}


def lift_main(function):
    main = lift(function)[0]
    graph = main.graph
    return main, graph, registers(graph), first_block(graph)


def test_load_constant_and_return():
    _, graph, regs, node = lift_main(
        proto([bc.LoadConstant(R(0), K(0)), bc.Return(R(0), 2)], [b"hi"], max_stack=2)
    )
    assert graph.block(node) == [
        ir.Assign([regs[0]], [ir.Literal(b"hi")]),
        ir.ReturnStat([regs[0]]),
    ]


def test_stack_init_skips_parameters():
    _, graph, regs, _ = lift_main(proto([bc.Return(R(0), 1)], max_stack=3, params=2))
    assert len(graph.parameters) == 2
    init = graph.block(graph.entry)
    assert init == [ir.Assign([regs[2]], [ir.Literal(None)])]
    assert all(s.left[0] not in graph.parameters for s in init)
    assert len(set(map(id, regs))) == 3


def test_upvalues_are_allocated():
    main, graph, regs, node = lift_main(
        proto([bc.GetUpvalue(R(0), bc.Upvalue(1)), bc.Return(R(0), 1)], nups=2)
    )
    assert len(main.upvalues) == 2
    assert main.upvalues[0] is not main.upvalues[1]
    assert graph.block(node)[0] == ir.Assign([regs[0]], [main.upvalues[1]])


@pytest.mark.parametrize("invert", [False, True])
def test_test_branches(invert):
    code = [
        bc.Test(R(0), invert),
        bc.Jump(1),
        bc.LoadBoolean(R(1), True, False),
        bc.Return(R(1), 2),
    ]
    _, graph, regs, node = lift_main(proto(code))
    condition = ir.Unary(regs[0], ir.UnaryOperation.NOT) if invert else regs[0]
    assert graph.block(node) == [ir.If(condition)]
    edges = out_edges(graph, node)
    assert set(edges) == {ir.BranchType.THEN, ir.BranchType.ELSE}
    then_node, else_node = edges[ir.BranchType.THEN], edges[ir.BranchType.ELSE]
    assert graph.block(then_node) == []
    assert graph.block(else_node) == [ir.Assign([regs[1]], [ir.Literal(True)])]
    assert graph.successors(then_node) == graph.successors(else_node)
    (join,) = graph.successors(then_node)
    assert graph.block(join) == [ir.ReturnStat([regs[1]])]


@pytest.mark.parametrize(
    "kind, operation",
    [
        (bc.Add, ir.BinaryOperation.ADD),
        (bc.Sub, ir.BinaryOperation.SUB),
        (bc.Mul, ir.BinaryOperation.MUL),
        (bc.Div, ir.BinaryOperation.DIV),
        (bc.Mod, ir.BinaryOperation.MOD),
        (bc.Pow, ir.BinaryOperation.POW),
    ],
)
def test_arithmetic(kind, operation):
    code = [kind(R(0), R(1), K(0)), bc.Return(R(0), 1)]
    _, graph, regs, node = lift_main(proto(code, [2.0]))
    assert graph.block(node)[0] == ir.Assign(
        [regs[0]], [ir.Binary(regs[1], ir.Literal(2.0), operation)]
    )


def test_concatenate_nests_to_the_right():
    code = [bc.Concatenate(R(0), (R(1), R(2), R(3))), bc.Return(R(0), 1)]
    _, graph, regs, node = lift_main(proto(code))
    concat = ir.BinaryOperation.CONCAT
    assert graph.block(node)[0] == ir.Assign(
        [regs[0]],
        [ir.Binary(regs[1], ir.Binary(regs[2], regs[3], concat), concat)],
    )


def test_open_call_consumes_vararg():
    code = [bc.VarArg(R(1), 0), bc.Call(R(0), 0, 1), bc.Return(R(0), 1)]
    _, graph, regs, node = lift_main(proto(code))
    assert graph.block(node) == [
        ir.Call(regs[0], [ir.VarArgs()]),
        ir.ReturnStat([]),
    ]


def test_multiple_results_and_open_return():
    code = [bc.Call(R(0), 2, 3), bc.Call(R(0), 1, 0), bc.Return(R(0), 0)]
    _, graph, regs, node = lift_main(proto(code))
    assert graph.block(node) == [
        ir.Assign([regs[0], regs[1]], [ir.Select(ir.Call(regs[0], [regs[1]]))]),
        ir.ReturnStat([ir.Call(regs[0], [])]),
    ]


def test_open_return_without_call_fails():
    with pytest.raises(LiftError):
        lift(proto([bc.Return(R(0), 0)]))


def test_global_name_must_be_string():
    with pytest.raises(LiftError):
        lift(proto([bc.GetGlobal(R(0), K(0)), bc.Return(R(0), 1)], [1.0]))


def test_globals():
    code = [bc.GetGlobal(R(0), K(0)), bc.SetGlobal(K(1), R(0)), bc.Return(R(0), 1)]
    _, graph, regs, node = lift_main(proto(code, [b"print", b"out"]))
    assert graph.block(node)[:2] == [
        ir.Assign([regs[0]], [ir.Global(b"print")]),
        ir.Assign([ir.Global(b"out")], [regs[0]]),
    ]


def test_closure_captures_and_nested_function():
    child = proto(
        [bc.GetUpvalue(R(0), bc.Upvalue(0)), bc.Return(R(0), 2)], max_stack=1, nups=1
    )
    parent = proto(
        [bc.Closure(R(0), bc.ClosureIndex(0)), bc.Move(R(0), R(1)), bc.Return(R(0), 2)],
        max_stack=2,
        closures=[child],
    )
    functions = lift(parent)
    assert len(functions) == 2
    main, nested = functions
    assert isinstance(nested, LiftedFunction)
    regs = registers(main.graph)
    body = main.graph.block(first_block(main.graph))
    assert body == [
        ir.Assign([regs[0]], [ir.ClosureExpr(nested, [regs[1]])]),
        ir.ReturnStat([regs[0]]),
    ]
    child_regs = registers(nested.graph)
    child_body = nested.graph.block(first_block(nested.graph))
    assert child_body[0] == ir.Assign([child_regs[0]], [nested.upvalues[0]])


def test_closure_without_captures_fails():
    child = proto([bc.Return(R(0), 1)], max_stack=1, nups=1)
    parent = proto(
        [bc.Closure(R(0), bc.ClosureIndex(0)), bc.Return(R(0), 1)], closures=[child]
    )
    with pytest.raises(LiftError):
        lift(parent)


def test_numeric_for_loop_counter_copied_into_body():
    control = tuple(R(i) for i in range(5))
    code = [
        bc.InitNumericForLoop(control, 1),
        bc.Move(R(4), R(3)),
        bc.IterateNumericForLoop(control, -2),
        bc.Return(R(0), 1),
    ]
    _, graph, regs, node = lift_main(proto(code, max_stack=6))
    assert graph.block(node) == [ir.NumForInit(regs[0], regs[1], regs[2])]
    (loop,) = graph.successors(node)
    assert graph.block(loop) == [ir.NumForNext(regs[0], regs[1], regs[2])]
    edges = out_edges(graph, loop)
    body = edges[ir.BranchType.THEN]
    assert graph.block(body) == [
        ir.Assign([regs[3]], [regs[0]]),
        ir.Assign([regs[4]], [regs[3]]),
    ]
    assert graph.successors(body) == [loop]


def test_generic_for_loop_inserts_block_for_shared_body():
    code = [
        bc.Test(R(4), False),
        bc.IterateGenericForLoop(R(0), R(1), R(2), (R(3),)),
        bc.Return(R(0), 1),
        bc.Return(R(0), 1),
    ]
    _, graph, regs, node = lift_main(proto(code, max_stack=5))
    test_edges = out_edges(graph, node)
    loop = test_edges[ir.BranchType.THEN]
    assert graph.block(loop) == [
        ir.Assign([regs[3]], [ir.Call(regs[0], [regs[1], regs[2]])]),
        ir.If(ir.Binary(regs[3], ir.Literal(None), ir.BinaryOperation.NOT_EQUAL)),
    ]
    loop_edges = out_edges(graph, loop)
    between = loop_edges[ir.BranchType.THEN]
    assert graph.block(between) == [ir.Assign([regs[2]], [regs[3]])]
    assert graph.successors(between) == [test_edges[ir.BranchType.ELSE]]
    assert graph.block(test_edges[ir.BranchType.ELSE]) == [ir.ReturnStat([])]


def test_load_boolean_skip_next():
    code = [
        bc.LoadBoolean(R(0), True, True),
        bc.LoadBoolean(R(0), False, False),
        bc.Return(R(0), 2),
    ]
    _, graph, regs, node = lift_main(proto(code))
    (target,) = graph.successors(node)
    assert graph.block(target) == [ir.ReturnStat([regs[0]])]


def test_test_set_assigns_in_fallthrough_block():
    code = [bc.TestSet(R(0), R(1), False), bc.Jump(0), bc.Return(R(0), 2)]
    _, graph, regs, node = lift_main(proto(code))
    assert graph.block(node) == [ir.If(regs[1])]
    then_node = out_edges(graph, node)[ir.BranchType.THEN]
    assert graph.block(then_node) == [ir.Assign([regs[0]], [regs[1]])]


def test_set_list_and_close():
    code = [
        bc.NewTable(R(0), 0, 0),
        bc.SetList(R(0), 2, 1),
        bc.Close(R(1)),
        bc.Return(R(0), 1),
    ]
    _, graph, regs, node = lift_main(proto(code, max_stack=3))
    assert graph.block(node)[:3] == [
        ir.Assign([regs[0]], [ir.Table()]),
        ir.SetListStat(regs[0], 1, [regs[1], regs[2]], None),
        ir.CloseStat([regs[1], regs[2]]),
    ]


def test_set_list_extended_block_number_is_unsupported():
    with pytest.raises(UnsupportedBytecodeError):
        lift(proto([bc.SetList(R(0), 1, 0), bc.Return(R(0), 1)]))


def test_lifter_runs_once():
    lifter = Lifter(proto([bc.Return(R(0), 1)]), [])
    graph, _ = lifter.lift()
    assert graph.entry is not None
    with pytest.raises(LiftError):
        lifter.lift()