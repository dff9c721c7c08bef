import pytest

from juice.juice_ast import (
    Program, Block, VarDecl, ObjectDecl, MethodDecl, Signature, Param,
    While, For, If, Break, Continue, Return, ExprStmt,
    Literal, Identifier, ArrayLiteral, ObjectLiteral, FieldInit,
    Binary, Assign, Call, MethodCall, FieldAccess, IndexAccess
)
from juice.juice_datatypes import Flow, JuiceArray, JuiceObject, Method, Void, is_flow
from juice.juice_interpreter import Evaluator


@pytest.fixture
def evaluator():
    return Evaluator()


def num(n):
    return Literal(float(n))


def assert_flow_error(result, contains):
    assert is_flow(result) and result.is_error, f"expected error flow, got {result!r}"
    assert contains in result.message


def test_run_records_last_expression_value(evaluator):
    outcome = evaluator.run(Program([
        VarDecl("x", num(2)),
        ExprStmt(Binary('*', Identifier("x"), num(21))),
    ]))
    assert outcome is Void
    assert evaluator.last_value == 42.0


def test_run_accepts_plain_statement_list(evaluator):
    assert evaluator.run([ExprStmt(num(1))]) is Void
    assert evaluator.last_value == 1.0


def test_block_scope_restored_after_error(evaluator):
    outcome = evaluator.run([
        Block([VarDecl("x", num(1)), ExprStmt(Binary('/', num(1), num(0)))]),
    ])
    assert_flow_error(outcome, "ZeroDivisionError")
    assert evaluator.env is evaluator.globals
    assert "x" not in evaluator.globals


def test_block_scope_restored_after_break(evaluator):
    outcome = evaluator.run([
        While(Literal(True), Block([Block([Block([Break()])])])),
    ])
    assert outcome is Void
    assert evaluator.env is evaluator.globals


def test_scope_context_manager_restores_on_exception(evaluator):
    with pytest.raises(RuntimeError):
        with evaluator.scope():
            evaluator.env.define("tmp", 1.0)
            raise RuntimeError("boom")
    assert evaluator.env is evaluator.globals
    assert "tmp" not in evaluator.globals


def test_continue_skips_rest_of_body(evaluator):
    evaluator.run([
        VarDecl("hits", num(0)),
        For("x", ArrayLiteral([num(1), num(2), num(3)]), Block([
            If(Binary('==', Identifier("x"), num(2)), Block([Continue()])),
            ExprStmt(Assign(Identifier("hits"), Binary('+', Identifier("hits"), num(1)))),
        ])),
    ])
    assert evaluator.globals.get("hits") == 2.0


def test_register_native_enforces_arity(evaluator):
    evaluator.register_native("twice", lambda v: v * 2, 1, 1)
    evaluator.run([ExprStmt(Call(Identifier("twice"), [num(2)]))])
    assert evaluator.last_value == 4.0

    too_few = evaluator.run([ExprStmt(Call(Identifier("twice"), []))])
    assert_flow_error(too_few, "ArityError: twice expected 1 argument(s) but got 0")
    too_many = evaluator.run([ExprStmt(Call(Identifier("twice"), [num(1), num(2)]))])
    assert_flow_error(too_many, "got 2")


def test_variadic_native(evaluator):
    evaluator.register_native("count", lambda *args: float(len(args)), 0, None)
    evaluator.run([ExprStmt(Call(Identifier("count"), [num(1), num(2), num(3)]))])
    assert evaluator.last_value == 3.0


def test_register_native_rejects_duplicates(evaluator):
    evaluator.register_native("f", lambda: Void)
    with pytest.raises(ValueError):
        evaluator.register_native("f", lambda: Void)


def test_native_runs_in_a_frame_off_globals(evaluator):
    seen = []

    def check_frame():
        seen.append(evaluator.env.parent is evaluator.globals)
        return Void

    evaluator.register_native("check_frame", check_frame)
    evaluator.run([Block([ExprStmt(Call(Identifier("check_frame"), []))])])
    assert seen == [True]
    assert evaluator.env is evaluator.globals


def test_unbound_method_cannot_be_called(evaluator):
    decl = MethodDecl(Signature("m", []), Block([]))
    result = evaluator.call(Method(decl, owner="T"), [])
    assert_flow_error(result, "TypeError: method 'T.m' is not bound to an object")


def test_call_stack_is_empty_after_calls(evaluator):
    decl = MethodDecl(Signature("id", [Param("v")]), Block([Return(Identifier("v"))]))
    method = Method(decl, closure=evaluator.globals, owner="T").bind(JuiceObject("T"))
    assert evaluator.call(method, ["x"]) == "x"
    assert evaluator.call_stack == []


def test_error_trace_captures_frames(evaluator):
    failing = MethodDecl(Signature("boom", [Param("v")]),
                         Block([ExprStmt(Binary('/', Identifier("v"), num(0)))]))
    outcome = evaluator.run([
        ObjectDecl("Bomb", [failing]),
        VarDecl("b", ObjectLiteral("Bomb", [])),
        ExprStmt(MethodCall(Identifier("b"), "boom", [num(3)])),
    ])
    assert_flow_error(outcome, "ZeroDivisionError")
    assert [frame['name'] for frame in outcome.trace] == ["Bomb.boom"]
    assert outcome.trace[0]['args'] == [3.0]
    assert evaluator.call_stack == []


def test_construct_with_init_runs_in_initializing_mode(evaluator):
    init = MethodDecl(Signature("init", [Param("x")]), Block([
        ExprStmt(Assign(FieldAccess(Identifier("this"), "x"), Identifier("x"))),
        ExprStmt(Assign(FieldAccess(Identifier("this"), "double"),
                        Binary('*', Identifier("x"), num(2)))),
    ]))
    evaluator.run([
        ObjectDecl("P", [init]),
        ExprStmt(ObjectLiteral("P", [FieldInit("x", num(4))])),
    ])
    instance = evaluator.last_value
    assert isinstance(instance, JuiceObject)
    assert instance.fields == {"x": 4.0, "double": 8.0}
    assert instance.initializing is False


def test_instances_get_methods_bound_to_themselves(evaluator):
    decl = MethodDecl(Signature("me", []), Block([Return(Identifier("this"))]))
    evaluator.run([ObjectDecl("Self", [decl])])
    prototype = evaluator.prototypes["Self"]
    first, second = prototype.instantiate(), prototype.instantiate()
    assert first.methods["me"].this is first
    assert second.methods["me"].this is second
    assert prototype.methods["me"].this is None
    assert evaluator.call(first.methods["me"], []) is first


def test_index_assignment_through_alias(evaluator):
    evaluator.run([
        VarDecl("a", ArrayLiteral([num(1), num(2)])),
        VarDecl("b", Identifier("a")),
        ExprStmt(Assign(IndexAccess(Identifier("b"), num(0)), num(9))),
        ExprStmt(IndexAccess(Identifier("a"), num(0))),
    ])
    assert evaluator.last_value == 9.0
    assert isinstance(evaluator.globals.get("a"), JuiceArray)


def test_errors_carry_the_failing_node_location(evaluator):
    failing = Binary('/', num(1), num(0), loc={'line': 3, 'col': 7, 'tag': 'multiplicative_op', 'text': '/'})
    outcome = evaluator.run([ExprStmt(failing, loc={'line': 3, 'col': 1})])
    assert outcome.loc['line'] == 3
    assert outcome.loc['col'] == 7


def test_flow_kinds():
    assert Flow.ret().value is Void
    assert Flow.ret(1.0).is_return
    assert Flow.brk().is_break and Flow.cont().is_continue
    error = Flow.error("X: y")
    assert error.is_error and error.message == "X: y"
    assert not error.is_return


def test_method_arity_error_names_the_owner(evaluator):
    decl = MethodDecl(Signature("inc", []), Block([]))
    method = Method(decl, closure=evaluator.globals, owner="Counter").bind(JuiceObject("Counter"))
    result = evaluator.call(method, [1.0])
    assert_flow_error(result, "ArityError: Counter.inc expected 0 argument(s) but got 1")


def _countdown_program(depth):
    # f(n) { if (n < 1) { return 0; } return this.f(n - 1) + 1; }
    body = Block([
        If(Binary('<', Identifier("n"), num(1)), Block([Return(num(0))])),
        Return(Binary('+', MethodCall(Identifier("this"), "f", [Binary('-', Identifier("n"), num(1))]), num(1))),
    ])
    return Program([
        ObjectDecl("R", [MethodDecl(Signature("f", [Param("n")]), body)]),
        VarDecl("r", ObjectLiteral("R", [])),
        ExprStmt(MethodCall(Identifier("r"), "f", [num(depth)])),
    ])


def test_run_handles_deep_recursion_without_a_runner(evaluator):
    import sys
    limit_before = sys.getrecursionlimit()
    outcome = evaluator.run(_countdown_program(300))
    assert outcome is Void
    assert evaluator.last_value == 300.0
    assert sys.getrecursionlimit() == limit_before


def test_run_reports_call_depth_limit_as_flow(evaluator):
    outcome = evaluator.run(_countdown_program(600))
    assert_flow_error(outcome, "RecursionError: maximum call depth of 512 exceeded")
    assert evaluator.call_stack == []
    assert evaluator.env is evaluator.globals


def test_host_recursion_limit_becomes_a_flow_error():
    shallow = Evaluator(max_call_depth=10_000, recursion_limit=1)
    outcome = shallow.run(_countdown_program(5000))
    assert_flow_error(outcome, "RecursionError: host recursion limit reached")
    assert shallow.env is shallow.globals
    assert shallow.call_stack == []
