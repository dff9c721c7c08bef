"""
The core Juice interpreter: the Evaluator.

`execute` and `evaluate` return either a value or a Flow. Flow values are
ordinary results here, not exceptions: `return`, `break` and `continue`
travel outward as Flows until a loop, a call or the top level decides what
to do with them, and errors travel the same way until they reach `run`.
"""

import os
import sys
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from juice.juice_ast import (
    Program, Block, VarDecl, ObjectDecl, TraitDecl,
    While, For, If, Break, Continue, Return, ExprStmt,
    Literal, Identifier, ArrayLiteral, ObjectLiteral,
    Binary, Unary, Assign, Call, MethodCall, FieldAccess, IndexAccess
)
from juice.juice_datatypes import (
    Environment, Flow, JuiceArray, JuiceObject, Method, NativeFunction, Prototype, Trait,
    Void, is_flow, is_number, kind_name
)
from juice.juice_operators import binary_op, unary_op


class Evaluator:
    """The Juice execution engine."""

    def __init__(self, max_call_depth: int = 512, recursion_limit: int = 20000):
        self.globals = Environment()
        self.env = self.globals
        # Registries live as long as the evaluator; entries are never replaced.
        self.prototypes: Dict[str, Prototype] = {}
        self.traits: Dict[str, Trait] = {}
        self.side_effects: List[Dict[str, Any]] = []
        self.call_stack: List[Dict[str, Any]] = []
        self.current_node = None
        self.last_value: Any = Void
        self.max_call_depth = max_call_depth
        # Each Juice call costs several host frames; `run` raises the host
        # limit to this while it executes.
        self.recursion_limit = recursion_limit

    # ----------------------------------------------------------------
    # Host interface
    # ----------------------------------------------------------------

    def register_native(self, name: str, function, min_arity: int = 0,
                        max_arity: Optional[int] = 0) -> NativeFunction:
        """Binds a host function into the global frame. `max_arity=None` is variadic."""
        native = NativeFunction(name, function, min_arity, max_arity)
        defined = self.globals.define(name, native)
        if is_flow(defined):
            raise ValueError(defined.message)
        return native

    def run(self, statements) -> Any:
        """Executes a program.

        Returns Void when every statement completed, otherwise the error Flow
        that stopped execution. A return, break or continue that reaches this
        level is turned into an error. The value of the last top-level
        expression statement is kept in `last_value`.
        """
        if isinstance(statements, Program):
            statements = statements.statements
        self.last_value = Void
        previous_limit = sys.getrecursionlimit()
        sys.setrecursionlimit(max(previous_limit, self.recursion_limit))
        try:
            return self._run_statements(statements)
        except RecursionError:
            # A finally block may itself hit the limit while unwinding.
            self.env = self.globals
            self.call_stack.clear()
            return self._stamp(Flow.error("RecursionError: host recursion limit reached"),
                               self.current_node)
        finally:
            sys.setrecursionlimit(previous_limit)

    def _run_statements(self, statements) -> Any:
        for stmt in statements:
            if isinstance(stmt, ExprStmt):
                result = self.evaluate(stmt.expression)
                if not is_flow(result):
                    self.last_value = result
                    continue
            else:
                result = self.execute(stmt)
            if is_flow(result):
                return self._stamp(self._top_level(result), stmt)
        return Void

    # ----------------------------------------------------------------
    # Bookkeeping
    # ----------------------------------------------------------------

    def _push_frame(self, name, callee, args, call_site_node):
        loc = getattr(call_site_node, 'loc', None)
        self.call_stack.append({
            'name': name,
            'callee': callee,
            'args': args,
            'call_site': loc,
        })

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    def _dbg(self, *parts):
        if os.environ.get("JUICE_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    @contextmanager
    def scope(self, parent: Optional[Environment] = None):
        """Makes a fresh frame current, restoring the previous frame on every exit."""
        previous = self.env
        self.env = Environment(previous if parent is None else parent)
        self._dbg("push scope", self.env.depth())
        try:
            yield self.env
        finally:
            depth = self.env.depth()
            self.env = previous
            self._dbg("pop scope", depth)

    def _stamp(self, flow: Flow, node) -> Flow:
        """Records where an error surfaced: the innermost node with a location wins."""
        if flow.is_error:
            if flow.loc is None:
                flow.loc = getattr(node, 'loc', None)
            if flow.trace is None:
                flow.trace = [dict(frame) for frame in self.call_stack]
        return flow

    def _misplaced(self, flow: Flow, outside: str) -> Flow:
        error = Flow.error(f"ControlFlowError: '{flow.kind}' used outside {outside}")
        error.loc = flow.loc
        return error

    def _top_level(self, flow: Flow) -> Flow:
        match flow.kind:
            case Flow.BREAK | Flow.CONTINUE:
                return self._misplaced(flow, "a loop")
            case Flow.RETURN:
                return self._misplaced(flow, "a method")
        return flow

    # ----------------------------------------------------------------
    # Statements
    # ----------------------------------------------------------------

    def execute(self, stmt) -> Any:
        self.current_node = stmt
        result = self._execute(stmt)
        if is_flow(result):
            self._stamp(result, stmt)
        return result

    def execute_block(self, statements) -> Any:
        """Runs statements in the current frame, stopping at the first Flow."""
        for stmt in statements:
            result = self.execute(stmt)
            if is_flow(result):
                return result
        return Void

    def _execute(self, stmt) -> Any:
        match stmt:
            case ExprStmt(expression=expression):
                result = self.evaluate(expression)
                return result if is_flow(result) else Void

            case VarDecl(name=name, initializer=initializer):
                value = self.evaluate(initializer)
                if is_flow(value):
                    return value
                return self.env.define(name, value)

            case Block(statements=statements):
                with self.scope():
                    return self.execute_block(statements)

            case If(condition=condition, then_branch=then_branch, else_branch=else_branch):
                test = self._condition(condition, "if")
                if is_flow(test):
                    return test
                branch = then_branch if test else else_branch
                return Void if branch is None else self.execute(branch)

            case While():
                return self._execute_while(stmt)

            case For():
                return self._execute_for(stmt)

            case Break():
                return self._signal(Flow.brk(), stmt)

            case Continue():
                return self._signal(Flow.cont(), stmt)

            case Return(value=expression):
                value = Void if expression is None else self.evaluate(expression)
                if is_flow(value):
                    return value
                return self._signal(Flow.ret(value), stmt)

            case ObjectDecl():
                return self._declare_object(stmt)

            case TraitDecl():
                return self._declare_trait(stmt)

        return Flow.error(f"InternalError: cannot execute {type(stmt).__name__}")

    def _signal(self, flow: Flow, stmt) -> Flow:
        flow.loc = getattr(stmt, 'loc', None)
        return flow

    def _condition(self, expr, keyword: str):
        value = self.evaluate(expr)
        if is_flow(value):
            return value
        if not isinstance(value, bool):
            error = Flow.error(f"TypeError: {keyword} condition must be a bool, got {kind_name(value)}")
            return self._stamp(error, expr)
        return value

    def _execute_while(self, stmt: While) -> Any:
        while True:
            test = self._condition(stmt.condition, "while")
            if is_flow(test):
                return test
            if not test:
                return Void
            result = self.execute(stmt.body)
            if is_flow(result):
                if result.is_break:
                    return Void
                if result.is_continue:
                    continue
                return result

    def _execute_for(self, stmt: For) -> Any:
        iterable = self.evaluate(stmt.iterable)
        if is_flow(iterable):
            return iterable
        if not isinstance(iterable, JuiceArray):
            error = Flow.error(f"TypeError: can only iterate over arrays, not {kind_name(iterable)}")
            return self._stamp(error, stmt.iterable)
        # Elements appended by the body are not visited in this loop.
        for element in list(iterable):
            with self.scope():
                self.env.define(stmt.name, element)
                result = self.execute(stmt.body)
            if is_flow(result):
                if result.is_break:
                    return Void
                if result.is_continue:
                    continue
                return result
        return Void

    def _declare_object(self, decl: ObjectDecl) -> Any:
        if decl.name in self.prototypes:
            return Flow.error(f"NameError: type '{decl.name}' is already defined")
        methods: Dict[str, Method] = {}
        for method_decl in decl.methods:
            if method_decl.name in methods:
                return self._stamp(
                    Flow.error(f"NameError: method '{method_decl.name}' is already defined on {decl.name}"),
                    method_decl)
            methods[method_decl.name] = Method(method_decl, closure=self.env, owner=decl.name)
        traits = decl.traits.names if decl.traits else []
        self.prototypes[decl.name] = Prototype(decl.name, methods, traits, closure=self.env)
        self._dbg("object", decl.name, "methods", list(methods), "traits", traits)
        return Void

    def _declare_trait(self, decl: TraitDecl) -> Any:
        if decl.name in self.traits:
            return Flow.error(f"NameError: trait '{decl.name}' is already defined")
        traits = decl.traits.names if decl.traits else []
        self.traits[decl.name] = Trait(decl.name, decl.signatures, traits)
        self._dbg("trait", decl.name, "signatures", [s.name for s in decl.signatures])
        return Void

    # ----------------------------------------------------------------
    # Expressions
    # ----------------------------------------------------------------

    def evaluate(self, expr) -> Any:
        self.current_node = expr
        result = self._evaluate(expr)
        if is_flow(result):
            self._stamp(result, expr)
        return result

    def _evaluate_all(self, exprs) -> Any:
        """Evaluates left to right; returns a list of values or the first Flow."""
        values = []
        for expr in exprs:
            value = self.evaluate(expr)
            if is_flow(value):
                return value
            values.append(value)
        return values

    def _evaluate(self, expr) -> Any:
        match expr:
            case Literal(value=value):
                return value

            case Identifier(name=name):
                return self.env.get(name)

            case ArrayLiteral(elements=elements):
                values = self._evaluate_all(elements)
                return values if is_flow(values) else JuiceArray(values)

            case ObjectLiteral():
                return self._construct(expr)

            case Binary(op=op, left=left_expr, right=right_expr):
                left = self.evaluate(left_expr)
                if is_flow(left):
                    return left
                right = self.evaluate(right_expr)
                if is_flow(right):
                    return right
                return binary_op(op, left, right)

            case Unary(op=op, operand=operand_expr):
                operand = self.evaluate(operand_expr)
                if is_flow(operand):
                    return operand
                return unary_op(op, operand)

            case Assign():
                return self._assign(expr)

            case Call(callee=callee_expr, args=arg_exprs):
                callee = self.evaluate(callee_expr)
                if is_flow(callee):
                    return callee
                if not isinstance(callee, (Method, NativeFunction)):
                    return Flow.error(f"TypeError: {kind_name(callee)} is not callable")
                args = self._evaluate_all(arg_exprs)
                if is_flow(args):
                    return args
                return self.call(callee, args, expr)

            case MethodCall(receiver=receiver_expr, name=name, args=arg_exprs):
                receiver = self._object_receiver(receiver_expr, "call methods on")
                if is_flow(receiver):
                    return receiver
                method = receiver.get_method(name)
                if is_flow(method):
                    return method
                args = self._evaluate_all(arg_exprs)
                if is_flow(args):
                    return args
                return self.call(method, args, expr)

            case FieldAccess(receiver=receiver_expr, name=name):
                receiver = self._object_receiver(receiver_expr, "access fields on")
                if is_flow(receiver):
                    return receiver
                if receiver.has_field(name):
                    return receiver.fields[name]
                # `obj.method` without a call yields the bound method itself
                if name in receiver.methods:
                    return receiver.methods[name]
                return receiver.get_field(name)

            case IndexAccess(target=target_expr, index=index_expr):
                array = self.evaluate(target_expr)
                if is_flow(array):
                    return array
                index = self.evaluate(index_expr)
                if is_flow(index):
                    return index
                position = self._checked_index(array, index)
                if is_flow(position):
                    return position
                return array[position]

        return Flow.error(f"InternalError: cannot evaluate {type(expr).__name__}")

    def _object_receiver(self, expr, action: str):
        receiver = self.evaluate(expr)
        if is_flow(receiver):
            return receiver
        if not isinstance(receiver, JuiceObject):
            return Flow.error(f"TypeError: can only {action} objects, not {kind_name(receiver)}")
        return receiver

    def _checked_index(self, array, index):
        """Returns the integer position for `array[index]`, or an error Flow."""
        if not isinstance(array, JuiceArray):
            return Flow.error(f"TypeError: can only index arrays, not {kind_name(array)}")
        if not is_number(index):
            return Flow.error(f"TypeError: array index must be a number, not {kind_name(index)}")
        if not float(index).is_integer():
            return Flow.error(f"IndexError: array index must be a whole number, got {index}")
        position = int(index)
        if not array.in_bounds(position):
            return Flow.error(
                f"IndexError: index {position} out of bounds for array of length {len(array)}")
        return position

    def _assign(self, expr: Assign) -> Any:
        match expr.target:
            case Identifier(name=name):
                value = self.evaluate(expr.value)
                if is_flow(value):
                    return value
                return self.env.set(name, value)

            case FieldAccess(receiver=receiver_expr, name=name):
                receiver = self._object_receiver(receiver_expr, "assign fields on")
                if is_flow(receiver):
                    return receiver
                value = self.evaluate(expr.value)
                if is_flow(value):
                    return value
                return receiver.set_field(name, value)

            case IndexAccess(target=target_expr, index=index_expr):
                array = self.evaluate(target_expr)
                if is_flow(array):
                    return array
                index = self.evaluate(index_expr)
                if is_flow(index):
                    return index
                value = self.evaluate(expr.value)
                if is_flow(value):
                    return value
                position = self._checked_index(array, index)
                if is_flow(position):
                    return position
                array[position] = value
                return value

        return self._stamp(Flow.error("AssignmentError: invalid assignment target"), expr.target)

    # ----------------------------------------------------------------
    # Objects and calls
    # ----------------------------------------------------------------

    def _evaluate_fields(self, fields) -> Any:
        """Evaluates field initializers in source order into a name to value dict."""
        values: Dict[str, Any] = {}
        for field_init in fields:
            if field_init.name in values:
                return self._stamp(
                    Flow.error(f"ConstructorError: field '{field_init.name}' is given more than once"),
                    field_init)
            value = self.evaluate(field_init.value)
            if is_flow(value):
                return value
            values[field_init.name] = value
        return values

    def _construct(self, expr: ObjectLiteral) -> Any:
        if expr.type_name is None:
            values = self._evaluate_fields(expr.fields)
            if is_flow(values):
                return values
            instance = JuiceObject()
            for name, value in values.items():
                instance.declare_field(name, value)
            return instance

        prototype = self.prototypes.get(expr.type_name)
        if prototype is None:
            return Flow.error(f"TypeError: type '{expr.type_name}' is not defined")
        instance = prototype.instantiate()
        init = instance.methods.get("init")

        if init is None:
            values = self._evaluate_fields(expr.fields)
            if is_flow(values):
                return values
            for name, value in values.items():
                instance.declare_field(name, value)
            return instance

        given = [f.name for f in expr.fields]
        for param in init.params:
            if param not in given:
                return Flow.error(f"ConstructorError: missing field '{param}' for {expr.type_name}.init")
        for name in given:
            if name not in init.params:
                return Flow.error(f"ConstructorError: unexpected field '{name}' for {expr.type_name}.init")
        values = self._evaluate_fields(expr.fields)
        if is_flow(values):
            return values

        instance.initializing = True
        try:
            result = self.call(init, [values[p] for p in init.params], expr)
        finally:
            instance.initializing = False
        return result if is_flow(result) else instance

    def call(self, callee, args: List[Any], call_site=None) -> Any:
        """Applies the call contract to a Method or NativeFunction.

        Checks arity, runs the body in a fresh frame and maps the outcome:
        Return(v) gives v, normal completion of a method gives Void, a break or
        continue that escapes is an error, and errors pass through.
        """
        error = callee.arity_error(len(args))
        if error is not None:
            return error
        is_method = isinstance(callee, Method)
        if is_method and callee.this is None:
            return Flow.error(f"TypeError: method '{callee.qualified_name}' is not bound to an object")
        if len(self.call_stack) >= self.max_call_depth:
            return Flow.error(f"RecursionError: maximum call depth of {self.max_call_depth} exceeded")

        name = callee.qualified_name
        self._push_frame(name, callee, args, call_site)
        self._dbg("call", name, "argc", len(args), "depth", len(self.call_stack))
        try:
            if is_method:
                result = self._invoke_method(callee, args)
            else:
                with self.scope(self.globals):
                    result = callee.function(*args)
            if is_flow(result):
                if result.is_return:
                    return result.value
                if result.is_break or result.is_continue:
                    result = self._misplaced(result, "a loop")
                # The trace is taken while the failing frame is still on the stack.
                if result.trace is None:
                    result.trace = [dict(frame) for frame in self.call_stack]
            return result
        finally:
            self._pop_frame()

    def _invoke_method(self, method: Method, args: List[Any]) -> Any:
        with self.scope(method.closure or self.globals):
            self.env.define("this", method.this)
            for param, arg in zip(method.params, args):
                defined = self.env.define(param, arg)
                if is_flow(defined):
                    return defined
            return self.execute_block(method.declaration.body.statements)
