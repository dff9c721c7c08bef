# juice_runtime.py

import re
import inspect
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional
from dataclasses import dataclass, field

from koine import Parser
from juice.juice_transformer import JuiceTransformer
from juice.juice_interpreter import Evaluator
from juice.juice_datatypes import (
    Flow, JuiceArray, JuiceObject, Void, is_flow, is_number, kind_name
)
from juice.juice_operators import values_equal
from juice.juice_printer import Printer

GRAMMAR_PATH = Path(__file__).parent / "grammar" / "juice_grammar.yaml"


# ===================================================================
# 1. Built-in functions
# ===================================================================

def native(min_arity: int, max_arity: Optional[int]):
    """Marks a StdLib method as a native built-in with the given arity bounds."""
    def decorator(func):
        func._juice_arity = (min_arity, max_arity)
        return func
    return decorator


def _expect_array(value, fn_name: str):
    if not isinstance(value, JuiceArray):
        return Flow.error(f"TypeError: {fn_name} expects an array, got {kind_name(value)}")
    return value


def _position(array: JuiceArray, index, fn_name: str, allow_end: bool = False):
    if not is_number(index):
        return Flow.error(f"TypeError: {fn_name} expects a number index, got {kind_name(index)}")
    if not float(index).is_integer():
        return Flow.error(f"IndexError: array index must be a whole number, got {index}")
    position = int(index)
    limit = len(array) + 1 if allow_end else len(array)
    if not 0 <= position < limit:
        return Flow.error(f"IndexError: index {position} out of bounds for array of length {len(array)}")
    return position


class StdLib:
    """Python implementations of the Juice built-ins.

    Every method decorated with @native is registered into the evaluator's
    global frame under its name without the leading underscore.
    """
    def __init__(self, evaluator: Evaluator):
        self.evaluator = evaluator
        self.printer = Printer()

    def install(self):
        for name, member in inspect.getmembers(self):
            bounds = getattr(member, "_juice_arity", None)
            if bounds is None:
                continue
            self.evaluator.register_native(name.lstrip('_'), member, *bounds)

    def emit(self, topic: str, message: str):
        """Generates a side-effect event for the host application."""
        self.evaluator.side_effects.append({"topics": [topic], "message": message})

    # --- Output and conversion ---
    @native(0, None)
    def _print(self, *values):
        self.emit("stdout", " ".join(self.printer.display(v) for v in values))
        return Void

    @native(1, 1)
    def _str(self, value):
        return self.printer.display(value)

    @native(2, 2)
    def _assert(self, actual, expected):
        if values_equal(actual, expected):
            return Void
        return Flow.error(
            f"AssertionError: expected {self.printer.pformat(actual)} == {self.printer.pformat(expected)}"
        )

    @native(1, 1)
    def _addr(self, value):
        return f"0x{id(value):x}"

    # --- Sequences ---
    @native(1, 1)
    def _length(self, value):
        match value:
            case str() | JuiceArray():
                return float(len(value))
        return Flow.error(f"TypeError: length expects a string or array, got {kind_name(value)}")

    _len = _length

    @native(2, 3)
    def _range(self, start, end, step=1.0):
        for bound in (start, end, step):
            if not is_number(bound):
                return Flow.error(f"TypeError: range expects numbers, got {kind_name(bound)}")
        if step == 0:
            return Flow.error("ValueError: range step must not be zero")
        values = []
        x = float(start)
        while (x < end) if step > 0 else (x > end):
            values.append(x)
            x += step
        return JuiceArray(values)

    @native(2, 2)
    def _push(self, array, value):
        array = _expect_array(array, "push")
        if is_flow(array):
            return array
        array.append(value)
        return Void

    @native(3, 3)
    def _insert(self, array, index, value):
        array = _expect_array(array, "insert")
        if is_flow(array):
            return array
        position = _position(array, index, "insert", allow_end=True)
        if is_flow(position):
            return position
        array.insert(position, value)
        return Void

    @native(2, 2)
    def _remove_at(self, array, index):
        array = _expect_array(array, "remove_at")
        if is_flow(array):
            return array
        position = _position(array, index, "remove_at")
        if is_flow(position):
            return position
        return array.pop(position)

    @native(2, 2)
    def _remove(self, array, value):
        """Removes the first element equal to `value`; returns whether one was found."""
        array = _expect_array(array, "remove")
        if is_flow(array):
            return array
        for i, item in enumerate(array):
            if values_equal(item, value):
                del array[i]
                return True
        return False

    @native(1, 1)
    def _clear(self, array):
        array = _expect_array(array, "clear")
        if is_flow(array):
            return array
        array.clear()
        return Void


# ===================================================================
# 2. Script execution
# ===================================================================

@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[Dict[str, Any]] = None
    side_effects: List[Dict] = field(default_factory=list)

    @property
    def stdout(self) -> List[str]:
        return [e['message'] for e in self.side_effects if e.get('topics') == ['stdout']]

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")

        if self.error_token and 'line' in self.error_token:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


class ScriptRunner:
    """Parses, transforms, and executes Juice code.

    One runner owns one Evaluator, so globals and declared types persist
    across `handle_script` calls (the REPL relies on this).
    """

    _parser: Optional[Parser] = None
    _transformer: Optional[JuiceTransformer] = None

    def __init__(self, load_std: bool = True, max_call_depth: int = 512, recursion_limit: int = 20000):
        if ScriptRunner._parser is None:
            ScriptRunner._parser = Parser.from_file(str(GRAMMAR_PATH))
        if ScriptRunner._transformer is None:
            ScriptRunner._transformer = JuiceTransformer()

        self.parser = ScriptRunner._parser
        self.transformer = ScriptRunner._transformer
        self.evaluator = Evaluator(max_call_depth=max_call_depth, recursion_limit=recursion_limit)
        self.stdlib = StdLib(self.evaluator)
        if load_std:
            self.stdlib.install()

    def register_native(self, name, function, min_arity=0, max_arity=0):
        return self.evaluator.register_native(name, function, min_arity, max_arity)

    # --- Error formatting ---

    def _format_parse_error(self, parse_out, source: str) -> tuple[str, Optional[dict]]:
        base = (parse_out or {}).get('message') or str(parse_out)
        m = re.search(r"L(\d+):C(\d+)", base)
        if m:
            line, col = int(m.group(1)), int(m.group(2))
            token = {'line': line, 'col': col}
            return f"ParseError: {base}\n{self._source_context(source, line, col)}", token
        return f"ParseError: {base}", None

    def _format_runtime_error(self, flow: Flow, source: str) -> tuple[str, Optional[dict]]:
        msg = flow.message or "Unknown error"
        token = None
        loc = flow.loc
        if loc and isinstance(loc, dict):
            line = loc.get('line'); col = loc.get('col')
            token = {'line': line, 'col': col, 'tag': loc.get('tag'), 'text': loc.get('text')}
            if line is not None and col is not None:
                msg = f"{msg}\n(line {line}, col {col})\n{self._source_context(source, line, col)}"

        st = self._format_stacktrace(flow.trace or [])
        if st:
            msg += "\n" + st
        return msg, token

    def _format_host_error(self, e: Exception, source: str) -> tuple[str, Optional[dict]]:
        msg = f"InternalError: {type(e).__name__}: {e}"
        # Call frames are already unwound here; only the last node is known.
        flow = Flow.error(msg)
        flow.loc = getattr(self.evaluator.current_node, 'loc', None)
        return self._format_runtime_error(flow, source)

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            ln = str(i).rjust(width)
            out.append(f"{prefix} {ln} | {lines[i - 1]}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)

    def _format_stacktrace(self, frames: List[dict]) -> str:
        if not frames:
            return ""
        printer = self.stdlib.printer

        def fmt(arg):
            match arg:
                case JuiceArray():
                    return f"#[{len(arg)}]"
                case JuiceObject():
                    return f"{arg.display_name}{{...}}"
            return printer.pformat(arg)

        rendered = []
        for frame in frames:
            args = " ".join(fmt(a) for a in frame.get('args') or [])
            rendered.append(f"({frame.get('name') or '<call>'}{' ' + args if args else ''})")
        return "Juice stacktrace: " + " ".join(rendered)

    # --- Entry points ---

    def _error(self, msg: str, token: Optional[dict] = None) -> ExecutionResult:
        self.evaluator.side_effects.append({'topics': ['stderr'], 'message': msg})
        return ExecutionResult(
            status='error',
            error_message=msg,
            error_token=token,
            side_effects=list(self.evaluator.side_effects)
        )

    def parse(self, source_code: str):
        """Parses and transforms source into a Program.

        Raises SyntaxError when the source does not parse; `lineno` and
        `offset` are set when koine reports a position.
        """
        try:
            parse_out = self.parser.parse(source_code)
        except Exception as e:
            raise SyntaxError(f"ParseError: {e}") from e
        if parse_out.get('status') != 'success':
            msg, token = self._format_parse_error(parse_out, source_code)
            error = SyntaxError(msg)
            if token:
                error.lineno, error.offset = token['line'], token['col']
            raise error
        return self.transformer.transform(parse_out['ast'])

    def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script."""
        self.evaluator.side_effects.clear()
        self.evaluator.call_stack.clear()

        # 1. Parse and transform
        try:
            program = self.parse(source_code)
        except SyntaxError as e:
            token = {'line': e.lineno, 'col': e.offset} if e.lineno else None
            return self._error(e.msg, token)
        except Exception as e:
            return self._error(f"InternalError: transform failed: {e}")

        # 2. Evaluate
        try:
            outcome = self.evaluator.run(program)
        except Exception as e:
            return self._error(*self._format_host_error(e, source_code))

        if is_flow(outcome):
            return self._error(*self._format_runtime_error(outcome, source_code))

        return ExecutionResult(
            status='success',
            value=self.evaluator.last_value,
            side_effects=list(self.evaluator.side_effects)
        )
