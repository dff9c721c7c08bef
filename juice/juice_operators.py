"""
Operator semantics for Juice values.

Operands are already evaluated, left before right. There is no implicit
coercion: every operator accepts only the kinds listed in its table entry and
returns a Flow error for anything else.
"""

import math
import operator

from juice.juice_datatypes import (
    Flow, JuiceArray, JuiceObject, Method, NativeFunction, is_number, kind_name
)


def values_equal(a, b) -> bool:
    """Language equality.

    Structural for numbers, strings, bools, null, void and arrays (element by
    element); identity for objects and native functions. A method equals
    another method only when both the declaration and the receiver match.
    Values of different kinds are never equal, so `1 == true` is false.
    """
    if is_number(a) and is_number(b):
        return float(a) == float(b)
    if kind_name(a) != kind_name(b):
        return False
    match a:
        case JuiceArray():
            if a is b:
                return True
            if len(a) != len(b):
                return False
            return all(values_equal(x, y) for x, y in zip(a, b))
        case JuiceObject() | NativeFunction():
            return a is b
        case Method():
            return a == b
    return a == b


def _type_error(symbol, a, b):
    return Flow.error(
        f"TypeError: unsupported operand kinds for '{symbol}': {kind_name(a)} and {kind_name(b)}"
    )


def _add(a, b):
    if is_number(a) and is_number(b):
        return float(a) + float(b)
    if isinstance(a, str) and isinstance(b, str):
        return a + b
    return _type_error('+', a, b)


def _arithmetic(symbol, fn):
    def op(a, b):
        if is_number(a) and is_number(b):
            return fn(float(a), float(b))
        return _type_error(symbol, a, b)
    return op


def _checked_divisor(symbol, fn):
    def op(a, b):
        if not (is_number(a) and is_number(b)):
            return _type_error(symbol, a, b)
        if b == 0:
            return Flow.error("ZeroDivisionError: division by zero")
        return fn(float(a), float(b))
    return op


def _ordering(symbol, fn):
    def op(a, b):
        if (is_number(a) and is_number(b)) or (isinstance(a, str) and isinstance(b, str)):
            return fn(a, b)
        return _type_error(symbol, a, b)
    return op


def _logical(symbol, fn):
    def op(a, b):
        if isinstance(a, bool) and isinstance(b, bool):
            return fn(a, b)
        return _type_error(symbol, a, b)
    return op


BINARY_OPS = {
    '+': _add,
    '-': _arithmetic('-', operator.sub),
    '*': _arithmetic('*', operator.mul),
    '/': _checked_divisor('/', operator.truediv),
    # fmod keeps the sign of the dividend
    '%': _checked_divisor('%', math.fmod),
    '==': values_equal,
    '!=': lambda a, b: not values_equal(a, b),
    '<': _ordering('<', operator.lt),
    '<=': _ordering('<=', operator.le),
    '>': _ordering('>', operator.gt),
    '>=': _ordering('>=', operator.ge),
    '&&': _logical('&&', lambda a, b: a and b),
    '||': _logical('||', lambda a, b: a or b),
}


def binary_op(op: str, left, right):
    handler = BINARY_OPS.get(op)
    if handler is None:
        return Flow.error(f"SyntaxError: unknown operator '{op}'")
    return handler(left, right)


def unary_op(op: str, operand):
    match op:
        case '-':
            if is_number(operand):
                return -float(operand)
            return Flow.error(f"TypeError: unary '-' expects a number, got {kind_name(operand)}")
        case '!':
            if isinstance(operand, bool):
                return not operand
            return Flow.error(f"TypeError: unary '!' expects a bool, got {kind_name(operand)}")
    return Flow.error(f"SyntaxError: unknown operator '{op}'")
