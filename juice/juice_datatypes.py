"""
Defines the runtime data types for the Juice interpreter.

Value kinds map onto Python like this:

    Number          float (host ints are accepted, bool never is)
    String          str
    Bool            bool
    Null            None
    Void            the `Void` singleton
    Array           JuiceArray
    Object          JuiceObject
    Method          Method
    NativeFunction  NativeFunction

Failures never raise. Every operation that can fail returns a `Flow` error
instead, which the evaluator propagates.
"""

from abc import ABC
from typing import Any, Callable, Dict, List, Optional
import collections.abc


class _VoidType:
    """The absence of a meaningful result. Distinct from Null."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "Void"

    def __reduce__(self):
        return (_VoidType, ())


Void = _VoidType()


# =================================================================
# Control-flow signal
# =================================================================

class Flow:
    """A non-value outcome of evaluating a statement or expression.

    `return`, `break` and `continue` travel as Flow values until a loop or call
    boundary absorbs them. Errors travel the same way and are never absorbed.
    An error remembers where it was raised (`loc`) and the call stack at that
    moment (`trace`); both are filled in by the evaluator.
    """
    RETURN = 'return'
    BREAK = 'break'
    CONTINUE = 'continue'
    ERROR = 'error'

    def __init__(self, kind: str, value: Any = None, message: Optional[str] = None):
        self.kind = kind
        self.value = value
        self.message = message
        self.loc: Optional[dict] = None
        self.trace: Optional[List[dict]] = None

    @classmethod
    def ret(cls, value: Any = Void) -> 'Flow':
        return cls(cls.RETURN, value=value)

    @classmethod
    def brk(cls) -> 'Flow':
        return cls(cls.BREAK)

    @classmethod
    def cont(cls) -> 'Flow':
        return cls(cls.CONTINUE)

    @classmethod
    def error(cls, message: str) -> 'Flow':
        return cls(cls.ERROR, message=message)

    @property
    def is_return(self) -> bool:
        return self.kind == Flow.RETURN

    @property
    def is_break(self) -> bool:
        return self.kind == Flow.BREAK

    @property
    def is_continue(self) -> bool:
        return self.kind == Flow.CONTINUE

    @property
    def is_error(self) -> bool:
        return self.kind == Flow.ERROR

    def __repr__(self):
        match self.kind:
            case Flow.RETURN:
                return f"Flow.ret({self.value!r})"
            case Flow.ERROR:
                return f"Flow.error({self.message!r})"
            case _:
                return f"Flow.{self.kind}"


def is_flow(x) -> bool:
    return isinstance(x, Flow)


# =================================================================
# Environment (scope chain)
# =================================================================

class Environment:
    """One frame of the scope chain: a name to value map plus a parent link."""
    def __init__(self, parent: Optional['Environment'] = None):
        self.values: Dict[str, Any] = {}
        self.parent = parent

    def find_owner(self, name: str) -> Optional['Environment']:
        """Finds the nearest frame, walking outward, that binds `name`."""
        env = self
        while env is not None:
            if name in env.values:
                return env
            env = env.parent
        return None

    def is_defined_here(self, name: str) -> bool:
        """True when this frame itself binds `name`; parents are not consulted."""
        return name in self.values

    def define(self, name: str, value: Any):
        if self.is_defined_here(name):
            return Flow.error(f"NameError: variable '{name}' is already defined in this scope")
        self.values[name] = value
        return Void

    def get(self, name: str):
        owner = self.find_owner(name)
        if owner is None:
            return Flow.error(f"NameError: variable '{name}' is not defined")
        return owner.values[name]

    def set(self, name: str, value: Any):
        # Assignment never creates a binding.
        owner = self.find_owner(name)
        if owner is None:
            return Flow.error(f"NameError: variable '{name}' is not defined")
        owner.values[name] = value
        return value

    def __contains__(self, name: str) -> bool:
        return self.find_owner(name) is not None

    def depth(self) -> int:
        n, env = 0, self.parent
        while env is not None:
            n, env = n + 1, env.parent
        return n

    def __repr__(self):
        return f"<Environment depth={self.depth()} names={list(self.values)!r}>"


# =================================================================
# Composite values
# =================================================================

class JuiceArray(collections.abc.MutableSequence):
    """An ordered, mutable sequence shared by reference between bindings."""
    def __init__(self, elements=None):
        self.elements: List[Any] = list(elements) if elements is not None else []

    def __getitem__(self, index):
        return self.elements[index]

    def __setitem__(self, index, value):
        self.elements[index] = value

    def __delitem__(self, index):
        del self.elements[index]

    def __len__(self):
        return len(self.elements)

    def insert(self, index, value):
        self.elements.insert(index, value)

    def in_bounds(self, index: int) -> bool:
        return 0 <= index < len(self.elements)

    # Host-side == stays identity; language equality is juice_operators.values_equal.

    def __repr__(self):
        return f"JuiceArray({self.elements!r})"


class JuiceObject:
    """A live instance: its own field map plus a table of bound methods.

    Fields exist only once declared, either by a construction literal or by an
    assignment through `this` while `init` is running. Reading or writing any
    other field is an error.
    """
    def __init__(self, type_name: Optional[str] = None):
        self.type_name = type_name
        self.fields: Dict[str, Any] = {}
        self.methods: Dict[str, 'Method'] = {}
        self.initializing = False

    @property
    def display_name(self) -> str:
        return self.type_name or "object"

    def has_field(self, name: str) -> bool:
        return name in self.fields

    def get_field(self, name: str):
        if name not in self.fields:
            return Flow.error(f"FieldError: field '{name}' is not defined on {self.display_name}")
        return self.fields[name]

    def set_field(self, name: str, value: Any):
        if name not in self.fields:
            if self.initializing:
                return self.declare_field(name, value)
            return Flow.error(f"FieldError: field '{name}' is not defined on {self.display_name}")
        self.fields[name] = value
        return value

    def declare_field(self, name: str, value: Any):
        self.fields[name] = value
        return value

    def get_method(self, name: str):
        method = self.methods.get(name)
        if method is None:
            return Flow.error(f"MethodError: method '{name}' is not defined on {self.display_name}")
        return method

    def set_method(self, name: str, method: 'Method'):
        self.methods[name] = method

    def __repr__(self):
        return f"<JuiceObject {self.display_name} fields={list(self.fields)!r}>"


class Prototype:
    """The method-table template registered by an `object` declaration.

    Created once, never mutated. `closure` is the frame the declaration ran
    in; method bodies resolve free names from there.
    """
    def __init__(self, name: str, methods: Dict[str, 'Method'],
                 traits: Optional[List[str]] = None, closure: Optional[Environment] = None):
        self.name = name
        self.methods = dict(methods)
        self.traits = list(traits or [])
        self.closure = closure

    def instantiate(self) -> JuiceObject:
        instance = JuiceObject(self.name)
        for name, method in self.methods.items():
            instance.set_method(name, method.bind(instance))
        return instance

    def __repr__(self):
        return f"<Prototype {self.name} methods={list(self.methods)!r}>"


class Trait:
    """A named set of method signatures. Recorded, never checked."""
    def __init__(self, name: str, signatures: List[Any], traits: Optional[List[str]] = None):
        self.name = name
        self.signatures = list(signatures)
        self.traits = list(traits or [])

    @property
    def method_names(self) -> List[str]:
        return [s.name for s in self.signatures]

    def __repr__(self):
        return f"<Trait {self.name} {self.method_names!r}>"


# =================================================================
# Callables
# =================================================================

class JuiceCallable(ABC):
    """Shared arity contract for user methods and native functions."""
    name: str
    min_arity: int
    max_arity: Optional[int]

    @property
    def qualified_name(self) -> str:
        return self.name

    def arity_error(self, count: int) -> Optional[Flow]:
        """Returns an error Flow when `count` is outside [min_arity, max_arity]."""
        lo, hi = self.min_arity, self.max_arity
        if count >= lo and (hi is None or count <= hi):
            return None
        if hi is None:
            expected = f"at least {lo} argument(s)"
        elif lo == hi:
            expected = f"{lo} argument(s)"
        else:
            expected = f"between {lo} and {hi} arguments"
        return Flow.error(f"ArityError: {self.qualified_name} expected {expected} but got {count}")


class Method(JuiceCallable):
    """A method declaration paired with the receiver it is bound to."""
    def __init__(self, declaration, this: Optional[JuiceObject] = None,
                 closure: Optional[Environment] = None, owner: Optional[str] = None):
        self.declaration = declaration
        self.this = this
        self.closure = closure
        self.owner = owner

    @property
    def name(self) -> str:
        return self.declaration.name

    @property
    def qualified_name(self) -> str:
        return f"{self.owner}.{self.name}" if self.owner else self.name

    @property
    def params(self) -> List[str]:
        return self.declaration.signature.param_names

    @property
    def min_arity(self) -> int:
        return len(self.params)

    @property
    def max_arity(self) -> int:
        return len(self.params)

    def bind(self, receiver: JuiceObject) -> 'Method':
        return Method(self.declaration, receiver, self.closure, self.owner)

    def __eq__(self, other):
        return (isinstance(other, Method)
                and self.declaration is other.declaration
                and self.this is other.this)

    def __hash__(self):
        return hash((id(self.declaration), id(self.this)))

    def __repr__(self):
        state = "bound" if self.this is not None else "unbound"
        return f"<Method {self.qualified_name} {state}>"


class NativeFunction(JuiceCallable):
    """A host function bound into the global frame.

    `function` receives the evaluated arguments positionally and returns a
    value or a Flow error. `max_arity=None` accepts any number of arguments.
    """
    def __init__(self, name: str, function: Callable[..., Any],
                 min_arity: int = 0, max_arity: Optional[int] = 0):
        self.name = name
        self.function = function
        self.min_arity = min_arity
        self.max_arity = max_arity

    def __repr__(self):
        return f"<NativeFunction {self.name}>"


# =================================================================
# Kind helpers
# =================================================================

def is_number(x) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def kind_name(x) -> str:
    """The language-level kind of a value, for error messages."""
    match x:
        case bool():
            return "bool"
        case int() | float():
            return "number"
        case str():
            return "string"
        case None:
            return "null"
        case JuiceArray():
            return "array"
        case JuiceObject():
            return "object"
        case Method():
            return "method"
        case NativeFunction():
            return "native function"
    if x is Void:
        return "void"
    return type(x).__name__
