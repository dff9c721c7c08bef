"""
Statement and expression nodes produced by the transformer.

The evaluator consumes these directly; it never looks at source text. Every
node carries an optional `loc` dict ({'line', 'col', 'tag', 'text'}) used
only for error reporting.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional


def _loc():
    return field(default=None, repr=False, compare=False)


# =================================================================
# Declarations
# =================================================================

@dataclass
class TypeRef:
    """A type annotation. Parsed and kept, never enforced."""
    names: List[str]
    loc: Optional[dict] = _loc()


@dataclass
class Param:
    name: str
    type: Optional[TypeRef] = None
    loc: Optional[dict] = _loc()


@dataclass
class Signature:
    name: str
    params: List[Param]
    return_type: Optional[TypeRef] = None
    loc: Optional[dict] = _loc()

    @property
    def param_names(self) -> List[str]:
        return [p.name for p in self.params]


@dataclass
class MethodDecl:
    signature: Signature
    body: 'Block'
    loc: Optional[dict] = _loc()

    @property
    def name(self) -> str:
        return self.signature.name


@dataclass
class ObjectDecl:
    name: str
    methods: List[MethodDecl]
    traits: Optional[TypeRef] = None
    loc: Optional[dict] = _loc()


@dataclass
class TraitDecl:
    name: str
    signatures: List[Signature]
    traits: Optional[TypeRef] = None
    loc: Optional[dict] = _loc()


# =================================================================
# Statements
# =================================================================

@dataclass
class Block:
    statements: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class Program:
    statements: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class VarDecl:
    name: str
    initializer: Any
    type: Optional[TypeRef] = None
    loc: Optional[dict] = _loc()


@dataclass
class While:
    condition: Any
    body: Block
    loc: Optional[dict] = _loc()


@dataclass
class For:
    name: str
    iterable: Any
    body: Block
    type: Optional[TypeRef] = None
    loc: Optional[dict] = _loc()


@dataclass
class If:
    condition: Any
    then_branch: Block
    else_branch: Optional[Block] = None
    loc: Optional[dict] = _loc()


@dataclass
class Break:
    loc: Optional[dict] = _loc()


@dataclass
class Continue:
    loc: Optional[dict] = _loc()


@dataclass
class Return:
    value: Optional[Any] = None
    loc: Optional[dict] = _loc()


@dataclass
class ExprStmt:
    expression: Any
    loc: Optional[dict] = _loc()


# =================================================================
# Expressions
# =================================================================

@dataclass
class Literal:
    value: Any
    loc: Optional[dict] = _loc()


@dataclass
class Identifier:
    name: str
    loc: Optional[dict] = _loc()


@dataclass
class ArrayLiteral:
    elements: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class FieldInit:
    name: str
    value: Any
    loc: Optional[dict] = _loc()


@dataclass
class ObjectLiteral:
    """`TypeName { f = expr, ... }`; `type_name` is None for `{ f = expr }`."""
    type_name: Optional[str]
    fields: List[FieldInit]
    loc: Optional[dict] = _loc()


@dataclass
class Binary:
    op: str
    left: Any
    right: Any
    loc: Optional[dict] = _loc()


@dataclass
class Unary:
    op: str
    operand: Any
    loc: Optional[dict] = _loc()


@dataclass
class Assign:
    target: Any
    value: Any
    loc: Optional[dict] = _loc()


@dataclass
class Call:
    callee: Any
    args: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class MethodCall:
    receiver: Any
    name: str
    args: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class FieldAccess:
    receiver: Any
    name: str
    loc: Optional[dict] = _loc()


@dataclass
class IndexAccess:
    target: Any
    index: Any
    loc: Optional[dict] = _loc()
