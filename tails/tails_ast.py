"""
AST node definitions for Tails programs.

Nodes are plain dataclasses: value equality makes parses comparable, and
`loc` (line/col of the first token) is carried for error reporting but
excluded from comparisons.
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Union


def _loc():
    return field(default=None, compare=False, repr=False)


# =================================================================
# Expressions
# =================================================================

@dataclass
class Number:
    value: float
    had_decimal_point: bool = False
    loc: Optional[dict] = _loc()


@dataclass
class String:
    # Literal text pieces interleaved with expressions from `~var.path` spans
    parts: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class Boolean:
    value: bool
    loc: Optional[dict] = _loc()


@dataclass
class Null:
    loc: Optional[dict] = _loc()


@dataclass
class ListLiteral:
    items: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class ObjectLiteral:
    pairs: List[Tuple[str, Any]]
    loc: Optional[dict] = _loc()


@dataclass
class Variable:
    name: str
    loc: Optional[dict] = _loc()


@dataclass
class PropertyAccess:
    base: Any
    # A Number/String literal for `.0` / `.name`, or any expression for `.~k` / `.(expr)`
    key: Any
    loc: Optional[dict] = _loc()


@dataclass
class BinaryOp:
    op: str
    lhs: Any
    rhs: Any
    loc: Optional[dict] = _loc()


@dataclass
class UnaryOp:
    op: str
    operand: Any
    loc: Optional[dict] = _loc()


@dataclass
class FunctionCall:
    name: str
    args: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class FunctionRef:
    """A bare function name in argument position, e.g. `map ~xs double`."""
    name: str
    loc: Optional[dict] = _loc()


@dataclass
class AnonymousFunction:
    params: List[str]
    body: Any
    loc: Optional[dict] = _loc()


@dataclass
class Block:
    statements: List[Any]
    loc: Optional[dict] = _loc()


Expression = Union[
    Number, String, Boolean, Null, ListLiteral, ObjectLiteral, Variable,
    PropertyAccess, BinaryOp, UnaryOp, FunctionCall, FunctionRef,
    AnonymousFunction, Block,
]


# =================================================================
# Statements
# =================================================================

@dataclass
class Assignment:
    name: str
    expr: Any
    loc: Optional[dict] = _loc()


@dataclass
class PropertyAssignment:
    name: str
    path: List[Any]
    expr: Any
    loc: Optional[dict] = _loc()


@dataclass
class ExpressionStatement:
    expr: Any
    loc: Optional[dict] = _loc()


@dataclass
class If:
    cond: Any
    then: List[Any]
    else_: Optional[List[Any]] = None
    loc: Optional[dict] = _loc()


@dataclass
class Loop:
    body: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class Break:
    loc: Optional[dict] = _loc()


@dataclass
class ForEach:
    vars: List[str]
    iterable: Any
    body: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class ChainStep:
    function_name: str
    args: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class FunctionChain:
    variable: str
    steps: List[ChainStep]
    loc: Optional[dict] = _loc()


@dataclass
class ActionDef:
    name: str
    params: List[str]
    body: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class Give:
    expr: Any
    loc: Optional[dict] = _loc()


@dataclass
class Attempt:
    body: List[Any]
    error_var: Optional[str]
    rescue_body: List[Any]
    loc: Optional[dict] = _loc()


@dataclass
class IncDec:
    name: str
    op: str  # 'up' | 'down'
    amount: Any
    loc: Optional[dict] = _loc()


@dataclass
class Program:
    statements: List[Any]
