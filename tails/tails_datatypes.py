"""
Defines the core data types for the Tails language runtime.

Tails values map onto native Python values wherever possible:

  Number  -> float          List    -> list
  String  -> str            Object  -> dict (insertion ordered)
  Boolean -> bool           Null    -> None
  Date    -> datetime (UTC)

The classes below cover what Python has no direct equivalent for: scope
frames, user closures, native builtins, first-class error values and the
exception hierarchy used by the lexer, parser and evaluator.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional


# =================================================================
# Errors
# =================================================================

UNDEFINED_VARIABLE = 'undefined-variable'
UNDEFINED_FUNCTION = 'undefined-function'
TYPE_MISMATCH = 'type-mismatch'
DIVISION_BY_ZERO = 'division-by-zero'
INDEX_OUT_OF_RANGE = 'index-out-of-range'
IO_ERROR = 'io'
ENCODING_ERROR = 'encoding'

ERROR_KINDS = (
    UNDEFINED_VARIABLE, UNDEFINED_FUNCTION, TYPE_MISMATCH, DIVISION_BY_ZERO,
    INDEX_OUT_OF_RANGE, IO_ERROR, ENCODING_ERROR,
)


class TailsError(Exception):
    """Base class for every error the interpreter raises on purpose."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ParseError(TailsError):
    """A lexical or syntactic error. Always fatal to the parse."""

    def __init__(self, message: str, line: Optional[int] = None, col: Optional[int] = None):
        super().__init__(message)
        self.line = line
        self.col = col

    def __str__(self):
        if self.line is not None:
            return f"{self.message} (line {self.line}, col {self.col})"
        return self.message


class LexError(ParseError):
    pass


class TailsRuntimeError(TailsError):
    """A recoverable failure; `attempt ... rescue` catches these."""

    def __init__(self, message: str, kind: str = TYPE_MISMATCH, loc: Optional[dict] = None):
        super().__init__(message)
        self.kind = kind
        self.loc = loc
        # Names of the active calls when the error was raised, outermost first
        self.trace: Optional[List[str]] = None


class PathNotFound(TailsRuntimeError):
    """Raised when a variable name cannot be resolved in the scope chain."""

    def __init__(self, key: str, loc: Optional[dict] = None):
        super().__init__(f"Undefined variable: ~{key}", UNDEFINED_VARIABLE, loc)
        self.key = key


# =================================================================
# Scope frames
# =================================================================

GLOBAL = 'global'
CALL = 'call'
TRANSIENT = 'transient'


class Scope:
    """One frame of the environment chain.

    A frame is one of three kinds:
      - `global`: created once per ScriptRunner, outlives every call,
      - `call`: pushed for each closure invocation, parented to the
        closure's captured scope (not the caller),
      - `transient`: pushed for for-each variables, the rescue error
        variable and anonymous-function parameters.

    Plain assignment skips over transient frames so that loop bodies can
    update accumulators in the enclosing call or global frame, while the
    transient bindings themselves disappear when the construct exits.
    """

    def __init__(self, parent: Optional['Scope'] = None, kind: str = GLOBAL):
        self.bindings: Dict[str, Any] = {}
        # Actions, kept apart from ~variable bindings
        self.functions: Dict[str, Any] = {}
        self.parent = parent
        self.kind = kind

    def __getitem__(self, key: str) -> Any:
        owner = self.find_owner(key)
        if owner is None:
            raise PathNotFound(key)
        return owner.bindings[key]

    def __setitem__(self, key: str, value: Any):
        """Binds in this frame only."""
        self.bindings[key] = value

    def __contains__(self, key: str) -> bool:
        return self.find_owner(key) is not None

    def find_owner(self, key: str) -> Optional['Scope']:
        """Finds the nearest frame in the chain that binds key."""
        cur: Optional[Scope] = self
        while cur is not None:
            if key in cur.bindings:
                return cur
            cur = cur.parent
        return None

    def get(self, key: str, default: Any = None) -> Any:
        owner = self.find_owner(key)
        if owner is None:
            return default
        return owner.bindings[key]

    def assign(self, key: str, value: Any):
        """Assignment: update the nearest binding within the current call
        region (this frame plus enclosing transient frames), else bind in
        the frame that owns that region."""
        cur: Scope = self
        while True:
            if key in cur.bindings:
                cur.bindings[key] = value
                return
            if cur.kind != TRANSIENT or cur.parent is None:
                cur.bindings[key] = value
                return
            cur = cur.parent

    def define_function(self, name: str, fn: Any):
        """Binds an action in the nearest call or global frame."""
        cur: Scope = self
        while cur.kind == TRANSIENT and cur.parent is not None:
            cur = cur.parent
        cur.functions[name] = fn

    def find_function(self, name: str) -> Any:
        cur: Optional[Scope] = self
        while cur is not None:
            if name in cur.functions:
                return cur.functions[name]
            cur = cur.parent
        return None

    def keys(self):
        return self.bindings.keys()

    def depth(self) -> int:
        n = 0
        cur = self.parent
        while cur is not None:
            n += 1
            cur = cur.parent
        return n

    def __repr__(self) -> str:
        return f"<Scope {self.kind} {sorted(self.bindings)}>"


# =================================================================
# Callables and errors as values
# =================================================================

class TailsCallable:
    """Common base for everything a call expression can invoke."""
    name: str = ''


class Closure(TailsCallable):
    """A user-defined action or anonymous function with its captured scope.

    For actions `body` is a list of statements; for anonymous functions
    it is a single expression and `is_expression` is set.
    """

    def __init__(self, params: List[str], body: Any, closure: Scope,
                 name: Optional[str] = None, is_expression: bool = False):
        self.params = list(params)
        self.body = body
        self.closure = closure
        self.name = name or ''
        self.is_expression = is_expression

    @property
    def arity(self) -> int:
        return len(self.params)

    def __repr__(self) -> str:
        if self.name:
            return f"<action {self.name}>"
        return "<function>"


class Builtin(TailsCallable):
    """A native capability registered in the builtin-dispatch table."""

    def __init__(self, name: str, handler: Callable[[list, Scope], Any]):
        self.name = name
        self.handler = handler

    def __call__(self, args: list, scope: Scope) -> Any:
        return self.handler(args, scope)

    def __repr__(self) -> str:
        return f"<builtin {self.name}>"


class ErrorValue:
    """A first-class error value. Always falsy."""

    def __init__(self, message: str, kind: Optional[str] = None):
        self.message = message
        self.kind = kind

    def __bool__(self):
        return False

    def __eq__(self, other):
        return isinstance(other, ErrorValue) and other.message == self.message

    def __hash__(self):
        return hash(('error', self.message))

    def __repr__(self) -> str:
        return f"Error: {self.message}"


class DecimalNumber(float):
    """A number whose literal text contained a decimal point (`1.0`).

    Arithmetic on it yields plain floats; builtins such as `random` use the
    marker to choose between whole-number and fractional results.
    """

    def __repr__(self):
        return f"DecimalNumber({float(self)!r})"


# =================================================================
# Value helpers
# =================================================================

def is_number(value: Any) -> bool:
    # bool is a subclass of int, so rule it out first
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, ErrorValue):
        return False
    if is_number(value):
        return value != 0
    if isinstance(value, (str, list, dict)):
        return len(value) > 0
    return True


def values_equal(a: Any, b: Any) -> bool:
    """Structural equality. Booleans never compare equal to numbers."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if is_number(a) and is_number(b):
        return float(a) == float(b)
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        if a.keys() != b.keys():
            return False
        return all(values_equal(a[k], b[k]) for k in a)
    if isinstance(a, TailsCallable) or isinstance(b, TailsCallable):
        return a is b
    if type(a) is not type(b):
        return False
    return a == b


def type_name(value: Any) -> str:
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'boolean'
    if is_number(value):
        return 'number'
    if isinstance(value, str):
        return 'string'
    if isinstance(value, list):
        return 'list'
    if isinstance(value, dict):
        return 'object'
    if isinstance(value, ErrorValue):
        return 'error'
    if isinstance(value, TailsCallable):
        return 'function'
    if isinstance(value, datetime):
        return 'date'
    return type(value).__name__.lower()


def normalize(value: Any) -> Any:
    """Converts host data (ints, tuples, nested mappings) into Tails values."""
    if value is None or isinstance(value, (bool, str, float, ErrorValue, TailsCallable)):
        return value
    if isinstance(value, int):
        return float(value)
    if isinstance(value, dict):
        return {str(k): normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    return value
