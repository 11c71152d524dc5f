"""
The core Tails interpreter: a tree-walking Evaluator.

Call resolution is uniform over user closures and native builtins:

  1. a name bound to a callable in the scope chain is invoked,
  2. otherwise a builtin registered under that name is invoked,
  3. otherwise the call fails with an undefined-function error.

Control flow that is not a value (`break-loop`, `give`) travels as
Python exceptions that the owning construct consumes.
"""
import math
import os
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from tails import tails_ast as ast
from tails.tails_datatypes import (
    Scope, Closure, Builtin, TailsCallable, ErrorValue, DecimalNumber,
    TailsRuntimeError, PathNotFound,
    CALL, TRANSIENT,
    UNDEFINED_FUNCTION, TYPE_MISMATCH, DIVISION_BY_ZERO, INDEX_OUT_OF_RANGE,
    is_number, is_truthy, values_equal, type_name,
)
from tails.tails_printer import to_display, format_number

CALL_DEPTH = 'call-depth'


class BreakSignal(Exception):
    """Raised by `break-loop`; consumed by the nearest loop or for-each."""


class GiveSignal(Exception):
    """Raised by `give`; consumed by the enclosing closure call."""

    def __init__(self, value: Any):
        super().__init__()
        self.value = value


def _type_error(message: str, loc: Optional[dict] = None) -> TailsRuntimeError:
    return TailsRuntimeError(message, TYPE_MISMATCH, loc)


class Evaluator:
    """Walks the AST against a scope chain and a builtin-dispatch table."""

    def __init__(self, builtins: Optional[Dict[str, Builtin]] = None, *, max_call_depth: int = 100):
        self.builtins: Dict[str, Builtin] = builtins if builtins is not None else {}
        self.max_call_depth = max_call_depth
        self.side_effects: List[Dict] = []
        self.call_stack: List[Dict] = []
        self.current_node = None
        # Base directory for relative file paths; set by the ScriptRunner
        self.source_dir: Optional[str] = None
        # Each Tails call costs a handful of Python frames
        needed = 200 + max_call_depth * 40
        if sys.getrecursionlimit() < needed:
            sys.setrecursionlimit(needed)

    def _dbg(self, *parts):
        if os.environ.get("TAILS_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    # --- frames for error reporting ---

    def _push_frame(self, name, callee, args, call_site_node):
        if len(self.call_stack) >= self.max_call_depth:
            raise TailsRuntimeError(
                f"Maximum call depth exceeded ({self.max_call_depth})", CALL_DEPTH,
                getattr(call_site_node, 'loc', None))
        self.call_stack.append({
            'name': name,
            'func': callee,
            'args': args,
            'call_site': getattr(call_site_node, 'loc', None),
        })

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    # --- program / statements ---

    def eval_program(self, program: ast.Program, scope: Scope) -> Any:
        """Runs top-level statements in order; returns the last value."""
        try:
            return self.exec_block(program.statements, scope)
        except BreakSignal:
            raise TailsRuntimeError("break-loop used outside of a loop", TYPE_MISMATCH)
        except GiveSignal:
            raise TailsRuntimeError("give used outside of an action", TYPE_MISMATCH)

    def exec_block(self, statements: List[Any], scope: Scope) -> Any:
        result = None
        for stmt in statements:
            result = self.eval(stmt, scope)
        return result

    def eval(self, node: Any, scope: Scope) -> Any:
        self.current_node = node
        match node:
            # Statements
            case ast.Assignment():
                value = self.eval(node.expr, scope)
                scope.assign(node.name, value)
                self._dbg("ASSIGN", node.name, "=", to_display(value))
                return value

            case ast.PropertyAssignment():
                return self._eval_property_assignment(node, scope)

            case ast.ExpressionStatement():
                return self.eval(node.expr, scope)

            case ast.If():
                if is_truthy(self.eval(node.cond, scope)):
                    return self.exec_block(node.then, scope)
                if node.else_ is not None:
                    return self.exec_block(node.else_, scope)
                return None

            case ast.Loop():
                while True:
                    try:
                        self.exec_block(node.body, scope)
                    except BreakSignal:
                        break
                return None

            case ast.Break():
                raise BreakSignal()

            case ast.ForEach():
                return self._eval_for_each(node, scope)

            case ast.FunctionChain():
                value = None
                for i, step in enumerate(node.steps):
                    args = [self.eval(a, scope) for a in step.args]
                    if i > 0:
                        args.insert(0, value)
                    value = self.call_by_name(step.function_name, args, scope, step)
                scope.assign(node.variable, value)
                return value

            case ast.ActionDef():
                scope.define_function(node.name, Closure(node.params, node.body, scope, name=node.name))
                return None

            case ast.Give():
                raise GiveSignal(self.eval(node.expr, scope))

            case ast.Attempt():
                return self._eval_attempt(node, scope)

            case ast.IncDec():
                return self._eval_inc_dec(node, scope)

            # Expressions
            case ast.Number():
                if node.had_decimal_point:
                    return DecimalNumber(node.value)
                return node.value

            case ast.String():
                if all(isinstance(p, str) for p in node.parts):
                    return ''.join(node.parts)
                return ''.join(p if isinstance(p, str) else to_display(self.eval(p, scope))
                               for p in node.parts)

            case ast.Boolean():
                return node.value

            case ast.Null():
                return None

            case ast.ListLiteral():
                return [self.eval(item, scope) for item in node.items]

            case ast.ObjectLiteral():
                return {key: self.eval(expr, scope) for key, expr in node.pairs}

            case ast.Variable():
                owner = scope.find_owner(node.name)
                if owner is None:
                    raise PathNotFound(node.name, node.loc)
                return owner.bindings[node.name]

            case ast.PropertyAccess():
                base = self.eval(node.base, scope)
                key = self._eval_key(node.key, scope)
                return self.get_property(base, key, node.loc)

            case ast.BinaryOp():
                if node.op == 'and':
                    lhs = self.eval(node.lhs, scope)
                    return self.eval(node.rhs, scope) if is_truthy(lhs) else lhs
                if node.op == 'or':
                    lhs = self.eval(node.lhs, scope)
                    return lhs if is_truthy(lhs) else self.eval(node.rhs, scope)
                lhs = self.eval(node.lhs, scope)
                rhs = self.eval(node.rhs, scope)
                return self.binary_op(node.op, lhs, rhs, node.loc)

            case ast.UnaryOp():
                value = self.eval(node.operand, scope)
                if node.op == 'not':
                    return not is_truthy(value)
                if not is_number(value):
                    raise _type_error(f"Cannot negate {type_name(value)}", node.loc)
                return -value

            case ast.FunctionCall():
                args = [self.eval(a, scope) for a in node.args]
                return self.call_by_name(node.name, args, scope, node)

            case ast.FunctionRef():
                return self.resolve_callable(node.name, scope, node)

            case ast.AnonymousFunction():
                return Closure(node.params, node.body, scope, is_expression=True)

            case ast.Block():
                return self.exec_block(node.statements, scope)

            case _:
                raise TypeError(f"Cannot evaluate node of type {type(node).__name__}")

    # --- statement helpers ---

    def _eval_for_each(self, node: ast.ForEach, scope: Scope):
        iterable = self.eval(node.iterable, scope)
        if isinstance(iterable, list):
            pairs = [(item, float(i)) for i, item in enumerate(iterable)]
        elif isinstance(iterable, dict):
            if len(node.vars) == 1:
                pairs = [(v, None) for v in iterable.values()]
            else:
                pairs = list(iterable.items())
        elif isinstance(iterable, str):
            pairs = [(ch, float(i)) for i, ch in enumerate(iterable)]
        else:
            raise _type_error(f"for-each can only iterate over lists and objects, got {type_name(iterable)}", node.loc)

        for first, second in pairs:
            frame = Scope(scope, TRANSIENT)
            frame[node.vars[0]] = first
            if len(node.vars) == 2:
                frame[node.vars[1]] = second
            try:
                self.exec_block(node.body, frame)
            except BreakSignal:
                break
        return None

    def _eval_attempt(self, node: ast.Attempt, scope: Scope):
        try:
            return self.exec_block(node.body, scope)
        except TailsRuntimeError as e:
            failure = e
        self._dbg("RESCUE", failure.kind, failure.message)
        frame = Scope(scope, TRANSIENT)
        if node.error_var:
            frame[node.error_var] = ErrorValue(failure.message, failure.kind)
        # Failures inside the rescue body propagate unchanged
        return self.exec_block(node.rescue_body, frame)

    def _eval_inc_dec(self, node: ast.IncDec, scope: Scope):
        owner = scope.find_owner(node.name)
        if owner is None:
            raise PathNotFound(node.name, node.loc)
        current = owner.bindings[node.name]
        amount = self.eval(node.amount, scope)
        if not is_number(current):
            raise _type_error(f"Cannot apply '{node.op}' to {type_name(current)} ~{node.name}", node.loc)
        if not is_number(amount):
            raise _type_error(f"'{node.op}' amount must be a number, got {type_name(amount)}", node.loc)
        value = current + amount if node.op == 'up' else current - amount
        owner.bindings[node.name] = value
        return value

    def _eval_property_assignment(self, node: ast.PropertyAssignment, scope: Scope):
        owner = scope.find_owner(node.name)
        if owner is None:
            raise PathNotFound(node.name, node.loc)
        keys = [self._eval_key(k, scope) for k in node.path]
        value = self.eval(node.expr, scope)
        owner.bindings[node.name] = self._set_in(owner.bindings[node.name], keys, value, node.loc)
        return value

    def _set_in(self, container, keys, value, loc):
        """Returns a copy of container with value stored at keys."""
        key, rest = keys[0], keys[1:]
        if isinstance(container, dict):
            out = dict(container)
            k = self._object_key(key)
            out[k] = self._set_in(out.get(k, {}), rest, value, loc) if rest else value
            return out
        if isinstance(container, list):
            idx = self._list_index(container, key, loc)
            out = list(container)
            out[idx] = self._set_in(out[idx], rest, value, loc) if rest else value
            return out
        raise _type_error(f"Cannot set property on {type_name(container)}", loc)

    # --- property access ---

    def _eval_key(self, key_node, scope: Scope):
        if isinstance(key_node, ast.String) and all(isinstance(p, str) for p in key_node.parts):
            return ''.join(key_node.parts)
        return self.eval(key_node, scope)

    @staticmethod
    def _object_key(key) -> str:
        if is_number(key):
            return format_number(key)
        if isinstance(key, str):
            return key
        raise _type_error(f"Object keys must be strings, got {type_name(key)}")

    def _list_index(self, seq, key, loc) -> int:
        if isinstance(key, str):
            try:
                key = float(key)
            except ValueError:
                raise _type_error(f"List index must be numeric, got string: '{key}'", loc)
        if not is_number(key) or not float(key).is_integer():
            raise _type_error(f"List index must be a whole number, got {to_display(key)}", loc)
        idx = int(key)
        if idx < 0 or idx >= len(seq):
            raise TailsRuntimeError(
                f"Index {idx} out of range for length {len(seq)}", INDEX_OUT_OF_RANGE, loc)
        return idx

    def get_property(self, base, key, loc: Optional[dict] = None):
        if isinstance(base, dict):
            return base.get(self._object_key(key))
        if isinstance(base, (list, str)):
            if key == 'length':
                return float(len(base))
            return base[self._list_index(base, key, loc)]
        if isinstance(base, ErrorValue):
            if key == 'message':
                return base.message
            if key == 'kind':
                return base.kind
            return None
        raise _type_error(f"Cannot access property '{to_display(key)}' on {type_name(base)}", loc)

    # --- operators ---

    def binary_op(self, op: str, a, b, loc: Optional[dict] = None):
        if op == '==':
            return values_equal(a, b)
        if op == '!=':
            return not values_equal(a, b)
        if op == '+':
            if is_number(a) and is_number(b):
                return a + b
            if isinstance(a, str) or isinstance(b, str):
                return to_display(a) + to_display(b)
            if isinstance(a, list) and isinstance(b, list):
                return a + b
            if isinstance(a, dict) and isinstance(b, dict):
                return {**a, **b}
            raise _type_error(f"Cannot add {type_name(a)} and {type_name(b)}", loc)
        if op in ('<', '>', '<=', '>='):
            comparable = ((is_number(a) and is_number(b))
                          or (isinstance(a, str) and isinstance(b, str))
                          or (isinstance(a, datetime) and isinstance(b, datetime)))
            if not comparable:
                raise _type_error(f"Cannot compare {type_name(a)} and {type_name(b)} with '{op}'", loc)
            match op:
                case '<':
                    return a < b
                case '>':
                    return a > b
                case '<=':
                    return a <= b
                case _:
                    return a >= b

        if not (is_number(a) and is_number(b)):
            raise _type_error(f"Operator '{op}' expects numbers, got {type_name(a)} and {type_name(b)}", loc)
        match op:
            case '-':
                return a - b
            case '*':
                return a * b
            case '/':
                if b == 0:
                    raise TailsRuntimeError("Division by zero", DIVISION_BY_ZERO, loc)
                return a / b
            case '\\':
                if b == 0:
                    raise TailsRuntimeError("Division by zero", DIVISION_BY_ZERO, loc)
                return float(math.floor(a / b))
            case '%':
                if b == 0:
                    raise TailsRuntimeError("Modulo by zero", DIVISION_BY_ZERO, loc)
                return math.fmod(a, b)
        raise TypeError(f"Unknown operator {op!r}")

    # --- calls ---

    def resolve_callable(self, name: str, scope: Scope, node=None) -> TailsCallable:
        """Actions first, then builtins, then a ~variable holding a callable."""
        action = scope.find_function(name)
        if action is not None:
            return action
        builtin = self.builtins.get(name)
        if builtin is not None:
            return builtin
        bound = scope.get(name)
        if isinstance(bound, TailsCallable):
            return bound
        raise TailsRuntimeError(f"Undefined function: {name}", UNDEFINED_FUNCTION, getattr(node, 'loc', None))

    def call_by_name(self, name: str, args: list, scope: Scope, node=None):
        callee = self.resolve_callable(name, scope, node)
        return self.call(callee, args, scope, node)

    def call(self, callee, args: list, scope: Optional[Scope] = None, node=None):
        """Invokes a closure or builtin with already-evaluated arguments."""
        if not isinstance(callee, TailsCallable):
            raise _type_error(f"Cannot call a {type_name(callee)}", getattr(node, 'loc', None))
        self._push_frame(callee.name or '<function>', callee, args, node)
        try:
            if isinstance(callee, Closure):
                return self._call_closure(callee, args, node)
            return callee(args, scope if scope is not None else Scope())
        except BreakSignal:
            raise TailsRuntimeError("break-loop used outside of a loop", TYPE_MISMATCH)
        except TailsRuntimeError as e:
            if e.loc is None:
                e.loc = getattr(node, "loc", None)
            if e.trace is None:
                e.trace = [f["name"] for f in self.call_stack]
            raise
        finally:
            self._pop_frame()

    def _call_closure(self, fn: Closure, args: list, node=None):
        if len(args) != fn.arity:
            label = fn.name or 'anonymous function'
            raise _type_error(
                f"{label} expects {fn.arity} argument(s), got {len(args)}",
                getattr(node, 'loc', None))
        frame = Scope(fn.closure, TRANSIENT if fn.is_expression else CALL)
        for param, arg in zip(fn.params, args):
            frame[param] = arg
        try:
            if fn.is_expression:
                return self.eval(fn.body, frame)
            return self.exec_block(fn.body, frame)
        except GiveSignal as g:
            return g.value
