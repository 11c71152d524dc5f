# tails_runtime.py

import base64
import binascii
import hashlib
import hmac
import inspect
import math
import os
import random
import re
import subprocess
import sys
import time
import urllib.parse
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional

import pystache
from pystache.parser import ParsingError

from tails import tails_ast as ast
from tails import tails_fs, tails_http
from tails.tails_datatypes import (
    Scope, Builtin, TailsCallable, ErrorValue, DecimalNumber,
    ParseError, TailsRuntimeError,
    TYPE_MISMATCH, INDEX_OUT_OF_RANGE, IO_ERROR, ENCODING_ERROR,
    is_number, is_truthy, values_equal, type_name, normalize,
)
from tails.tails_interpreter import Evaluator
from tails.tails_music import Pattern, Scheduler, parse_mini_notation
from tails.tails_parser import parse
from tails.tails_printer import to_display, format_number
from tails.tails_serialize import serialize, deserialize, to_builtin


# ===================================================================
# 1. Builtin registration helpers
# ===================================================================

def _describe_arity(sig: inspect.Signature) -> str:
    params = list(sig.parameters.values())
    if any(p.kind == p.VAR_POSITIONAL for p in params):
        required = sum(1 for p in params
                       if p.kind != p.VAR_POSITIONAL and p.default is p.empty)
        return f"at least {required} argument(s)"
    required = sum(1 for p in params if p.default is p.empty)
    if required == len(params):
        return f"{required} argument(s)"
    return f"{required} to {len(params)} arguments"


def _builtin_from_method(tails_name: str, method) -> Builtin:
    """Wraps a StdLib method as a Builtin that validates its own arity.

    Methods declaring a keyword-only `scope` parameter receive the calling
    scope. Results are normalized so that host ints and tuples never leak
    into Tails values.
    """
    sig = inspect.signature(method)
    wants_scope = 'scope' in sig.parameters
    positional = sig.replace(parameters=[p for p in sig.parameters.values() if p.name != 'scope'])

    def handler(args: list, scope: Scope):
        try:
            positional.bind(*args)
        except TypeError:
            raise TailsRuntimeError(
                f"{tails_name} expects {_describe_arity(positional)}, got {len(args)}",
                TYPE_MISMATCH)
        if wants_scope:
            return normalize(method(*args, scope=scope))
        return normalize(method(*args))

    return Builtin(tails_name, handler)


_KIND_CHECKS: Dict[str, Callable[[Any], bool]] = {
    'number': is_number,
    'string': lambda v: isinstance(v, str),
    'list': lambda v: isinstance(v, list),
    'object': lambda v: isinstance(v, dict),
    'date': lambda v: isinstance(v, datetime),
    'function': lambda v: isinstance(v, TailsCallable),
}


def _need(fname: str, value: Any, kind: str, what: str = "argument") -> Any:
    if not _KIND_CHECKS[kind](value):
        article = 'an' if kind[0] in 'aeiou' else 'a'
        raise TailsRuntimeError(
            f"{fname} {what} must be {article} {kind}, got {type_name(value)}", TYPE_MISMATCH)
    return value


def _whole(fname: str, value: Any, what: str = "argument") -> int:
    _need(fname, value, 'number', what)
    if not float(value).is_integer():
        raise TailsRuntimeError(
            f"{fname} {what} must be a whole number, got {format_number(value)}", TYPE_MISMATCH)
    return int(value)


def _distinct(items: List[Any]) -> List[Any]:
    # values_equal keeps `true` and `1` apart, which a set() would not
    out: List[Any] = []
    for item in items:
        if not any(values_equal(item, seen) for seen in out):
            out.append(item)
    return out


def _contains_value(items: List[Any], value: Any) -> bool:
    return any(values_equal(item, value) for item in items)


def _sort_key(fname: str, values: List[Any]):
    if all(is_number(v) for v in values):
        return float
    if all(isinstance(v, str) for v in values):
        return str
    if all(isinstance(v, datetime) for v in values):
        return lambda d: d
    raise TailsRuntimeError(f"{fname} can only sort numbers, strings or dates of one kind", TYPE_MISMATCH)


def _path_keys(fname: str, path: Any) -> List[Any]:
    if isinstance(path, str):
        return [k for k in path.split('.') if k]
    if isinstance(path, list):
        return list(path)
    raise TailsRuntimeError(f"{fname} path must be a string or a list, got {type_name(path)}", TYPE_MISMATCH)


def _as_utc(d: datetime) -> datetime:
    if d.tzinfo is None:
        return d.replace(tzinfo=timezone.utc)
    return d.astimezone(timezone.utc)


def _round_half_away(x: float) -> float:
    return math.copysign(math.floor(abs(x) + 0.5), x)


def _list_position(fname: str, items: list, index: Any, allow_end: bool = False) -> int:
    idx = _whole(fname, index, 'index')
    limit = len(items) + 1 if allow_end else len(items)
    if idx < 0 or idx >= limit:
        raise TailsRuntimeError(
            f"{fname}: index {idx} out of range for length {len(items)}", INDEX_OUT_OF_RANGE)
    return idx


def _number_args(fname: str, values: list) -> list:
    # `max [1, 2]` and `max 1 2` are both accepted
    if len(values) == 1 and isinstance(values[0], list):
        values = values[0]
    for v in values:
        _need(fname, v, 'number', 'element')
    return values


_DATE_ONLY = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def _clear_terminal():
    # Reset the screen, then home the cursor
    sys.stdout.write("\x1bc\x1b[H")
    sys.stdout.flush()


# ===================================================================
# 2. The Standard Library
# ===================================================================

class StdLib:
    """Python implementations for all Tails builtins.

    Every method named `_snake_case` is exposed to scripts as `snake-case`.
    Arguments arrive already evaluated; callables passed in (actions,
    anonymous functions, builtin references) are invoked through the
    evaluator so that call depth and error tracing stay uniform.
    """

    def __init__(self, evaluator: Evaluator, *,
                 env: Optional[Mapping[str, str]] = None,
                 rng: Optional[random.Random] = None,
                 input_func: Optional[Callable[[str], str]] = None,
                 output_func: Optional[Callable[[str], Any]] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 scheduler: Optional[Scheduler] = None,
                 http_transport=None,
                 sleep_func: Optional[Callable[[float], Any]] = None,
                 clear_func: Optional[Callable[[], Any]] = None):
        self.evaluator = evaluator
        self.env = env if env is not None else os.environ
        self.rng = rng or random.Random()
        self.input_func = input_func or input
        self.output_func = output_func
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.scheduler = scheduler or Scheduler()
        self.http_transport = http_transport
        self.sleep_func = sleep_func or time.sleep
        self.clear_func = clear_func or _clear_terminal
        self.registry: Dict[str, Builtin] = {}
        for name, member in inspect.getmembers(self):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                tails_name = name[1:].replace('_', '-')
                self.registry[tails_name] = _builtin_from_method(tails_name, member)

    def call(self, fn, args: list, scope: Scope):
        return self.evaluator.call(fn, args, scope)

    # --- I/O ---
    def _say(self, *values):
        message = ' '.join(to_display(v) for v in values)
        self.evaluator.side_effects.append({'topics': ['stdout'], 'message': message})
        if self.output_func is not None:
            self.output_func(message)
        return None

    def _ask(self, prompt=""):
        try:
            return self.input_func(to_display(prompt))
        except EOFError:
            raise TailsRuntimeError("ask: no input available", IO_ERROR)

    # --- Types ---
    def _type_of(self, value): return type_name(value)
    def _is_number(self, value): return is_number(value)
    def _is_string(self, value): return isinstance(value, str)
    def _is_boolean(self, value): return isinstance(value, bool)
    def _is_list(self, value): return isinstance(value, list)
    def _is_object(self, value): return isinstance(value, dict)
    def _is_null(self, value): return value is None
    def _is_error(self, value): return isinstance(value, ErrorValue)

    def _is_empty(self, value):
        if value is None:
            return True
        if isinstance(value, (str, list, dict)):
            return len(value) == 0
        return False

    def _to_string(self, value): return to_display(value)

    def _to_number(self, value):
        if is_number(value):
            return value
        if isinstance(value, bool):
            return 1.0 if value else 0.0
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                pass
        raise TailsRuntimeError(f"Cannot convert {to_display(value)!r} to a number", TYPE_MISMATCH)

    # --- Lists: core ---
    def _length(self, collection):
        if isinstance(collection, (str, list, dict)):
            return len(collection)
        raise TailsRuntimeError(f"length expects a list, string or object, got {type_name(collection)}", TYPE_MISMATCH)

    def _append(self, items, value):
        return _need('append', items, 'list') + [value]

    def _map(self, items, fn, *, scope: Scope):
        _need('map', items, 'list', 'first argument')
        _need('map', fn, 'function', 'second argument')
        return [self.call(fn, [item], scope) for item in items]

    def _filter(self, items, predicate, *, scope: Scope):
        _need('filter', items, 'list', 'first argument')
        _need('filter', predicate, 'function', 'second argument')
        return [item for item in items if is_truthy(self.call(predicate, [item], scope))]

    def _reduce(self, items, fn, initial, *, scope: Scope):
        _need('reduce', items, 'list', 'first argument')
        _need('reduce', fn, 'function', 'second argument')
        acc = initial
        for item in items:
            acc = self.call(fn, [acc, item], scope)
        return acc

    def _sort(self, items):
        _need('sort', items, 'list')
        if not items:
            return []
        return sorted(items, key=_sort_key('sort', items))

    def _sort_by(self, items, fn, *, scope: Scope):
        _need('sort-by', items, 'list', 'first argument')
        _need('sort-by', fn, 'function', 'second argument')
        keys = [self.call(fn, [item], scope) for item in items]
        if not items:
            return []
        key = _sort_key('sort-by', keys)
        order = sorted(range(len(items)), key=lambda i: key(keys[i]))
        return [items[i] for i in order]

    def _reverse(self, seq):
        if isinstance(seq, str):
            return seq[::-1]
        return list(reversed(_need('reverse', seq, 'list')))

    # --- Lists: predicates ---
    def _find(self, items, predicate, *, scope: Scope):
        _need('find', items, 'list', 'first argument')
        for item in items:
            if is_truthy(self.call(predicate, [item], scope)):
                return item
        return None

    def _find_index(self, items, predicate, *, scope: Scope):
        _need('find-index', items, 'list', 'first argument')
        for i, item in enumerate(items):
            if is_truthy(self.call(predicate, [item], scope)):
                return i
        return None

    def _find_last(self, items, predicate, *, scope: Scope):
        _need('find-last', items, 'list', 'first argument')
        for item in reversed(items):
            if is_truthy(self.call(predicate, [item], scope)):
                return item
        return None

    def _every(self, items, predicate, *, scope: Scope):
        _need('every', items, 'list', 'first argument')
        return all(is_truthy(self.call(predicate, [item], scope)) for item in items)

    def _some(self, items, predicate, *, scope: Scope):
        _need('some', items, 'list', 'first argument')
        return any(is_truthy(self.call(predicate, [item], scope)) for item in items)

    def _count_if(self, items, predicate, *, scope: Scope):
        _need('count-if', items, 'list', 'first argument')
        return sum(1 for item in items if is_truthy(self.call(predicate, [item], scope)))

    def _remove_if(self, items, predicate, *, scope: Scope):
        _need('remove-if', items, 'list', 'first argument')
        return [item for item in items if not is_truthy(self.call(predicate, [item], scope))]

    def _take_while(self, items, predicate, *, scope: Scope):
        _need('take-while', items, 'list', 'first argument')
        out = []
        for item in items:
            if not is_truthy(self.call(predicate, [item], scope)):
                break
            out.append(item)
        return out

    def _drop_while(self, items, predicate, *, scope: Scope):
        _need('drop-while', items, 'list', 'first argument')
        for i, item in enumerate(items):
            if not is_truthy(self.call(predicate, [item], scope)):
                return items[i:]
        return []

    def _partition(self, items, predicate, *, scope: Scope):
        """Returns [matching, rest]."""
        _need('partition', items, 'list', 'first argument')
        yes, no = [], []
        for item in items:
            (yes if is_truthy(self.call(predicate, [item], scope)) else no).append(item)
        return [yes, no]

    def _group_by(self, items, fn, *, scope: Scope):
        _need('group-by', items, 'list', 'first argument')
        groups: Dict[str, list] = {}
        for item in items:
            key = to_display(self.call(fn, [item], scope))
            groups.setdefault(key, []).append(item)
        return groups

    # --- Lists: positional edits (all return new lists) ---
    def _remove(self, items, value):
        _need('remove', items, 'list', 'first argument')
        out = list(items)
        for i, item in enumerate(out):
            if values_equal(item, value):
                del out[i]
                break
        return out

    def _remove_at(self, items, index):
        _need('remove-at', items, 'list', 'first argument')
        idx = _list_position('remove-at', items, index)
        return items[:idx] + items[idx + 1:]

    def _insert(self, items, index, value):
        _need('insert', items, 'list', 'first argument')
        idx = _list_position('insert', items, index, allow_end=True)
        return items[:idx] + [value] + items[idx:]

    def _set_at(self, items, index, value):
        _need('set-at', items, 'list', 'first argument')
        idx = _list_position('set-at', items, index)
        out = list(items)
        out[idx] = value
        return out

    def _pop(self, items):
        """Returns {value: last, list: rest}."""
        _need('pop', items, 'list')
        if not items:
            raise TailsRuntimeError("pop: cannot pop from an empty list", INDEX_OUT_OF_RANGE)
        return {'value': items[-1], 'list': items[:-1]}

    def _shift(self, items):
        _need('shift', items, 'list')
        if not items:
            raise TailsRuntimeError("shift: cannot shift from an empty list", INDEX_OUT_OF_RANGE)
        return {'value': items[0], 'list': items[1:]}

    def _unshift(self, items, value):
        return [value] + _need('unshift', items, 'list', 'first argument')

    # --- Lists: queries ---
    def _index_of(self, seq, value):
        if isinstance(seq, str):
            _need('index-of', value, 'string', 'second argument')
            idx = seq.find(value)
            return idx if idx != -1 else None
        _need('index-of', seq, 'list', 'first argument')
        for i, item in enumerate(seq):
            if values_equal(item, value):
                return i
        return None

    def _contains(self, collection, value):
        if isinstance(collection, str):
            return isinstance(value, str) and value in collection
        if isinstance(collection, dict):
            return isinstance(value, str) and value in collection
        return _contains_value(_need('contains', collection, 'list', 'first argument'), value)

    def _slice(self, seq, start, end=None):
        if not isinstance(seq, (list, str)):
            raise TailsRuntimeError(f"slice expects a list or string, got {type_name(seq)}", TYPE_MISMATCH)
        lo = max(0, _whole('slice', start, 'start'))
        hi = len(seq) if end is None else min(len(seq), _whole('slice', end, 'end'))
        return seq[lo:hi] if lo < hi else seq[:0]

    def _concat(self, first, *rest):
        out = list(_need('concat', first, 'list'))
        for other in rest:
            out.extend(_need('concat', other, 'list'))
        return out

    def _take(self, items, n):
        _need('take', items, 'list', 'first argument')
        return items[:max(0, _whole('take', n))]

    def _drop(self, items, n):
        _need('drop', items, 'list', 'first argument')
        return items[max(0, _whole('drop', n)):]

    def _first(self, items):
        _need('first', items, 'list')
        return items[0] if items else None

    def _last(self, items):
        _need('last', items, 'list')
        return items[-1] if items else None

    def _range(self, start, end=None, step=1):
        if end is None:
            start, end = 0, start
        lo, hi, st = _whole('range', start), _whole('range', end), _whole('range', step)
        if st == 0:
            raise TailsRuntimeError("range step cannot be zero", TYPE_MISMATCH)
        return list(range(lo, hi, st))

    # --- Lists: reshaping ---
    def _flatten(self, items, depth=None):
        _need('flatten', items, 'list', 'first argument')
        levels = None if depth is None else _whole('flatten', depth, 'depth')

        def walk(seq, remaining):
            out = []
            for item in seq:
                if isinstance(item, list) and (remaining is None or remaining > 0):
                    out.extend(walk(item, None if remaining is None else remaining - 1))
                else:
                    out.append(item)
            return out
        return walk(items, levels)

    def _unique(self, items):
        return _distinct(_need('unique', items, 'list'))

    def _zip(self, a, b):
        _need('zip', a, 'list', 'first argument')
        _need('zip', b, 'list', 'second argument')
        return [[x, y] for x, y in zip(a, b)]

    def _chunk(self, items, size):
        _need('chunk', items, 'list', 'first argument')
        n = _whole('chunk', size, 'size')
        if n <= 0:
            raise TailsRuntimeError("chunk size must be positive", TYPE_MISMATCH)
        return [items[i:i + n] for i in range(0, len(items), n)]

    def _transpose(self, matrix):
        _need('transpose', matrix, 'list')
        if not matrix:
            return []
        if not all(isinstance(row, list) for row in matrix):
            raise TailsRuntimeError("transpose expects a list of lists", TYPE_MISMATCH)
        width = len(matrix[0])
        if any(len(row) != width for row in matrix):
            raise TailsRuntimeError("transpose expects rows of equal length", TYPE_MISMATCH)
        return [[row[i] for row in matrix] for i in range(width)]

    def _sum(self, items):
        return math.fsum(_number_args('sum', [_need('sum', items, 'list')]))

    def _max(self, *values):
        nums = _number_args('max', list(values))
        return max(nums) if nums else None

    def _min(self, *values):
        nums = _number_args('min', list(values))
        return min(nums) if nums else None

    # --- Sets ---
    def _union(self, a, b):
        _need('union', a, 'list', 'first argument')
        _need('union', b, 'list', 'second argument')
        return _distinct(a + b)

    def _difference(self, a, b):
        _need('difference', a, 'list', 'first argument')
        _need('difference', b, 'list', 'second argument')
        return _distinct([x for x in a if not _contains_value(b, x)])

    def _intersection(self, a, b):
        _need('intersection', a, 'list', 'first argument')
        _need('intersection', b, 'list', 'second argument')
        return _distinct([x for x in a if _contains_value(b, x)])

    # --- Strings ---
    def _split(self, string, separator):
        _need('split', string, 'string', 'first argument')
        _need('split', separator, 'string', 'separator')
        if separator == "":
            return list(string)
        return string.split(separator)

    def _join(self, items, separator=""):
        _need('join', items, 'list', 'first argument')
        _need('join', separator, 'string', 'separator')
        return separator.join(to_display(item) for item in items)

    def _trim(self, string): return _need('trim', string, 'string').strip()
    def _uppercase(self, string): return _need('uppercase', string, 'string').upper()
    def _lowercase(self, string): return _need('lowercase', string, 'string').lower()

    def _replace(self, string, old, new):
        _need('replace', string, 'string', 'first argument')
        _need('replace', old, 'string', 'pattern')
        return string.replace(old, to_display(new))

    def _starts_with(self, string, prefix):
        return _need('starts-with', string, 'string').startswith(_need('starts-with', prefix, 'string', 'prefix'))

    def _ends_with(self, string, suffix):
        return _need('ends-with', string, 'string').endswith(_need('ends-with', suffix, 'string', 'suffix'))

    def _template(self, text, data):
        """Renders a Mustache template; whole numbers render without `.0`."""
        _need('template', text, 'string', 'first argument')
        renderer = pystache.Renderer(escape=lambda u: u, missing_tags='ignore')
        try:
            return renderer.render(text, to_builtin(data))
        except ParsingError as e:
            raise TailsRuntimeError(f"template: {e}", ENCODING_ERROR)

    # --- Math ---
    def _absolute(self, n): return abs(_need('absolute', n, 'number'))

    def _square_root(self, n):
        if _need('square-root', n, 'number') < 0:
            raise TailsRuntimeError("Cannot take the square root of a negative number", TYPE_MISMATCH)
        return math.sqrt(n)

    def _power(self, base, exponent):
        _need('power', base, 'number', 'base')
        _need('power', exponent, 'number', 'exponent')
        try:
            result = math.pow(base, exponent)
        except (OverflowError, ValueError) as e:
            raise TailsRuntimeError(f"power: {e}", TYPE_MISMATCH)
        return result

    def _round(self, n, places=0):
        _need('round', n, 'number')
        digits = _whole('round', places, 'places')
        if not math.isfinite(n):
            return n
        try:
            factor = 10.0 ** digits
        except OverflowError:
            factor = math.inf
        scaled = n * factor
        if factor == 0 or not math.isfinite(scaled):
            raise TailsRuntimeError(f"round places out of range, got {digits}", TYPE_MISMATCH)
        return _round_half_away(scaled) / factor

    def _floor(self, n):
        _need('floor', n, 'number')
        return float(math.floor(n)) if math.isfinite(n) else n

    def _ceil(self, n):
        _need('ceil', n, 'number')
        return float(math.ceil(n)) if math.isfinite(n) else n

    def _random(self, *bounds):
        """`random` gives [0, 1); `random a b` gives an integer in [a, b]
        unless either bound was written with a decimal point."""
        if not bounds:
            return self.rng.random()
        if len(bounds) != 2:
            raise TailsRuntimeError(f"random expects 0 or 2 arguments, got {len(bounds)}", TYPE_MISMATCH)
        low, high = (_need('random', b, 'number', 'bound') for b in bounds)
        if low > high:
            low, high = high, low
        fractional = any(isinstance(b, DecimalNumber) or not float(b).is_integer() for b in bounds)
        if fractional:
            return self.rng.uniform(low, high)
        return self.rng.randint(int(low), int(high))

    # --- Objects ---
    def _keys(self, obj): return list(_need('keys', obj, 'object'))
    def _values(self, obj): return list(_need('values', obj, 'object').values())

    def _has(self, obj, key):
        _need('has', obj, 'object', 'first argument')
        return to_display(key) in obj

    def _merge(self, a, b):
        _need('merge', a, 'object', 'first argument')
        _need('merge', b, 'object', 'second argument')
        return {**a, **b}

    def _pick(self, obj, keys):
        _need('pick', obj, 'object', 'first argument')
        wanted = [to_display(k) for k in _need('pick', keys, 'list', 'second argument')]
        return {k: v for k, v in obj.items() if k in wanted}

    def _omit(self, obj, keys):
        _need('omit', obj, 'object', 'first argument')
        unwanted = [to_display(k) for k in _need('omit', keys, 'list', 'second argument')]
        return {k: v for k, v in obj.items() if k not in unwanted}

    def _get_path(self, obj, path):
        """Walks `a.b.0` through objects and lists. Missing steps give null."""
        current = obj
        for key in _path_keys('get-path', path):
            if isinstance(current, dict):
                current = current.get(to_display(key))
            elif isinstance(current, list):
                try:
                    idx = int(float(key))
                except (TypeError, ValueError):
                    return None
                if not 0 <= idx < len(current):
                    return None
                current = current[idx]
            else:
                return None
        return current

    def _set_path(self, obj, path, value):
        keys = [to_display(k) for k in _path_keys('set-path', path)]
        _need('set-path', obj, 'object', 'first argument')
        if not keys:
            return value

        def put(container, remaining):
            out = dict(container) if isinstance(container, dict) else {}
            head, rest = remaining[0], remaining[1:]
            out[head] = put(out.get(head), rest) if rest else value
            return out
        return put(obj, keys)

    # --- Dates ---
    def _now(self): return _as_utc(self.clock())

    def _date(self, text):
        _need('date', text, 'string')
        try:
            if _DATE_ONLY.match(text):
                return datetime.strptime(text, "%Y-%m-%d").replace(tzinfo=timezone.utc)
            return _as_utc(datetime.fromisoformat(text.replace('Z', '+00:00')))
        except ValueError:
            raise TailsRuntimeError(
                f"Invalid date format '{text}'. Expected YYYY-MM-DD or ISO 8601 format", TYPE_MISMATCH)

    def _date_add(self, d, days):
        _need('date-add', d, 'date', 'first argument')
        _need('date-add', days, 'number', 'second argument')
        try:
            return d + timedelta(days=days)
        except OverflowError:
            raise TailsRuntimeError("Date arithmetic overflow", TYPE_MISMATCH)

    def _date_subtract(self, d, days):
        _need('date-subtract', d, 'date', 'first argument')
        _need('date-subtract', days, 'number', 'second argument')
        try:
            return d - timedelta(days=days)
        except OverflowError:
            raise TailsRuntimeError("Date arithmetic overflow", TYPE_MISMATCH)

    def _date_diff(self, start, end):
        """Elapsed time from start to end, each unit truncated toward zero."""
        _need('date-diff', start, 'date', 'first argument')
        _need('date-diff', end, 'date', 'second argument')
        delta = end - start
        ms = int(delta / timedelta(milliseconds=1))
        return {
            'days': int(ms / 86_400_000),
            'hours': int(ms / 3_600_000),
            'minutes': int(ms / 60_000),
            'seconds': int(ms / 1000),
            'milliseconds': ms,
        }

    def _date_format(self, d, fmt):
        _need('date-format', d, 'date', 'first argument')
        return d.strftime(_need('date-format', fmt, 'string', 'second argument'))

    def _date_parse(self, text, fmt):
        _need('date-parse', text, 'string', 'first argument')
        _need('date-parse', fmt, 'string', 'second argument')
        try:
            return _as_utc(datetime.strptime(text, fmt))
        except ValueError:
            raise TailsRuntimeError(f"Failed to parse '{text}' using format '{fmt}'", TYPE_MISMATCH)

    def _date_year(self, d): return _need('date-year', d, 'date').year
    def _date_month(self, d): return _need('date-month', d, 'date').month
    def _date_day(self, d): return _need('date-day', d, 'date').day
    def _date_hour(self, d): return _need('date-hour', d, 'date').hour
    def _date_minute(self, d): return _need('date-minute', d, 'date').minute
    def _date_second(self, d): return _need('date-second', d, 'date').second

    def _date_weekday(self, d):
        # Sunday is 0
        return (_need('date-weekday', d, 'date').weekday() + 1) % 7

    def _date_before(self, a, b):
        return _need('date-before', a, 'date', 'first argument') < _need('date-before', b, 'date', 'second argument')

    def _date_after(self, a, b):
        return _need('date-after', a, 'date', 'first argument') > _need('date-after', b, 'date', 'second argument')

    def _date_equal(self, a, b):
        return _need('date-equal', a, 'date', 'first argument') == _need('date-equal', b, 'date', 'second argument')

    # --- JSON / YAML ---
    def _to_json(self, value, pretty=False): return serialize(value, fmt='json', pretty=is_truthy(pretty))
    def _from_json(self, text): return deserialize(_need('from-json', text, 'string'), fmt='json', strict=True)
    def _to_yaml(self, value): return serialize(value, fmt='yaml')
    def _from_yaml(self, text): return deserialize(_need('from-yaml', text, 'string'), fmt='yaml', strict=True)

    # --- Encoding ---
    def _base64_encode(self, text):
        return base64.b64encode(_need('base64-encode', text, 'string').encode('utf-8')).decode('ascii')

    def _base64_decode(self, text):
        _need('base64-decode', text, 'string')
        try:
            return base64.b64decode(text, validate=True).decode('utf-8')
        except (binascii.Error, ValueError) as e:
            raise TailsRuntimeError(f"Invalid base64 input: {e}", ENCODING_ERROR)

    def _url_encode(self, text):
        return urllib.parse.quote(_need('url-encode', text, 'string'), safe='')

    def _url_decode(self, text):
        try:
            return urllib.parse.unquote(_need('url-decode', text, 'string'), errors='strict')
        except UnicodeDecodeError as e:
            raise TailsRuntimeError(f"Invalid URL encoding: {e.reason}", ENCODING_ERROR)

    # --- Crypto ---
    def _md5(self, text): return hashlib.md5(_need('md5', text, 'string').encode('utf-8')).hexdigest()
    def _sha1(self, text): return hashlib.sha1(_need('sha1', text, 'string').encode('utf-8')).hexdigest()
    def _sha256(self, text): return hashlib.sha256(_need('sha256', text, 'string').encode('utf-8')).hexdigest()

    def _hmac_sha256(self, key, message):
        _need('hmac-sha256', key, 'string', 'key')
        _need('hmac-sha256', message, 'string', 'message')
        return hmac.new(key.encode('utf-8'), message.encode('utf-8'), hashlib.sha256).hexdigest()

    # --- Filesystem ---
    def _read(self, path):
        return tails_fs.read_file(path, base_dir=self.evaluator.source_dir)

    def _write(self, path, data):
        tails_fs.write_file(path, data, base_dir=self.evaluator.source_dir)
        return True

    def _append_file(self, path, data):
        tails_fs.write_file(path, data, base_dir=self.evaluator.source_dir, append=True)
        return True

    def _file_exists(self, path): return tails_fs.file_exists(path, base_dir=self.evaluator.source_dir)
    def _dir_exists(self, path): return tails_fs.dir_exists(path, base_dir=self.evaluator.source_dir)
    def _delete_file(self, path): return tails_fs.delete_file(path, base_dir=self.evaluator.source_dir)

    # --- Environment ---
    def _env(self, name, default=None):
        return self.env.get(_need('env', name, 'string'), default)

    # --- Process and terminal ---
    def _wait(self, seconds):
        if _need('wait', seconds, 'number', 'duration') < 0:
            raise TailsRuntimeError("wait duration cannot be negative", TYPE_MISMATCH)
        self.sleep_func(float(seconds))
        return None

    def _clear(self):
        self.clear_func()
        return None

    def _run(self, command):
        """Runs a shell command. Returns {output, code}; stderr follows stdout."""
        _need('run', command, 'string', 'command')
        self.evaluator._dbg("RUN", command)
        try:
            proc = subprocess.run(command, shell=True, capture_output=True, text=True,
                                  cwd=self.evaluator.source_dir)
        except OSError as e:
            raise TailsRuntimeError(f"Failed to execute command: {e}", IO_ERROR)
        output = proc.stdout
        if proc.stderr:
            output = f"{output}\n{proc.stderr}" if output else proc.stderr
        return {'output': output, 'code': proc.returncode}

    # --- HTTP ---
    def request(self, method, url, config, data=None):
        _need(method.lower(), url, 'string', 'url')
        if config is not None:
            _need(method.lower(), config, 'object', 'config')
        self.evaluator._dbg("HTTP", method, url)
        return tails_http.http_request(method, url, config=config, data=data,
                                       transport=self.http_transport)

    def _get(self, url, config=None): return self.request('GET', url, config)
    def _post(self, url, data, config=None): return self.request('POST', url, config, data)
    def _put(self, url, data, config=None): return self.request('PUT', url, config, data)
    def _patch(self, url, data, config=None): return self.request('PATCH', url, config, data)
    def _delete(self, url, config=None): return self.request('DELETE', url, config)

    # --- Music ---
    def _tempo(self, cpm):
        try:
            self.scheduler.set_tempo(float(_need('tempo', cpm, 'number')))
        except ValueError as e:
            raise TailsRuntimeError(f"tempo: {e}", TYPE_MISMATCH)
        return f"Tempo set to {format_number(cpm)} CPM"

    def _pattern(self, notation):
        try:
            return parse_mini_notation(_need('pattern', notation, 'string'))
        except ValueError as e:
            raise TailsRuntimeError(f"pattern: {e}", TYPE_MISMATCH)

    def _play(self, pattern):
        if isinstance(pattern, str):
            pattern = self._pattern(pattern)
        if not isinstance(pattern, Pattern):
            raise TailsRuntimeError(f"play expects a pattern, got {type_name(pattern)}", TYPE_MISMATCH)
        self.scheduler.add_pattern(pattern)
        return "Pattern added to scheduler"

    def _stop(self):
        self.scheduler.stop()
        return "Scheduler stopped"


# ===================================================================
# 3. Script Execution
# ===================================================================

Token = Dict[str, Any]


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[Token] = None
    side_effects: List[Dict] = field(default_factory=list)
    # Source excerpt with a caret, plus the call trace, when known
    context: Optional[str] = None

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and self.error_token.get('line') is not None:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            col_info = f", col {col}" if col is not None else ""
            msg = f"Error on line {line}{col_info}: {msg}"
        if self.context:
            msg = f"{msg}\n{self.context}"
        return msg


class ScriptRunner:
    """Parses and executes Tails code against a persistent global scope.

    The prelude (`root.tails`) is evaluated into a core scope once per
    runner; user code runs in a child of it, so user definitions shadow
    prelude actions without replacing them.
    """

    _core_loaded_ast: Optional[ast.Program] = None
    _core_source: Optional[str] = None

    def __init__(self, *,
                 env: Optional[Mapping[str, str]] = None,
                 rng: Optional[random.Random] = None,
                 input_func: Optional[Callable[[str], str]] = None,
                 output_func: Optional[Callable[[str], Any]] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 http_transport=None,
                 sleep_func: Optional[Callable[[float], Any]] = None,
                 clear_func: Optional[Callable[[], Any]] = None,
                 load_prelude: bool = True,
                 max_call_depth: int = 100):
        self._load_prelude = load_prelude
        self._initialized = False
        self.source_dir: Optional[str] = None  # directory of the current source file, if known

        self.scheduler = Scheduler()
        self.evaluator = Evaluator(max_call_depth=max_call_depth)
        self.stdlib = StdLib(self.evaluator, env=env, rng=rng, input_func=input_func,
                             output_func=output_func, clock=clock,
                             scheduler=self.scheduler, http_transport=http_transport,
                             sleep_func=sleep_func, clear_func=clear_func)
        self.evaluator.builtins = self.stdlib.registry

        self.core_scope = Scope()
        self.root_scope = Scope(parent=self.core_scope)

    def _initialize(self):
        """Loads root.tails into the core scope if not already loaded."""
        if self._initialized or not self._load_prelude:
            self._initialized = True
            return

        # AST is parsed once and cached on the class
        if ScriptRunner._core_loaded_ast is None:
            core_path = Path(__file__).parent / "root.tails"
            core_source = core_path.read_text(encoding="utf-8")
            try:
                ScriptRunner._core_loaded_ast = parse(core_source)
            except ParseError as e:
                raise RuntimeError(f"Failed to parse root.tails:\n{self._format_parse_error(e, core_source)}") from e
            ScriptRunner._core_source = core_source

        self.evaluator.eval_program(ScriptRunner._core_loaded_ast, self.core_scope)
        self._initialized = True

    # --- error formatting ---

    def _format_parse_error(self, e: ParseError, source: str) -> str:
        if e.line is not None:
            return f"{e.message} (line {e.line}, col {e.col})\n{self._source_context(source, e.line, e.col)}"
        return e.message

    def _format_runtime_error(self, e: TailsRuntimeError, source: str) -> tuple[Optional[str], Optional[Token]]:
        parts = []
        token = None
        loc = e.loc
        if loc and loc.get('line') is not None:
            token = {'line': loc.get('line'), 'col': loc.get('col'), 'text': loc.get('text')}
            context = self._source_context(source, loc['line'], loc.get('col'))
            if context:
                parts.append(context)
        trace = self._format_stacktrace(e.trace or [])
        if trace:
            parts.append(trace)
        return ("\n".join(parts) or None), token

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
            out.append(f"{prefix} {str(i).rjust(width)} | {lines[i - 1]}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)

    def _format_stacktrace(self, trace: List[str]) -> str:
        if not trace:
            return ""
        return "Tails stacktrace: " + " ".join(f"({name})" for name in trace)

    def _error(self, message: str, token: Optional[Token] = None, context: Optional[str] = None) -> ExecutionResult:
        self.evaluator.side_effects.append({'topics': ['stderr'], 'message': message})
        return ExecutionResult(
            status='error',
            error_message=message,
            error_token=token,
            side_effects=self.evaluator.side_effects,
            context=context,
        )

    # --- entry point ---

    def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script.

        Bindings made by one call stay visible to the next, which is what
        the REPL relies on.
        """
        self.evaluator.side_effects = []
        self.evaluator.call_stack.clear()
        self.evaluator.source_dir = self.source_dir or os.getcwd()
        self._initialize()

        # 1. Parse
        try:
            program = parse(source_code)
        except ParseError as e:
            token = {'line': e.line, 'col': e.col} if e.line is not None else None
            context = self._source_context(source_code, e.line, e.col) if e.line is not None else None
            return self._error(f"Parse error: {e.message}", token, context or None)

        # 2. Evaluate
        try:
            value = self.evaluator.eval_program(program, self.root_scope)
        except TailsRuntimeError as e:
            context, token = self._format_runtime_error(e, source_code)
            return self._error(f"Runtime error: {e.message}", token, context)
        except RecursionError:
            return self._error("Runtime error: Maximum recursion depth exceeded")
        except Exception as e:
            self.evaluator._dbg("INTERNAL", repr(e))
            return self._error(f"Internal error: {type(e).__name__}: {e}")

        return ExecutionResult(status='success', value=value, side_effects=self.evaluator.side_effects)
