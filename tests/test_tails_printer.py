from datetime import datetime, timezone

import pytest

from tails.tails_datatypes import Builtin, Closure, DecimalNumber, ErrorValue, Scope
from tails.tails_music import parse_mini_notation
from tails.tails_printer import Printer, format_number, to_display


@pytest.mark.parametrize("value,expected", [
    (3.0, "3"),
    (-2.0, "-2"),
    (2.5, "2.5"),
    (DecimalNumber(1.0), "1"),
    (1e20, "1e+20"),
    (float("nan"), "NaN"),
    (float("inf"), "inf"),
    (float("-inf"), "-inf"),
])
def test_format_number(value, expected):
    assert format_number(value) == expected


def test_pformat_quotes_and_escapes_strings():
    pr = Printer()
    assert pr.pformat("hi") == '"hi"'
    assert pr.pformat('a"b\n') == '"a\\"b\\n"'


def test_to_display_leaves_strings_raw_at_every_depth():
    assert to_display("hi") == "hi"
    assert to_display([1.0, "a", [True]]) == "[1, a, [true]]"
    assert to_display({"k": "v"}) == "{k: v}"


def test_pformat_nested_collections():
    pr = Printer()
    assert pr.pformat([1.0, "a", [True, None]]) == '[1, "a", [true, null]]'
    assert pr.pformat({"a": 1.0, "b": "x"}) == '{a: 1, b: "x"}'
    assert pr.pformat([]) == "[]"
    assert pr.pformat({}) == "{}"


def test_pformat_runtime_values():
    pr = Printer()
    assert pr.pformat(ErrorValue("boom")) == "Error: boom"
    assert pr.pformat(Closure(["x"], [], Scope(), name="twice")) == "<action twice>"
    assert pr.pformat(Closure(["x"], None, Scope(), is_expression=True)) == "<function>"
    assert pr.pformat(Builtin("length", lambda args, scope: None)) == "<builtin length>"
    assert pr.pformat(datetime(2024, 1, 15, tzinfo=timezone.utc)) == "2024-01-15T00:00:00Z"


def test_pformat_falls_back_to_repr():
    assert Printer().pformat(parse_mini_notation("c e")) == '<pattern "c e">'
