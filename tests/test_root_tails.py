import pytest

from tails.tails_runtime import ScriptRunner


def run_tails(src: str, **kwargs):
    runner = ScriptRunner(**kwargs)
    return runner.handle_script(src)


def assert_ok(res, expected=None):
    assert res.status == 'success', f"expected success, got {res.status}: {res.error_message}"
    if expected is not None:
        assert res.value == expected


@pytest.mark.parametrize("src,expected", [
    ("is-even 4", True),
    ("is-even 3", False),
    ("is-odd 3", True),
    ("is-positive 2", True),
    ("is-positive 0", False),
    ("is-negative -1", True),
    ("is-zero 0", True),
    ("double 4", 8),
    ("triple 3", 9),
    ("quadruple 2", 8),
    ("half 5", 2.5),
    ("square 4", 16),
    ("increment 1", 2),
    ("decrement 1", 0),
    ("add 2 3", 5),
    ("multiply 4 5", 20),
])
def test_prelude_actions(src, expected):
    res = run_tails(src)
    assert_ok(res)
    if isinstance(expected, bool):
        assert res.value is expected
    else:
        assert res.value == expected


def test_prelude_actions_compose_with_higher_order_builtins():
    assert_ok(run_tails("reduce (map (filter (range 1 6) is-odd) square) add 0"), 35)


def test_prelude_is_skipped_when_disabled():
    res = run_tails("double 2", load_prelude=False)
    assert res.status == 'error'
    assert "Undefined function: double" in res.error_message


def test_user_definitions_shadow_prelude_per_runner():
    runner = ScriptRunner()
    assert_ok(runner.handle_script('action double ~n ("mine")\ndouble 1'), "mine")
    # Another runner still sees the prelude version
    assert_ok(run_tails("double 1"), 2)
    # And the shadowed prelude action is still reachable in the core scope
    assert "double" in runner.core_scope.functions
