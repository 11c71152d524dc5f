from tails.tails_runtime import ExecutionResult, ScriptRunner


def run_tails(src: str, **kwargs):
    runner = ScriptRunner(**kwargs)
    return runner.handle_script(src)


def test_format_error_is_empty_on_success():
    assert ExecutionResult(status='success', value=1).format_error() == ""


def test_format_error_without_location():
    res = ExecutionResult(status='error', error_message="Runtime error: boom")
    assert res.format_error() == "Runtime error: boom"


def test_parse_error_has_location_and_context():
    res = run_tails("~x is 1\n~y is (1 + 2")
    assert res.status == 'error'
    assert res.error_message.startswith("Parse error: Expected")
    assert res.error_token["line"] is not None
    text = res.format_error()
    assert text.startswith(f"Error on line {res.error_token['line']}, col {res.error_token['col']}: Parse error:")
    assert "| ~y is (1 + 2" in text


def test_lex_error_reports_position():
    res = run_tails('say "unterminated')
    assert res.status == 'error'
    assert "Unterminated string literal" in res.error_message
    assert res.error_token == {"line": 1, "col": 5}


def test_runtime_error_points_at_the_failing_expression():
    res = run_tails("~a is 1\n~b is ~missing + 1\n~c is 3")
    assert res.status == 'error'
    assert res.error_message == "Runtime error: Undefined variable: ~missing"
    assert res.error_token["line"] == 2
    assert res.error_token["col"] == 7

    lines = res.context.splitlines()
    marked = next(i for i, line in enumerate(lines) if line.startswith(">"))
    assert lines[marked] == "> 2 | ~b is ~missing + 1"
    caret_line = lines[marked + 1]
    assert caret_line.rstrip().endswith("^")
    assert caret_line.index("^") == lines[marked].index("~missing")
    # Surrounding lines are shown too
    assert "  1 | ~a is 1" in lines
    assert "  3 | ~c is 3" in lines


def test_runtime_error_includes_call_trace():
    src = """action inner ~x (~x / 0)
action outer ~x (inner ~x)
outer 1"""
    res = run_tails(src)
    assert res.status == 'error'
    assert res.error_message == "Runtime error: Division by zero"
    assert res.error_token["line"] == 1
    assert "Tails stacktrace: (outer) (inner)" in res.context
    assert res.format_error().startswith("Error on line 1")


def test_builtin_errors_trace_the_builtin_name():
    res = run_tails('action go ~x (length ~x)\ngo 5')
    assert res.status == 'error'
    assert "Tails stacktrace: (go) (length)" in res.context


def test_errors_are_recorded_as_stderr_side_effects():
    res = run_tails('say "before"\n1 / 0')
    assert [e["topics"] for e in res.side_effects] == [["stdout"], ["stderr"]]
    assert res.side_effects[-1]["message"] == res.error_message


def test_call_depth_error_kind_is_catchable():
    src = """
    action forever ~n (forever ~n)
    attempt (forever 1) rescue ~e (~e.kind)
    """
    res = run_tails(src, max_call_depth=20)
    assert res.status == 'success'
    assert res.value == "call-depth"


def test_runner_recovers_after_an_error():
    runner = ScriptRunner()
    assert runner.handle_script("1 / 0").status == 'error'
    res = runner.handle_script("1 + 1")
    assert res.status == 'success'
    assert res.value == 2
    assert res.side_effects == []
