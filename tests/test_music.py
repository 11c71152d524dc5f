import re

import pytest

from tails.tails_music import Scheduler, parse_mini_notation
from tails.tails_runtime import ScriptRunner


def assert_ok(res, expected=None):
    assert res.status == 'success', f"expected success, got {res.status}: {res.error_message}"
    if expected is not None:
        assert res.value == expected


def assert_error(res, contains: str | None = None):
    assert res.status == 'error', f"expected error, got {res.status} with value {res.value!r}"
    if contains:
        assert contains in (res.error_message or "")


def timeline(pattern):
    return [(pytest.approx(e.time), e.note) for e in pattern.events]


# --- mini-notation ---

def test_steps_share_the_cycle_equally():
    p = parse_mini_notation("c e g")
    assert p.notes == ["c", "e", "g"]
    assert timeline(p) == [(0.0, "c"), (1 / 3, "e"), (2 / 3, "g")]
    assert all(e.duration == pytest.approx(1 / 3) for e in p.events)


def test_rest_takes_a_slot_without_a_note():
    p = parse_mini_notation("c ~ e")
    assert p.notes == ["c", "e"]
    assert p.events[1].note is None


def test_brackets_subdivide_a_step():
    p = parse_mini_notation("[c e] g")
    assert timeline(p) == [(0.0, "c"), (0.25, "e"), (0.5, "g")]
    assert p.events[2].duration == pytest.approx(0.5)


def test_repeat_modifier():
    assert timeline(parse_mini_notation("c*2 e")) == [(0.0, "c"), (0.25, "c"), (0.5, "e")]
    assert [n for _, n in timeline(parse_mini_notation("[c e]*2"))] == ["c", "e", "c", "e"]


@pytest.mark.parametrize("text,fragment", [
    ("[c e", "Unbalanced '['"),
    ("c e]", "Unbalanced ']'"),
    ("c*x", "must be followed by a whole number"),
    ("c*0", "must be positive"),
])
def test_malformed_notation(text, fragment):
    with pytest.raises(ValueError, match=re.escape(fragment)):
        parse_mini_notation(text)


# --- scheduler ---

def test_scheduler_reports_due_events_per_tick():
    sched = Scheduler(cpm=60)
    sched.add_pattern(parse_mini_notation("c e"))
    assert sched.is_playing
    first = sched.tick(1.0)
    assert [(e.time, e.note) for e in first] == [(0.0, "c"), (0.5, "e")]
    second = sched.tick(0.5)
    assert [(e.time, e.note) for e in second] == [(1.0, "c")]


def test_scheduler_orders_events_across_patterns():
    sched = Scheduler(cpm=60)
    sched.add_pattern(parse_mini_notation("c"))
    sched.add_pattern(parse_mini_notation("~ g"))
    events = sched.tick(1.0)
    assert [(e.note, e.pattern) for e in events] == [("c", 0), ("g", 1)]


def test_stopped_scheduler_is_silent():
    sched = Scheduler()
    sched.add_pattern(parse_mini_notation("c"))
    sched.stop()
    assert sched.tick(10.0) == []
    assert sched.patterns == []


def test_tempo_must_be_positive():
    with pytest.raises(ValueError):
        Scheduler().set_tempo(0)


# --- builtins ---

def test_music_builtins_drive_the_runner_scheduler():
    runner = ScriptRunner()
    assert_ok(runner.handle_script("tempo 90"), "Tempo set to 90 CPM")
    assert runner.scheduler.cpm == 90
    assert_ok(runner.handle_script('play "c e g"'), "Pattern added to scheduler")
    assert_ok(runner.handle_script('~p is pattern "c [d e]"\nplay ~p'))
    assert len(runner.scheduler.patterns) == 2
    assert runner.scheduler.is_playing
    assert_ok(runner.handle_script("stop"), "Scheduler stopped")
    assert not runner.scheduler.is_playing


def test_pattern_is_a_value():
    assert_ok(ScriptRunner().handle_script('type-of (pattern "c")'), "pattern")


@pytest.mark.parametrize("src,fragment", [
    ('pattern "[c"', "pattern: Unbalanced '[' in pattern"),
    ("tempo 0", "tempo: tempo must be positive"),
    ("play 5", "play expects a pattern, got number"),
])
def test_music_builtin_errors(src, fragment):
    assert_error(ScriptRunner().handle_script(src), fragment)
