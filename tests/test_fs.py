import json

import pytest

from tails.tails_datatypes import TailsRuntimeError, IO_ERROR
from tails.tails_fs import resolve_path, write_file, read_file
from tails.tails_runtime import ScriptRunner


def assert_ok(res, expected=None):
    assert res.status == 'success', f"expected success, got {res.status}: {res.error_message}"
    if expected is not None:
        assert res.value == expected


def assert_error(res, contains: str | None = None):
    assert res.status == 'error', f"expected error, got {res.status} with value {res.value!r}"
    if contains:
        assert contains in (res.error_message or "")


@pytest.fixture
def runner(tmp_path):
    r = ScriptRunner()
    r.source_dir = str(tmp_path)
    return r


def test_write_then_read_relative_to_source_dir(runner, tmp_path):
    res = runner.handle_script('write "notes.txt" "hello"\nread "notes.txt"')
    assert_ok(res, "hello")
    assert (tmp_path / "notes.txt").read_text() == "hello"


def test_append_file_extends_content(runner, tmp_path):
    (tmp_path / "log.txt").write_text("a")
    assert_ok(runner.handle_script('append-file "log.txt" "b"'), True)
    assert (tmp_path / "log.txt").read_text() == "ab"


def test_write_creates_parent_directories(runner, tmp_path):
    assert_ok(runner.handle_script('write "out/deep/x.txt" "x"'), True)
    assert (tmp_path / "out" / "deep" / "x.txt").exists()


def test_write_serializes_by_extension(runner, tmp_path):
    runner.handle_script('write "data.json" {name: "tails", tags: [1, 2]}')
    assert json.loads((tmp_path / "data.json").read_text()) == {"name": "tails", "tags": [1, 2]}
    runner.handle_script('write "list.txt" [1, "a"]')
    assert (tmp_path / "list.txt").read_text() == "[1, a]"


def test_existence_checks(runner, tmp_path):
    (tmp_path / "here.txt").write_text("")
    (tmp_path / "sub").mkdir()
    src = '[file-exists "here.txt", file-exists "gone.txt", dir-exists "sub", file-exists "sub"]'
    res = runner.handle_script(src)
    assert_ok(res)
    assert res.value == [True, False, True, False]


def test_delete_file(runner, tmp_path):
    (tmp_path / "tmp.txt").write_text("x")
    res = runner.handle_script('[delete-file "tmp.txt", delete-file "tmp.txt"]')
    assert_ok(res)
    assert res.value == [True, False]
    assert not (tmp_path / "tmp.txt").exists()


def test_delete_file_refuses_directories(runner, tmp_path):
    (tmp_path / "keep").mkdir()
    assert_error(runner.handle_script('delete-file "keep"'), "is a directory")
    assert (tmp_path / "keep").is_dir()


def test_read_missing_file_is_recoverable_io_error(runner):
    res = runner.handle_script('attempt (read "missing.txt") rescue ~e ([~e.kind, ~e.message])')
    assert_ok(res, ["io", "File not found: missing.txt"])


def test_resolve_path_rules(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    base = str(tmp_path / "scripts")
    assert resolve_path("a.txt", base) == str(tmp_path / "scripts" / "a.txt")
    assert resolve_path("./a.txt", base) == str(tmp_path / "a.txt")
    assert resolve_path("a.txt", None) == str(tmp_path / "a.txt")
    with pytest.raises(TailsRuntimeError) as exc:
        resolve_path("", base)
    assert exc.value.kind == IO_ERROR


def test_module_level_write_and_read(tmp_path):
    full = write_file("x.yaml", {"a": 1.0}, base_dir=str(tmp_path))
    assert full.endswith("x.yaml")
    assert read_file("x.yaml", base_dir=str(tmp_path)) == "a: 1\n"
