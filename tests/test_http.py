import json

import httpx

from tails.tails_runtime import ScriptRunner


def assert_ok(res, expected=None):
    assert res.status == 'success', f"expected success, got {res.status}: {res.error_message}"
    if expected is not None:
        assert res.value == expected


def assert_error(res, contains: str | None = None):
    assert res.status == 'error', f"expected error, got {res.status} with value {res.value!r}"
    if contains:
        assert contains in (res.error_message or "")


def make_runner(handler):
    return ScriptRunner(http_transport=httpx.MockTransport(handler))


def test_get_decodes_json_body():
    def handler(request):
        assert request.method == "GET"
        return httpx.Response(200, json={"id": 7, "tags": ["a"]})

    res = make_runner(handler).handle_script('get "https://api.test/items/7"')
    assert_ok(res, {"id": 7, "tags": ["a"]})


def test_get_returns_text_for_plain_bodies():
    runner = make_runner(lambda request: httpx.Response(200, text="pong"))
    assert_ok(runner.handle_script('get "https://api.test/ping"'), "pong")


def test_get_sends_headers_and_params():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        seen["q"] = request.url.params.get("q")
        return httpx.Response(200, json={})

    src = 'get "https://api.test/search" {headers: {Authorization: "Bearer t"}, params: {q: "tails"}}'
    assert_ok(make_runner(handler).handle_script(src))
    assert seen == {"auth": "Bearer t", "q": "tails"}


def test_post_sends_objects_as_json():
    seen = {}

    def handler(request):
        seen["type"] = request.headers.get("Content-Type")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"ok": True})

    res = make_runner(handler).handle_script('post "https://api.test/items" {name: "x", qty: 2}')
    assert_ok(res, {"ok": True})
    assert seen == {"type": "application/json", "body": {"name": "x", "qty": 2}}


def test_put_sends_strings_as_text():
    seen = {}

    def handler(request):
        seen["type"] = request.headers.get("Content-Type")
        seen["body"] = request.content.decode()
        return httpx.Response(200, text="")

    assert_ok(make_runner(handler).handle_script('put "https://api.test/raw" "hello"'))
    assert seen == {"type": "text/plain; charset=utf-8", "body": "hello"}


def test_patch_and_delete_use_their_methods():
    methods = []

    def handler(request):
        methods.append(request.method)
        return httpx.Response(204)

    runner = make_runner(handler)
    assert_ok(runner.handle_script('patch "https://api.test/a" {x: 1}'))
    assert_ok(runner.handle_script('delete "https://api.test/a"'))
    assert methods == ["PATCH", "DELETE"]


def test_client_error_is_recoverable_and_not_retried():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(404, text="nope")

    src = 'attempt (get "https://api.test/missing") rescue ~e ([~e.kind, ~e.message])'
    res = make_runner(handler).handle_script(src)
    assert_ok(res, ["io", "HTTP 404 for https://api.test/missing: nope"])
    assert len(calls) == 1


def test_server_error_is_retried():
    responses = [httpx.Response(503, text="busy"), httpx.Response(200, json={"ok": True})]

    def handler(request):
        return responses.pop(0)

    src = 'get "https://api.test/flaky" {retries: 1, backoff: 0}'
    assert_ok(make_runner(handler).handle_script(src), {"ok": True})


def test_transport_failure_reports_io_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    src = 'get "https://api.test/down" {retries: 0}'
    assert_error(make_runner(handler).handle_script(src), "HTTP GET https://api.test/down failed")


def test_config_must_be_an_object():
    runner = make_runner(lambda request: httpx.Response(200))
    assert_error(runner.handle_script('get "https://api.test" 5'), "get config must be an object, got number")
