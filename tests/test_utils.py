import base64
import io
import json
import sys
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from backplane_tools.utils import (
    BackplaneAPIErrorBody,
    append_unique_non_empty,
    ask_question_from_prompt,
    check_health,
    check_valid_prompt,
    formatted_api_error,
    get_context_nickname,
    get_free_port,
    get_string_field_from_jwt,
    get_username_from_jwt,
    is_valid_shell,
    match_base_domain,
    parse_backplane_api_error,
    parse_params_flag,
)


@pytest.mark.parametrize(
    "params, expected",
    [
        (["k1=v1"], {"k1": "v1"}),
        (["k1=v1", "k2=v2"], {"k1": "v1", "k2": "v2"}),
        (["k1=v1", "k1=v2"], {"k1": "v2"}),
        (["k1="], {"k1": ""}),
    ],
)
def test_parse_params_flag(params, expected):
    assert parse_params_flag(params) == expected


def test_parse_params_flag_error():
    with pytest.raises(ValueError, match="error parsing params flag, k1"):
        parse_params_flag(["k1"])


def test_get_free_port():
    port = get_free_port()
    assert 1024 < port <= 65535


@pytest.mark.parametrize(
    "long_url, base_domain, expected",
    [
        ("a.example.com", "example.com", True),
        ("a.b.c.example.com", "example.com", True),
        ("example.com", "example.com", True),
        ("a.example.com", "", True),
        ("", "", True),
        ("", "example.com", False),
        ("a.example.com.io", "example.com", False),
        ("a.b.c", "e.f.g", False),
        ("a", "a", True),
    ],
)
def test_match_base_domain(long_url, base_domain, expected):
    assert match_base_domain(long_url, base_domain) is expected


@pytest.mark.parametrize(
    "path",
    ["/invalid/shell/path", "/another/invalid/shell/path", "", "/path/that/does/not/exist"],
)
def test_invalid_shell(path):
    assert is_valid_shell(path) is False


def test_valid_shell_existing_file(tmp_path):
    shell = tmp_path / "myshell"
    shell.write_text("#!/bin/sh\n")
    assert is_valid_shell(str(shell)) is True


def test_valid_shell_interpreter():
    assert is_valid_shell(sys.executable) is True


def test_append_unique_non_empty():
    assert append_unique_non_empty(["a"], "b") == ["a", "b"]
    assert append_unique_non_empty(["a"], "a") == ["a"]
    assert append_unique_non_empty(["a"], "") == ["a"]
    assert append_unique_non_empty([], "x") == ["x"]


def test_append_does_not_mutate_input():
    items = ["a"]
    append_unique_non_empty(items, "b")
    assert items == ["a"]


def _segment(obj):
    return base64.urlsafe_b64encode(json.dumps(obj).encode()).rstrip(b"=").decode()


def _token(claims, header=None):
    header = header if header is not None else {"alg": "HS256", "typ": "JWT"}
    return f"{_segment(header)}.{_segment(claims)}.signature"


def test_get_string_field_from_jwt():
    token = _token({"username": "alice", "sub": "id-1"})
    assert get_string_field_from_jwt(token, "sub") == "id-1"


def test_get_string_field_missing():
    with pytest.raises(ValueError, match="no field email on given token"):
        get_string_field_from_jwt(_token({"sub": "id-1"}), "email")


def test_get_string_field_not_string():
    with pytest.raises(ValueError, match="field age does not contain a string value"):
        get_string_field_from_jwt(_token({"age": 3}), "age")


def test_get_string_field_bad_token():
    with pytest.raises(ValueError, match="failed to parse jwt"):
        get_string_field_from_jwt("not-a-token", "sub")


def test_get_string_field_unknown_algorithm():
    with pytest.raises(ValueError, match="failed to parse jwt"):
        get_string_field_from_jwt(_token({"sub": "x"}, {"alg": "XX999"}), "sub")


def test_get_username_from_jwt():
    assert get_username_from_jwt(_token({"username": "alice"})) == "alice"
    assert get_username_from_jwt(_token({"sub": "x"})) == "anonymous"
    assert get_username_from_jwt("garbage") == "anonymous"


def test_get_context_nickname():
    assert get_context_nickname("default", "test123", "anonymous/extra") == "default/test123/anonymous"
    assert get_context_nickname("ns", "c", "u") == "ns/c/u"


def test_parse_backplane_api_error():
    body = b'{"message": "boom", "statusCode": 403}'
    parsed = parse_backplane_api_error(403, "403 Forbidden", body)
    assert parsed == BackplaneAPIErrorBody(message="boom", status_code=403)
    assert parsed.to_dict() == {"message": "boom", "statusCode": 403}


def test_parse_backplane_api_error_invalid_body():
    with pytest.raises(ValueError) as excinfo:
        parse_backplane_api_error(502, "502 Bad Gateway", b"not json\nmore")
    text = str(excinfo.value)
    assert "status:'502 Bad Gateway', code:'502'" in text
    assert "failed to unmarshal response:'not json more'" in text


def test_parse_backplane_api_error_non_object():
    with pytest.raises(ValueError):
        parse_backplane_api_error(500, "500 Internal Server Error", "[1, 2]")


def test_formatted_api_error_with_payload():
    message = formatted_api_error(403, "403 Forbidden", '{"message": "boom", "statusCode": 403}')
    assert message == "error from backplane: \n Status Code: 403\n Message: boom"


def test_formatted_api_error_without_payload():
    message = formatted_api_error(500, "500 Internal Server Error", "{}")
    assert message == "error from backplane: \n Status Code: 500\n Message: 500 Internal Server Error"


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        self.send_response(200 if self.path == "/ok" else 500)
        self.end_headers()

    def log_message(self, *args):
        pass


@pytest.fixture
def server(monkeypatch):
    for name in ("http_proxy", "HTTP_PROXY", "https_proxy", "HTTPS_PROXY", "all_proxy", "ALL_PROXY"):
        monkeypatch.delenv(name, raising=False)
    httpd = HTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}"
    httpd.shutdown()
    httpd.server_close()


def test_check_health_ok(server):
    assert check_health(server + "/ok") is True


def test_check_health_failure_status(server):
    assert check_health(server + "/broken") is False


def test_check_health_bad_url():
    assert check_health("::not a url::") is False


class _TTYInput(io.StringIO):
    def isatty(self):
        return True


def test_prompt_not_available(monkeypatch):
    monkeypatch.setattr(sys, "stdin", io.StringIO("answer\n"))
    assert check_valid_prompt() is False
    assert ask_question_from_prompt("Why? ") == ""


def test_prompt_reads_answer(monkeypatch):
    stderr = _TTYInput()
    monkeypatch.setattr(sys, "stdin", _TTYInput("yes\r\n"))
    monkeypatch.setattr(sys, "stderr", stderr)
    assert check_valid_prompt() is True
    assert ask_question_from_prompt("Why? ") == "yes"
    assert stderr.getvalue() == "Why? "


def test_prompt_empty_on_eof(monkeypatch):
    monkeypatch.setattr(sys, "stdin", _TTYInput(""))
    monkeypatch.setattr(sys, "stderr", _TTYInput())
    assert ask_question_from_prompt("Why? ") == ""