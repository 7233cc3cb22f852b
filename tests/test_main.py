import io
import json

import pytest
from error_learning.main import (
    DEFAULT_WORKER_PORT,
    get_query_timeout,
    get_worker_port,
    get_worker_url,
)
from error_learning.observation import ObservationResult
from error_learning.worker_client import DEFAULT_QUERY_TIMEOUT


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "ERROR_LEARNING_WORKER_HOST",
        "ERROR_LEARNING_WORKER_PORT",
        "ERROR_LEARNING_QUERY_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_get_worker_url_defaults(clean_env):
    assert get_worker_url() == f"http://127.0.0.1:{DEFAULT_WORKER_PORT}"


def test_get_worker_url_from_env(clean_env):
    clean_env.setenv("ERROR_LEARNING_WORKER_HOST", "localhost")
    clean_env.setenv("ERROR_LEARNING_WORKER_PORT", "40123")
    assert get_worker_url() == "http://localhost:40123"


def test_get_worker_url_explicit_args_win(clean_env):
    clean_env.setenv("ERROR_LEARNING_WORKER_PORT", "40123")
    assert get_worker_url("10.0.0.5", 9000) == "http://10.0.0.5:9000"


def test_invalid_port_falls_back(clean_env):
    clean_env.setenv("ERROR_LEARNING_WORKER_PORT", "not-a-port")
    assert get_worker_port() == DEFAULT_WORKER_PORT


@pytest.mark.parametrize("raw,expected", [
    ("0.5", 0.5),
    ("abc", DEFAULT_QUERY_TIMEOUT),
    ("-1", DEFAULT_QUERY_TIMEOUT),
])
def test_get_query_timeout(clean_env, raw, expected):
    clean_env.setenv("ERROR_LEARNING_QUERY_TIMEOUT", raw)
    assert get_query_timeout() == expected


def test_main_entry_point(clean_env, capsys):
    import error_learning.main

    calls = {}

    async def fake_run_hook(hook_input, worker_url, query_timeout):
        calls["hook_input"] = hook_input
        calls["worker_url"] = worker_url
        calls["query_timeout"] = query_timeout
        return ObservationResult(context="## Related past errors\n- **Error**")

    hook = {
        "session_id": "session-1",
        "cwd": "/home/dev",
        "tool_name": "Bash",
        "tool_input": {"command": "make"},
        "tool_response": "make: *** [all] Error 2",
        "hook_event_name": "PostToolUse",
    }
    clean_env.setattr("error_learning.main.run_hook", fake_run_hook)
    clean_env.setattr("sys.argv", ["main.py", "--port", "9500", "--timeout", "1.5"])
    clean_env.setattr("sys.stdin", io.StringIO(json.dumps(hook)))

    error_learning.main.main()

    assert calls["worker_url"] == "http://127.0.0.1:9500"
    assert calls["query_timeout"] == 1.5
    assert calls["hook_input"].tool_name == "Bash"
    assert calls["hook_input"].cwd == "/home/dev"

    out = capsys.readouterr().out.strip().splitlines()
    assert "## Related past errors" in out
    assert json.loads(out[-1]) == {"continue": True, "suppressOutput": True}


@pytest.mark.parametrize("override,expected", [
    (0.5, 0.5),
    (0.0, DEFAULT_QUERY_TIMEOUT),
    (-3.0, DEFAULT_QUERY_TIMEOUT),
    (float("inf"), DEFAULT_QUERY_TIMEOUT),
])
def test_get_query_timeout_override(clean_env, override, expected):
    clean_env.setenv("ERROR_LEARNING_QUERY_TIMEOUT", "7")
    assert get_query_timeout(override) == expected


@pytest.mark.parametrize("flag", ["0", "-1"])
def test_main_rejects_non_positive_timeout(clean_env, capsys, flag):
    import error_learning.main

    calls = {}

    async def fake_run_hook(hook_input, worker_url, query_timeout):
        calls["query_timeout"] = query_timeout
        return ObservationResult()

    clean_env.setattr("error_learning.main.run_hook", fake_run_hook)
    clean_env.setattr("sys.argv", ["main.py", f"--timeout={flag}"])
    clean_env.setattr("sys.stdin", io.StringIO("{}"))

    error_learning.main.main()

    assert calls["query_timeout"] == DEFAULT_QUERY_TIMEOUT
