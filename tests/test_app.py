from unittest.mock import patch

import pytest

from conftest import FakeResponse, api_error, completion, endpoint
from terminal_ai.api.di.cli_composition import DISPATCH_TIMEOUT_ENV, dispatch_timeout
from terminal_ai.infrastructure.llm.cancellation import CancelToken
from terminal_ai.ui.cli import app


@pytest.fixture
def run_main(console, build_ctx):
    def _run(argv, providers, script):
        ctx, transport = build_ctx(providers, script)
        with patch.object(app, "build_cli_context", return_value=ctx), \
                patch.object(app, "make_console", return_value=console), \
                patch.object(app, "setup_logging"):
            code = app.main(argv)
        return code, transport, console.export_text()

    return _run


def test_one_shot_chat_uses_priority_order(run_main):
    code, transport, text = run_main(
        ["hello", "world"],
        {"p0": {"priority": 0}, "p1": {"priority": 1}},
        {endpoint("p0"): [FakeResponse(200, completion("from p0"))]},
    )
    assert code == 0
    assert transport.calls[0].payload["messages"] == [{"role": "user", "content": "hello world"}]
    assert "from p0" in text


def test_provider_name_prefix_is_tried_first(run_main):
    code, transport, text = run_main(
        ["p1", "hello"],
        {"p0": {"priority": 0}, "p1": {"priority": 1}},
        {endpoint("p1"): [FakeResponse(200, completion("from p1"))]},
    )
    assert code == 0
    assert transport.urls() == [endpoint("p1")]
    assert "from p1" in text


def test_exhaustion_is_reported_with_exit_code(run_main):
    code, transport, text = run_main(
        ["hi"],
        {"p0": {"max_retries": 0}},
        {endpoint("p0"): [FakeResponse(500, api_error("boom"))]},
    )
    assert code == 1
    assert "all providers failed" in text
    assert "p0 attempt 1 failed (server_error)" in text


def test_provider_subcommand(run_main):
    code, transport, text = run_main(["providers", "list"], {"p0": {}}, {})
    assert code == 0
    assert transport.calls == []
    assert "Providers (fallback order)" in text


@pytest.mark.parametrize(
    "raw, expected",
    [(None, None), ("", None), ("0", None), ("-5", None), ("soon", None), ("90", 90.0), (" 2.5 ", 2.5)],
)
def test_dispatch_timeout_from_environment(monkeypatch, raw, expected):
    if raw is None:
        monkeypatch.delenv(DISPATCH_TIMEOUT_ENV, raising=False)
    else:
        monkeypatch.setenv(DISPATCH_TIMEOUT_ENV, raw)
    assert dispatch_timeout() == expected


def test_chat_once_deadline_timer_is_disposed(console, build_ctx):
    ctx, _ = build_ctx({"p0": {}}, {endpoint("p0"): [FakeResponse(200, completion("hi there"))]})
    ctx.dispatch_timeout = 30
    tokens = []

    def make_token(timeout=None):
        tokens.append(CancelToken(timeout=timeout))
        return tokens[-1]

    with patch.object(app, "CancelToken", side_effect=make_token):
        assert app.chat_once(console, ctx, "hello") is True

    (token,) = tokens
    token._timer.join(2)
    assert not token._timer.is_alive()
    assert not token.cancelled
