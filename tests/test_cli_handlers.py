from conftest import FakeResponse, api_error, completion, endpoint
from terminal_ai.api.di.cli_composition import STREAM_PREF, stream_enabled
from terminal_ai.ui.cli import handlers


def output(console):
    return console.export_text(clear=False)


def test_provider_list_shows_order_and_missing_keys(console, build_ctx):
    ctx, _ = build_ctx({"p0": {"priority": 2}, "p1": {"priority": 1, "key": ""}, "p2": {"enabled": False}})
    handlers.handle_provider_command(console, ctx, ["list"])
    text = output(console)
    assert text.index("p1") < text.index("p0 (default)") < text.index("p2")
    assert "missing" in text
    assert "disabled" in text
    assert "Fallback: on" in text


def test_provider_mutations(console, build_ctx):
    ctx, _ = build_ctx({"p0": {"priority": 0}, "p1": {"priority": 1}})
    handlers.handle_provider_command(console, ctx, ["priority", "p1", "-1"])
    handlers.handle_provider_command(console, ctx, ["disable", "p0"])
    handlers.handle_provider_command(console, ctx, ["default", "p1"])
    handlers.handle_provider_command(console, ctx, ["fallback", "off"])
    assert ctx.registry.ordered_providers() == ["p1"]
    assert ctx.registry.default_provider == "p1"
    assert not ctx.registry.fallback_enabled


def test_provider_errors_are_reported(console, build_ctx):
    ctx, _ = build_ctx({"p0": {}})
    handlers.handle_provider_command(console, ctx, ["enable", "nope"])
    handlers.handle_provider_command(console, ctx, ["priority", "p0", "high"])
    text = output(console)
    assert "Provider 'nope' not found" in text
    assert "Invalid number" in text


def test_provider_test_is_single_attempt(console, build_ctx):
    ctx, transport = build_ctx(
        {"p0": {}, "p1": {}},
        {endpoint("p0"): [FakeResponse(503, api_error("overloaded"))], endpoint("p1"): [FakeResponse(200, completion("ok"))]},
    )
    assert handlers.test_provider(console, ctx, "p0") is False
    assert transport.urls() == [endpoint("p0")]
    assert "overloaded" in output(console)
    assert handlers.test_provider(console, ctx, "p1") is True


def test_provider_add_and_auth(console, build_ctx, settings):
    ctx, _ = build_ctx({"p0": {}})
    answers = iter(["0", "http://localhost:8080/v1/chat/completions", "local-model"])
    handlers.handle_provider_command(
        console, ctx, ["add", "local"], ask=lambda prompt: next(answers), ask_secret=lambda prompt: "sk-local"
    )
    ident = ctx.registry.get_identity("local")
    assert ident.endpoint == "http://localhost:8080/v1/chat/completions"
    assert ident.usable
    assert ctx.registry.ordered_providers()[0] == "local"

    handlers.handle_provider_command(console, ctx, ["auth", "local", "sk-new"])
    assert settings.get_api_key("local") == "sk-new"


def test_byok_commands(console, build_ctx):
    ctx, transport = build_ctx(
        {"openrouter": {}},
        {endpoint("openrouter"): [FakeResponse(200, completion("BYOK test successful"))]},
    )
    handlers.handle_byok_command(console, ctx, ["add", "Groq", "groq/llama"])
    assert "Enable BYOK first" in output(console)

    handlers.handle_byok_command(console, ctx, ["enable"])
    handlers.handle_byok_command(console, ctx, ["add", "Groq", "groq/llama"])
    handlers.handle_byok_command(console, ctx, ["add", "Cerebras", "cerebras/llama"])
    handlers.handle_byok_command(console, ctx, ["order", "Cerebras,", "Groq"])
    handlers.handle_byok_command(console, ctx, ["fallback", "false"])
    cfg = ctx.registry.byok_policy()
    assert cfg.provider_order == ["Cerebras", "Groq"]
    assert cfg.allow_fallback_to_shared is False

    handlers.handle_byok_command(console, ctx, ["test"])
    payload = transport.calls[0].payload
    assert payload["model"] == "cerebras/llama"
    assert payload["provider"]["order"] == ["Cerebras", "Groq"]
    assert "BYOK test successful" in output(console)

    handlers.handle_byok_command(console, ctx, ["list"])
    assert "1. Cerebras" in output(console)


def test_byok_test_requires_enabled(console, build_ctx):
    ctx, transport = build_ctx({"openrouter": {}})
    assert handlers.test_byok(console, ctx) is False
    assert transport.calls == []


def test_stream_toggle_persists(console, build_ctx, settings, monkeypatch):
    ctx, _ = build_ctx({"p0": {}})
    assert handlers.handle_stream(console, ctx, []) is True
    assert settings.get_pref(STREAM_PREF) == "true"
    assert handlers.handle_stream(console, ctx, ["off"]) is False
    monkeypatch.setenv("STREAMING", "true")
    assert stream_enabled(settings) is False


def test_stream_default_from_environment(settings, monkeypatch):
    assert stream_enabled(settings) is True
    monkeypatch.setenv("STREAMING", "false")
    assert stream_enabled(settings) is False


def test_history_commands(console, build_ctx, tmp_path):
    ctx, _ = build_ctx({"p0": {}})
    store = ctx.chat.sessions
    session = store.create("about cats")
    store.append(session.id, "user", "tell me about cats")

    assert handlers.handle_history(console, ctx, ["list"], None) is None
    assert "about cats" in output(console)

    assert handlers.handle_history(console, ctx, ["resume", session.id], None) == session.id
    assert handlers.handle_history(console, ctx, ["last"], None) == session.id

    target = tmp_path / "out.txt"
    handlers.handle_history(console, ctx, ["export", session.id, "txt", str(target)], session.id)
    assert "[User] tell me about cats" in target.read_text()

    assert handlers.handle_history(console, ctx, ["view", "missing"], session.id) == session.id
    assert "Session not found: missing" in output(console)

    assert handlers.handle_history(console, ctx, ["delete", session.id], session.id) is None
    assert store.list() == []


def test_skills_create_and_show(console, build_ctx):
    ctx, _ = build_ctx({"p0": {}})
    answers = iter(["Summaries", "tldr, summarize", "Summarize briefly."])
    handlers.handle_skills(console, ctx, ["create", "summary"], ask=lambda prompt: next(answers))
    handlers.handle_skills(console, ctx, ["show", "summary"])
    text = output(console)
    assert "Skill 'summary' created" in text
    assert "Summarize briefly." in text
    assert [s.triggers for s in ctx.chat.skills.list()] == [["tldr", "summarize"]]


def test_settings_repository_is_shared(monkeypatch):
    from terminal_ai import settings as settings_pkg
    from terminal_ai.api.di.cli_composition import build_settings_repository

    monkeypatch.setattr(settings_pkg, "_repo_singleton", None)
    repo = build_settings_repository(":memory:")
    assert build_settings_repository() is repo
    repo.set_pref("cli_theme", "light")
    assert build_settings_repository().get_pref("cli_theme") == "light"
