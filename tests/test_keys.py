import subprocess
from unittest.mock import patch

from terminal_ai.providers.base.repositories.keys import KeysRepository


def test_env_var_wins(settings):
    settings.set_api_key("groq", "db-key")
    repo = KeysRepository(settings=settings, environ={"GROQ_API_KEY": "env-key"})
    res = repo.get_resolution("groq")
    assert res.api_key == "env-key"
    assert res.source == "env"


def test_policy_env_var_name_is_used():
    repo = KeysRepository(environ={"MY_KEY": "x"})
    assert repo.get_api_key("custom", env_var="MY_KEY") == "x"


def test_gopass_indirection_in_env():
    repo = KeysRepository(environ={"GROQ_API_KEY": "gopass:ai/groq"})
    with patch("terminal_ai.providers.base.repositories.keys.subprocess.check_output", return_value="secret\n") as mock_out:
        res = repo.get_resolution("groq")
    assert res.api_key == "secret"
    assert res.source == "gopass"
    assert mock_out.call_args[0][0] == ["gopass", "show", "ai/groq"]


def test_gopass_store_only_when_enabled(settings):
    settings.set_api_key("gemini", "db-key")
    with patch("terminal_ai.providers.base.repositories.keys.subprocess.check_output", return_value="from-store") as mock_out:
        off = KeysRepository(settings=settings, environ={}).get_resolution("gemini", gopass_key="terminal-ai/gemini_api_key")
        on = KeysRepository(settings=settings, environ={"USE_GOPASS": "true"}).get_resolution(
            "gemini", gopass_key="terminal-ai/gemini_api_key"
        )
    assert off.source == "settings_db"
    assert on.api_key == "from-store"
    assert mock_out.call_count == 1


def test_gopass_failure_falls_through(settings):
    settings.set_api_key("gemini", "db-key")
    repo = KeysRepository(settings=settings, use_gopass=True, environ={})
    with patch(
        "terminal_ai.providers.base.repositories.keys.subprocess.check_output",
        side_effect=subprocess.CalledProcessError(1, "gopass"),
    ):
        res = repo.get_resolution("gemini", gopass_key="terminal-ai/gemini_api_key")
    assert res.api_key == "db-key"


def test_missing_gopass_binary_is_not_fatal():
    repo = KeysRepository(use_gopass=True, environ={})
    with patch("terminal_ai.providers.base.repositories.keys.subprocess.check_output", side_effect=FileNotFoundError("gopass")):
        res = repo.get_resolution("groq", gopass_key="terminal-ai/groq_api_key")
    assert res.api_key is None
    assert res.source == "none"
