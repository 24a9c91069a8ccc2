"""
Shared test fixtures for the dispatch layer.

No test talks to the network: providers are served by FakeTransport, which
replays a scripted list of responses/exceptions per endpoint and records
every request it receives. test_transport.py drives the real requests stack
with HTTP mocked by the responses library.
"""

import io
import json
import os
import sys
import types
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest
from rich.console import Console
from rich.theme import Theme

# Ensure project root is on sys.path so 'terminal_ai' imports resolve in tests
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from terminal_ai.api.di.cli_composition import CliContext
from terminal_ai.chat.service import ChatService
from terminal_ai.chat.sessions import SessionStore
from terminal_ai.chat.skills import SkillLibrary
from terminal_ai.infrastructure.llm.orchestrator import FallbackOrchestrator
from terminal_ai.providers.base.models import ProviderGlobalConfig, ProviderPolicy
from terminal_ai.providers.base.repositories.keys import KeysRepository
from terminal_ai.providers.registry import ProviderRegistry
from terminal_ai.settings.sqlite_repository import SqliteSettingsRepository
from terminal_ai.ui.cli.console import THEMES

_ENV_PREFIXES = ("OPENROUTER_", "GEMINI_", "GROQ_", "P0_", "P1_", "P2_")


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point config/data dirs at tmp_path and drop provider variables from the environment."""
    monkeypatch.setenv("TERMINAL_AI_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for key in list(os.environ):
        if key.startswith(_ENV_PREFIXES) or key in ("USE_GOPASS", "STREAMING"):
            monkeypatch.delenv(key, raising=False)
    return tmp_path


class FakeResponse:
    def __init__(self, status: int = 200, body: Union[bytes, Dict[str, Any], None] = None,
                 chunks: Optional[Sequence[bytes]] = None, reason: str = "") -> None:
        self.status_code = status
        self.reason = reason
        if isinstance(body, dict):
            body = json.dumps(body).encode("utf-8")
        self._body = body or b""
        self._chunks = list(chunks or [])
        self.closed = False

    def read(self) -> bytes:
        return self._body

    def iter_chunks(self):
        for chunk in self._chunks:
            if self.closed:
                return
            yield chunk

    def close(self) -> None:
        self.closed = True


class FakeTransport:
    """
    script maps url -> list of FakeResponse or Exception, consumed in order.
    The last entry repeats once the list is exhausted.
    """

    def __init__(self, script: Dict[str, List[Any]]) -> None:
        self.script = {url: list(items) for url, items in script.items()}
        self.calls: List[types.SimpleNamespace] = []
        self.responses: List[FakeResponse] = []

    def post(self, url, body, headers, *, stream=False, timeout=None):
        self.calls.append(types.SimpleNamespace(url=url, payload=json.loads(body), headers=dict(headers), stream=stream))
        items = self.script.get(url)
        if not items:
            raise AssertionError(f"unexpected request to {url}")
        item = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(item, BaseException):
            raise item
        self.responses.append(item)
        return item

    def urls(self) -> List[str]:
        return [c.url for c in self.calls]


def completion(text: str) -> Dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def api_error(message: str, kind: str = "") -> Dict[str, Any]:
    return {"error": {"message": message, "type": kind}}


def sse(*frames: Union[str, Dict[str, Any]]) -> bytes:
    """Encode frames as 'data:' lines; str frames are sent verbatim (e.g. '[DONE]')."""
    lines = []
    for frame in frames:
        data = frame if isinstance(frame, str) else json.dumps(frame)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode("utf-8")


def delta(text: str) -> Dict[str, Any]:
    return {"choices": [{"delta": {"content": text}}]}


def endpoint(name: str) -> str:
    return f"https://{name}.test/v1/chat/completions"


@pytest.fixture
def settings():
    repo = SqliteSettingsRepository(db_path=":memory:")
    yield repo
    repo.close()


@pytest.fixture
def make_registry():
    """
    Build a registry from {name: dict(priority=..., key=..., max_retries=..., enabled=...)}.
    Every provider gets endpoint https://<name>.test/v1/chat/completions and model <name>-model.
    """

    def _make(providers: Dict[str, Dict[str, Any]], retry_delay_ms: int = 0, fallback: bool = True,
              default: Optional[str] = None, settings=None, config_repo=None) -> ProviderRegistry:
        env: Dict[str, str] = {}
        policies: Dict[str, ProviderPolicy] = {}
        for name, opts in providers.items():
            upper = name.upper()
            policies[name] = ProviderPolicy(
                priority=opts.get("priority", 1),
                enabled=opts.get("enabled", True),
                max_retries=opts.get("max_retries", 2),
                env_key=f"{upper}_API_KEY",
                endpoint_key=f"{upper}_ENDPOINT",
                model_key=f"{upper}_MODEL",
                byok_config=opts.get("byok"),
            )
            env[f"{upper}_ENDPOINT"] = endpoint(name)
            env[f"{upper}_MODEL"] = f"{name}-model"
            if opts.get("key", f"{name}-key"):
                env[f"{upper}_API_KEY"] = opts.get("key", f"{name}-key")
        config = ProviderGlobalConfig(
            default_provider=default or next(iter(providers)),
            fallback_enabled=fallback,
            retry_delay_ms=retry_delay_ms,
            providers=policies,
        )
        keys = KeysRepository(settings=settings, use_gopass=False, environ=env)
        return ProviderRegistry(config_repo=config_repo, keys=keys, settings=settings, environ=env, config=config)

    return _make


@pytest.fixture
def console():
    """Recording console with the dark theme styles and no color codes."""
    return Console(theme=Theme(THEMES["dark"]), file=io.StringIO(), record=True, width=200, color_system=None)


@pytest.fixture
def build_ctx(tmp_path, settings, make_registry):
    """CliContext over make_registry + FakeTransport, with sessions and skills under tmp_path."""

    def _build(providers, script=None, **kwargs):
        registry = make_registry(providers, settings=settings, **kwargs)
        transport = FakeTransport(script or {})
        orchestrator = FallbackOrchestrator(registry, transport)
        chat = ChatService(orchestrator, SessionStore(tmp_path / "history.json"), SkillLibrary(tmp_path / "skills"))
        ctx = CliContext(settings=settings, registry=registry, orchestrator=orchestrator, chat=chat, stream=False)
        return ctx, transport

    return _build
