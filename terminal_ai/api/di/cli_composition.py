"""
Composition module for CLI DI (edge wiring).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from dotenv import load_dotenv

from terminal_ai.chat.service import ChatService
from terminal_ai.chat.sessions import SessionStore
from terminal_ai.chat.skills import SkillLibrary
from terminal_ai.infrastructure.llm.orchestrator import FallbackOrchestrator
from terminal_ai.infrastructure.llm.transport import RequestsTransport
from terminal_ai.providers.base.repositories.keys import KeysRepository
from terminal_ai.providers.base.repositories.provider_config import ProviderConfigRepository
from terminal_ai.providers.registry import ProviderRegistry
from terminal_ai.settings import get_settings_repo
from terminal_ai.settings.paths import config_dir

if TYPE_CHECKING:
    from terminal_ai.providers.base.interfaces import Transport
    from terminal_ai.settings.interfaces import SettingsRepository

logger = logging.getLogger(__name__)

STREAM_PREF = "stream"
DISPATCH_TIMEOUT_ENV = "TERMINAL_AI_DISPATCH_TIMEOUT"
_TRUE = ("1", "true", "yes", "on")


def load_environment() -> None:
    """
    Load .env files: <config dir>/.env first, then ./.env.
    Existing environment variables always win.
    """
    load_dotenv(config_dir() / ".env")
    load_dotenv()


def build_settings_repository(db_path: str | None = None) -> "SettingsRepository":
    """
    Return the process-wide SettingsRepository (SQLite under the data dir).
    """
    return get_settings_repo(db_path)


def build_registry(settings: "SettingsRepository", config_path: Optional[Path] = None) -> ProviderRegistry:
    """
    Construct the provider registry from providers.json, environment and settings.
    """
    keys = KeysRepository(settings=settings)
    return ProviderRegistry(config_repo=ProviderConfigRepository(config_path), keys=keys, settings=settings)


def build_orchestrator(registry: ProviderRegistry, transport: Optional["Transport"] = None) -> FallbackOrchestrator:
    return FallbackOrchestrator(registry, transport or RequestsTransport())


def build_chat_service(orchestrator: FallbackOrchestrator) -> ChatService:
    return ChatService(orchestrator, SessionStore(), SkillLibrary())


def stream_enabled(settings: "SettingsRepository") -> bool:
    """
    Streaming preference: persisted pref wins, else STREAMING env (default on).
    """
    pref = settings.get_pref(STREAM_PREF)
    if pref is not None:
        return pref.lower() in _TRUE
    return (os.getenv("STREAMING") or "true").lower() in _TRUE


def dispatch_timeout() -> Optional[float]:
    """
    Overall deadline for one chat dispatch from TERMINAL_AI_DISPATCH_TIMEOUT
    (seconds). Unset, empty, zero or unparseable means no deadline.
    """
    raw = (os.getenv(DISPATCH_TIMEOUT_ENV) or "").strip()
    try:
        seconds = float(raw) if raw else 0.0
    except ValueError:
        logger.warning(f"Ignoring invalid {DISPATCH_TIMEOUT_ENV}={raw!r}")
        return None
    return seconds if seconds > 0 else None


@dataclass
class CliContext:
    settings: "SettingsRepository"
    registry: ProviderRegistry
    orchestrator: FallbackOrchestrator
    chat: ChatService
    stream: bool = True
    dispatch_timeout: Optional[float] = None


def build_cli_context() -> CliContext:
    """
    Wire everything the CLI needs. Loads .env before reading any configuration.
    """
    load_environment()
    settings = build_settings_repository()
    registry = build_registry(settings)
    orchestrator = build_orchestrator(registry)
    return CliContext(
        settings=settings,
        registry=registry,
        orchestrator=orchestrator,
        chat=build_chat_service(orchestrator),
        stream=stream_enabled(settings),
        dispatch_timeout=dispatch_timeout(),
    )
