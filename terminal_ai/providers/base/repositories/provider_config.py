"""
Provider Config Repository

Persists ProviderGlobalConfig as JSON at <config dir>/providers.json.

- load(): read the file, writing the default configuration first if it is missing
- save(): overwrite the file atomically (temp file + replace)

The orchestrator never touches this file; it only reads registry snapshots.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from terminal_ai.providers.base.models import ProviderGlobalConfig, ProviderPolicy
from terminal_ai.providers.exceptions import ProviderConfigError
from terminal_ai.settings.paths import config_dir

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "providers.json"


def _policy(priority: int, name: str) -> ProviderPolicy:
    upper = name.upper()
    return ProviderPolicy(
        priority=priority,
        enabled=True,
        max_retries=2,
        gopass_key=f"terminal-ai/{name}_api_key",
        env_key=f"{upper}_API_KEY",
        endpoint_key=f"{upper}_ENDPOINT",
        model_key=f"{upper}_MODEL",
    )


def default_config() -> ProviderGlobalConfig:
    return ProviderGlobalConfig(
        default_provider="openrouter",
        fallback_enabled=True,
        retry_attempts=3,
        retry_delay_ms=1000,
        providers={
            "openrouter": _policy(1, "openrouter"),
            "gemini": _policy(2, "gemini"),
            "groq": _policy(3, "groq"),
        },
    )


class ProviderConfigRepository:
    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else config_dir() / CONFIG_FILENAME

    def load(self) -> ProviderGlobalConfig:
        if not self.path.exists():
            config = default_config()
            self.save(config)
            logger.info(f"Created default provider config at {self.path}")
            return config
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ProviderConfigError(f"Failed to load provider config {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ProviderConfigError(f"Provider config {self.path} must be a JSON object")
        return ProviderGlobalConfig.from_dict(data)

    def save(self, config: ProviderGlobalConfig) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".providers.", suffix=".json", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(config.to_dict(), f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise ProviderConfigError(f"Failed to save provider config {self.path}: {e}") from e
        return self.path
