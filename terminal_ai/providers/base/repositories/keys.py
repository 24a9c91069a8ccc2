"""
Keys Repository

Purpose
- Resolve the API key for a provider. An unresolved key is an empty credential,
  which makes the provider ineligible for dispatch (skipped, not failed).

Resolution order
1) Environment variable (policy.env_key, default <NAME>_API_KEY)
   - a value of the form "gopass:<path>" is looked up in gopass
2) gopass at policy.gopass_key, only when USE_GOPASS=true
3) Settings repository (SQLite), populated by '/provider auth'
4) None

Usage
- repo = KeysRepository(settings=get_settings_repo())
- key = repo.get_api_key("openrouter")
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from terminal_ai.settings.interfaces import SettingsRepository

logger = logging.getLogger(__name__)

GOPASS_PREFIX = "gopass:"


def default_env_var(provider: str) -> str:
    return f"{provider.upper()}_API_KEY"


@dataclass
class KeyResolution:
    provider: str
    api_key: Optional[str]
    source: str  # "env", "gopass", "settings_db", "none"
    extra: Dict[str, Any] = field(default_factory=dict)


class KeysRepository:
    """Read-only credential resolver. Never writes environment or gopass."""

    def __init__(
        self,
        settings: Optional[SettingsRepository] = None,
        use_gopass: Optional[bool] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.settings = settings
        self.environ = environ if environ is not None else os.environ
        if use_gopass is None:
            use_gopass = self.environ.get("USE_GOPASS", "").lower() == "true"
        self.use_gopass = use_gopass

    def get_api_key(self, provider: str, env_var: str = "", gopass_key: str = "") -> Optional[str]:
        return self.get_resolution(provider, env_var=env_var, gopass_key=gopass_key).api_key

    def get_resolution(self, provider: str, env_var: str = "", gopass_key: str = "") -> KeyResolution:
        p = (provider or "").lower().strip()
        env_var = env_var or default_env_var(p)

        # 1) Environment (with gopass indirection)
        val = self.environ.get(env_var, "")
        if val and not val.startswith(GOPASS_PREFIX):
            return KeyResolution(provider=p, api_key=val, source="env", extra={"env_var": env_var})
        if val.startswith(GOPASS_PREFIX):
            secret = self._from_gopass(val[len(GOPASS_PREFIX):])
            if secret:
                return KeyResolution(provider=p, api_key=secret, source="gopass", extra={"env_var": env_var})

        # 2) gopass store
        if self.use_gopass and gopass_key:
            secret = self._from_gopass(gopass_key)
            if secret:
                return KeyResolution(provider=p, api_key=secret, source="gopass", extra={"path": gopass_key})

        # 3) Settings repository
        if self.settings is not None:
            db_key = self.settings.get_api_key(p)
            if db_key:
                return KeyResolution(provider=p, api_key=db_key, source="settings_db", extra={"repo": "sqlite"})

        return KeyResolution(provider=p, api_key=None, source="none", extra={"env_var": env_var})

    # -------------------- internal helpers --------------------

    def _from_gopass(self, path: str) -> Optional[str]:
        try:
            out = subprocess.check_output(["gopass", "show", path], stderr=subprocess.DEVNULL, text=True, timeout=10)
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"gopass lookup failed for {path}: {e}")
            return None
        return out.strip() or None
