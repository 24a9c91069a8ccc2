"""
Settings repository contract.

- Presentation (CLI) and the keys/identity resolvers depend only on this Protocol.
- Infrastructure (SQLite) implements it.
"""

from __future__ import annotations

from typing import Dict, Optional, Protocol


class SettingsRepository(Protocol):
    """
    Persists API keys per provider and simple string preferences
    (stream mode, theme, custom provider endpoints/models, last session).
    """

    def get_api_key(self, provider: str) -> Optional[str]:
        ...

    def set_api_key(self, provider: str, key: Optional[str]) -> None:
        """
        Persist/update API key for provider. Passing None or "" deletes the key.
        """
        ...

    def get_pref(self, key: str) -> Optional[str]:
        ...

    def set_pref(self, key: str, value: Optional[str]) -> None:
        """
        Persist/update preference. Passing None deletes the preference.
        """
        ...

    def all_api_keys(self) -> Dict[str, str]:
        ...

    def all_prefs(self) -> Dict[str, str]:
        ...
