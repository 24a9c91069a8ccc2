"""
Settings repository factory (composition root helper)

Presentation code should depend on SettingsRepository (interfaces.py).
get_settings_repo() lazily instantiates the SQLite backend and returns a
process-wide singleton.
"""

from __future__ import annotations

from typing import Optional

from .interfaces import SettingsRepository

_repo_singleton: Optional[SettingsRepository] = None


def get_settings_repo(db_path: Optional[str] = None) -> SettingsRepository:
    global _repo_singleton
    if _repo_singleton is None:
        from .sqlite_repository import SqliteSettingsRepository
        _repo_singleton = SqliteSettingsRepository(db_path=db_path)
    return _repo_singleton


__all__ = ["SettingsRepository", "get_settings_repo"]
