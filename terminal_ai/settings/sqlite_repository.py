"""
SQLite Settings Repository (Infrastructure)

Implements SettingsRepository to persist:
  * API keys per provider (used as the last credential source before 'none')
  * Preferences: stream mode, theme, colors, custom provider endpoint/model,
    last chat session

Schema:
  - api_keys(provider TEXT PRIMARY KEY, key TEXT)
  - prefs(key TEXT PRIMARY KEY, value TEXT)
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Dict, Optional

from .interfaces import SettingsRepository
from .paths import data_dir


class SqliteSettingsRepository(SettingsRepository):
    def __init__(self, db_path: Optional[str] = None) -> None:
        if db_path is None:
            base = data_dir()
            base.mkdir(parents=True, exist_ok=True)
            db_path = str(base / "settings.db")
        elif db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS api_keys (provider TEXT PRIMARY KEY, key TEXT)"
            )
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS prefs (key TEXT PRIMARY KEY, value TEXT)"
            )

    # ------------- API Keys -------------

    def get_api_key(self, provider: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute(
                "SELECT key FROM api_keys WHERE provider = ?", (provider.lower().strip(),)
            ).fetchone()
        return row[0] if row else None

    def set_api_key(self, provider: str, key: Optional[str]) -> None:
        p = provider.lower().strip()
        with self._lock, self._conn:
            if not key:
                self._conn.execute("DELETE FROM api_keys WHERE provider = ?", (p,))
            else:
                self._conn.execute(
                    "INSERT INTO api_keys(provider, key) VALUES(?, ?) "
                    "ON CONFLICT(provider) DO UPDATE SET key = excluded.key",
                    (p, key),
                )

    def all_api_keys(self) -> Dict[str, str]:
        with self._lock:
            rows = self._conn.execute("SELECT provider, key FROM api_keys").fetchall()
        return {provider: key for provider, key in rows}

    # ------------- Preferences -------------

    def get_pref(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute("SELECT value FROM prefs WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_pref(self, key: str, value: Optional[str]) -> None:
        with self._lock, self._conn:
            if value is None:
                self._conn.execute("DELETE FROM prefs WHERE key = ?", (key,))
            else:
                self._conn.execute(
                    "INSERT INTO prefs(key, value) VALUES(?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, value),
                )

    def all_prefs(self) -> Dict[str, str]:
        with self._lock:
            rows = self._conn.execute("SELECT key, value FROM prefs").fetchall()
        return {key: value for key, value in rows}

    def close(self) -> None:
        with self._lock:
            self._conn.close()
