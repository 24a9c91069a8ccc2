"""
Filesystem locations.

- config dir: $TERMINAL_AI_CONFIG_DIR or ~/.config/terminal-ai (providers.json, .env, skills/)
- data dir:   $XDG_DATA_HOME/terminal-ai or ~/.local/share/terminal-ai (chat history, settings.db)
"""

from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "terminal-ai"


def config_dir() -> Path:
    override = os.getenv("TERMINAL_AI_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / APP_NAME


def data_dir() -> Path:
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg).expanduser() / APP_NAME
    return Path.home() / ".local" / "share" / APP_NAME
