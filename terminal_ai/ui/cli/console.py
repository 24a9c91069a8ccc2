"""
Console utilities for CLI.
"""

from typing import Optional
from rich.console import Console
from rich.theme import Theme
import os
import sys

_CURRENT_THEME_NAME = "dark"

THEMES = {
    "light": {
        "primary": "black",
        "accent": "dark_green",
        "warning": "dark_orange",
        "error": "red",
        "success": "green",
        "muted": "grey42",
        "provider": "bold blue",
        "box_title": "bold black",
    },
    "dark": {
        "primary": "white",
        "accent": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "green",
        "muted": "grey70",
        "provider": "bold magenta",
        "box_title": "bold cyan",
    },
}


def _build_theme(theme_name: str) -> Theme:
    return Theme(THEMES.get(theme_name, THEMES["dark"]))


def _should_enable_color(enable: Optional[bool]):
    """
    Compute effective color enablement, force_terminal, and color_system.

    Rules:
    - Respect NO_COLOR unless TERMINAL_AI_FORCE_COLOR is set
    - enable None: auto-detect via isatty; True/False: explicit choice
    """
    force_color = (os.getenv("TERMINAL_AI_FORCE_COLOR") or "").lower() in ("1", "true", "yes", "on")
    no_color_env = os.getenv("NO_COLOR") is not None
    tty = bool(getattr(sys.stdout, "isatty", lambda: False)())

    desired = (tty if enable is None else bool(enable)) and (not no_color_env or force_color)

    if enable is False:
        force_terminal = False
    elif force_color:
        force_terminal = True
    else:
        force_terminal = bool(desired and tty)

    color_system = "auto" if desired else None
    return desired, force_terminal, color_system


def make_console(theme_name: str, use_color: Optional[bool] = True) -> Console:
    """Create a Rich console with the selected theme and color policy."""
    global _CURRENT_THEME_NAME
    _CURRENT_THEME_NAME = "light" if theme_name == "light" else "dark"

    desired, force_terminal, color_system = _should_enable_color(use_color)
    return Console(
        theme=_build_theme(_CURRENT_THEME_NAME),
        no_color=not desired,
        color_system=color_system,
        force_terminal=force_terminal,
        markup=True,
        emoji=True,
        highlight=False,
    )


def rebuild_console(enable: Optional[bool] = None) -> Console:
    """Rebuild console with the last theme and the given color state."""
    return make_console(_CURRENT_THEME_NAME, use_color=enable)


__all__ = ["make_console", "rebuild_console", "THEMES"]
