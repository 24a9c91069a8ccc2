"""
terminal-ai: multi-provider LLM chat for the terminal.

Features:
- Providers tried in priority order with per-provider retries and fallback
- OpenRouter bring-your-own-key (BYOK) routing
- Streaming (token-by-token) or buffered replies, Ctrl-C cancels a running request
- Persistent chat sessions and trigger-matched skill templates
- Color themes (dark/light) and rich panels for output

Usage:
  terminal-ai                      Interactive REPL
  terminal-ai <message>            One-shot chat with fallback
  terminal-ai <provider> <message> One-shot chat trying <provider> first
  terminal-ai provider ...         Provider management (list, test, byok, ...)
  terminal-ai history ...          Chat history management
  terminal-ai skills ...           Skill management

Run:
  python -m terminal_ai
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.completion import WordCompleter

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.box import ROUNDED

from .console import make_console, rebuild_console
from .handlers import (
    describe_attempt, error_panel, handle_byok_command, handle_colors, handle_history,
    handle_provider_command, handle_skills, handle_stream, handle_theme, show_help,
)
from terminal_ai.api.di.cli_composition import CliContext, build_cli_context
from terminal_ai.infrastructure.llm.cancellation import CancelToken
from terminal_ai.providers.exceptions import DispatchCancelled, ProviderError, StreamAbortedError

logger = logging.getLogger(__name__)

COMMANDS = [
    "/help", "/provider", "/byok", "/stream", "/history", "/skills",
    "/theme", "/colors", "/clear", "/exit",
]


def setup_logging(console: Console) -> None:
    """Route logging through rich. Level from TERMINAL_AI_LOG_LEVEL (default WARNING)."""
    level = (os.getenv("TERMINAL_AI_LOG_LEVEL") or "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


@contextmanager
def cancel_on_sigint(token: CancelToken) -> Iterator[None]:
    """While active, Ctrl-C cancels token instead of raising KeyboardInterrupt."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def chat_once(
    console: Console,
    ctx: CliContext,
    message: str,
    session_id: Optional[str] = None,
    prefer: Optional[str] = None,
) -> bool:
    """Send one message and render the reply. Returns False when no reply was produced."""
    token = CancelToken(timeout=ctx.dispatch_timeout)
    out = getattr(sys, "__stdout__", None) or sys.stdout

    def on_delta(s: str) -> None:
        out.write(s)
        out.flush()

    def on_attempt(outcome) -> None:
        describe_attempt(console, outcome)

    try:
        with cancel_on_sigint(token):
            if ctx.stream:
                console.print("[accent]Response (streaming):[/accent]")
                result = ctx.chat.send(session_id, message, stream=True, on_delta=on_delta, cancel=token, on_attempt=on_attempt, prefer=prefer)
                out.write("\n")
                out.flush()
            else:
                result = ctx.chat.send(session_id, message, stream=False, cancel=token, on_attempt=on_attempt, prefer=prefer)
    except DispatchCancelled:
        console.print("\n[warning]Request cancelled.[/warning]")
        return False
    except StreamAbortedError as e:
        out.write("\n")
        error_panel(console, e, title="Stream aborted")
        return False
    except ProviderError as e:
        error_panel(console, e)
        return False
    finally:
        token.dispose()

    label = "fallback provider" if result.is_fallback else "provider"
    if ctx.stream:
        console.print(f"[muted]via {label} {result.provider}[/muted]")
    elif result.text:
        console.print(Panel(result.text, title=f"Response ({label}: [provider]{result.provider}[/provider])", box=ROUNDED))
    else:
        console.print("[warning]No response received[/warning]")
    return bool(result.text)


def run(ctx: Optional[CliContext] = None) -> None:
    """Main interactive loop."""
    ctx = ctx or build_cli_context()

    # Theme and color policy (ENV overrides DB)
    theme = (os.getenv("CLI_THEME") or ctx.settings.get_pref("cli_theme") or "dark").lower()
    use_color_env = os.getenv("CLI_COLOR")
    if use_color_env is not None:
        use_color = use_color_env.lower() in ("1", "true", "yes", "on")
    else:
        pref = str(ctx.settings.get_pref("cli_color") or "").lower()
        use_color = pref not in ("0", "false", "no", "off")
    console = make_console(theme, use_color=use_color)
    setup_logging(console)
    session = PromptSession(history=InMemoryHistory())

    console.print(
        Panel(
            "terminal-ai\n"
            f"Providers: {', '.join(ctx.registry.ordered_providers()) or 'none enabled'}  "
            f"Streaming: {'on' if ctx.stream else 'off'}",
            title="Welcome",
            box=ROUNDED,
        )
    )
    show_help(console)

    completer = WordCompleter(COMMANDS, ignore_case=True, match_middle=True)
    current_session: Optional[str] = None
    preferred: Optional[str] = None

    while True:
        try:
            with patch_stdout():
                user_input = session.prompt("> ", completer=completer)
        except (KeyboardInterrupt, EOFError):
            console.print("\nExiting...", style="yellow")
            break

        cmd = user_input.strip()
        if not cmd:
            continue

        parts = cmd.split()
        head, args = parts[0].lower(), parts[1:]

        if head == "/help":
            show_help(console)
        elif head == "/provider":
            if args[:1] == ["use"]:
                preferred = args[1].lower() if len(args) > 1 else None
                console.print(f"Preferred provider: [provider]{preferred or 'priority order'}[/provider]")
            else:
                handle_provider_command(console, ctx, args, ask=session.prompt)
        elif head == "/byok":
            handle_byok_command(console, ctx, args)
        elif head == "/stream":
            handle_stream(console, ctx, args)
        elif head == "/history":
            current_session = handle_history(console, ctx, args, current_session)
        elif head == "/skills":
            handle_skills(console, ctx, args, ask=session.prompt)
        elif head == "/theme":
            theme = handle_theme(console, ctx, theme)
            console = make_console(theme, use_color=use_color)
            setup_logging(console)
            console.print(Panel(f"Theme switched to [accent]{theme}[/accent]", title="Theme", box=ROUNDED))
        elif head == "/colors":
            use_color = handle_colors(console, ctx, use_color)
            console = rebuild_console(enable=use_color)
            setup_logging(console)
            show_help(console)
        elif head == "/clear":
            console.clear()
        elif head == "/exit":
            console.print("\n[warning]Exiting...[/warning]")
            break
        elif head.startswith("/"):
            console.print(f"[warning]Unknown command {head}. Type /help.[/warning]")
        else:
            if current_session is None:
                current_session = ctx.chat.start_session(cmd, provider=preferred or ctx.registry.default_provider).id
            chat_once(console, ctx, cmd, session_id=current_session, prefer=preferred)


def main(argv: Optional[List[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        run()
        return 0

    ctx = build_cli_context()
    console = make_console(os.getenv("CLI_THEME") or "dark", use_color=None)
    setup_logging(console)

    head, rest = args[0].lower(), args[1:]
    if head in ("-h", "--help", "help"):
        console.print(__doc__.strip())
        return 0
    if head in ("provider", "providers"):
        handle_provider_command(console, ctx, rest)
        return 0
    if head == "byok":
        handle_byok_command(console, ctx, rest)
        return 0
    if head == "history":
        handle_history(console, ctx, rest, None)
        return 0
    if head in ("skill", "skills"):
        handle_skills(console, ctx, rest)
        return 0

    prefer = None
    if head in ctx.registry.names() and rest:
        prefer, args = head, rest
    return 0 if chat_once(console, ctx, " ".join(args), prefer=prefer) else 1


if __name__ == "__main__":
    sys.exit(main())
