"""
Command handlers for CLI.

Each handler takes the console, the CliContext and the command tokens after the
command word, so the same code serves '/provider list' in the REPL and
'terminal-ai provider list' on the command line.
"""
from __future__ import annotations

import json
from getpass import getpass
from pathlib import Path
from typing import Callable, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.box import ROUNDED

from terminal_ai.api.di.cli_composition import STREAM_PREF, CliContext
from terminal_ai.chat.sessions import SessionNotFoundError
from terminal_ai.providers.base.models import AGGREGATOR_PROVIDER, AttemptOutcome, ChatRequest, Message
from terminal_ai.providers.exceptions import ProviderError, ProvidersExhaustedError

Ask = Callable[[str], str]

PROVIDER_TEST_PROMPT = "Hello! Say 'Test successful' if you receive this."
BYOK_TEST_PROMPT = "Hello! Say 'BYOK test successful' if you receive this."
KNOWN_BYOK_UPSTREAMS = (
    "Cerebras (cerebras/llama-3.1-8b)",
    "Google AI Studio (google/gemini-2.0-flash-exp:free)",
    "Groq (groq/llama-3.3-70b-versatile)",
    "SambaNova (sambanova/llama-3.2)",
    "z.ai (zai/llama-3.1)",
)


def error_panel(console: Console, err: object, title: str = "Error") -> None:
    console.print(Panel(f"[error]{err}[/error]", title=title, box=ROUNDED))


def show_help(console: Console) -> None:
    """Print help panel."""
    console.print(
        Panel(
            "Commands\n"
            "/help                         Show help\n"
            "/provider list                Show providers in fallback order\n"
            "/provider use <name>          Try <name> first for this session\n"
            "/provider test <name>         Single request to one provider (no fallback)\n"
            "/provider enable|disable <name>\n"
            "/provider priority <name> <n> Lower number is tried first\n"
            "/provider default <name>      Set the default provider\n"
            "/provider fallback on|off     Toggle cross-provider fallback\n"
            "/provider add <name>          Add a custom OpenAI-compatible provider\n"
            "/provider auth <name> [key]   Store an API key (prompted if omitted)\n"
            "/byok ...                     OpenRouter bring-your-own-key routing ('/byok help')\n"
            "/stream [on|off]              Toggle streaming responses\n"
            "/history [list|view|new|delete|clear|export]\n"
            "/skills [list|create <name>]  Prompt templates matched by trigger words\n"
            "/theme     Toggle theme (dark/light)\n"
            "/colors    Toggle color output (on/off)\n"
            "/clear     Clear the screen\n"
            "/exit      Exit\n\n"
            "Anything else is sent to the current chat session. Ctrl-C cancels a running request.",
            title="Help",
            box=ROUNDED,
        )
    )


def describe_attempt(console: Console, outcome: AttemptOutcome) -> None:
    """on_attempt listener: one muted line per failed attempt."""
    if outcome.succeeded:
        return
    category = outcome.category.value if outcome.category else "unknown"
    console.print(f"[warning]! {outcome.provider} attempt {outcome.attempt} failed ({category}):[/warning] [muted]{outcome.error}[/muted]")


# -------------------- providers --------------------


def render_providers(console: Console, ctx: CliContext) -> None:
    registry = ctx.registry
    snap = registry.snapshot()
    table = Table(title="Providers (fallback order)", box=ROUNDED)
    table.add_column("#", justify="right")
    table.add_column("Name", no_wrap=True)
    table.add_column("Priority", justify="right")
    table.add_column("Status")
    table.add_column("Model")
    table.add_column("Endpoint")
    table.add_column("Key")
    table.add_column("Retries", justify="right")

    enabled = snap.ordered_providers()
    disabled = sorted(n for n, p in snap.config.providers.items() if not p.enabled)
    for i, name in enumerate(enabled + disabled, start=1):
        policy = snap.policy(name)
        ident = snap.identity(name)
        label = f"{name} (default)" if name == snap.config.default_provider else name
        if policy.byok:
            label += " [muted]custom[/muted]"
        table.add_row(
            str(i),
            label,
            str(policy.priority),
            "[success]enabled[/success]" if policy.enabled else "[error]disabled[/error]",
            ident.model or "-",
            ident.endpoint or "-",
            "[success]yes[/success]" if ident.usable else "[warning]missing[/warning]",
            str(policy.max_retries),
        )
    console.print(table)
    console.print(
        f"Fallback: [accent]{'on' if snap.config.fallback_enabled else 'off'}[/accent]  "
        f"Retry delay: [accent]{snap.config.retry_delay_ms} ms[/accent]"
    )


def test_provider(console: Console, ctx: CliContext, name: str) -> bool:
    request = ChatRequest(messages=(Message(role="user", content=PROVIDER_TEST_PROMPT),))
    ident = ctx.registry.get_identity(name)
    console.print(f"Testing [provider]{name}[/provider] ({ident.model} @ {ident.endpoint})")
    try:
        result = ctx.orchestrator.try_provider(name, request)
    except ProvidersExhaustedError as e:
        category = e.last_category.value if e.last_category else "unknown"
        error_panel(console, f"{e.last_message}\nError type: {category}", title=f"Test failed: {name}")
        return False
    if not result.text:
        console.print("[warning]No response received[/warning]")
        return False
    console.print(Panel(result.text[:100], title=f"[success]Test successful: {name}[/success]", box=ROUNDED))
    return True


def add_provider_interactive(console: Console, ctx: CliContext, name: str, ask: Ask, ask_secret: Ask = getpass) -> None:
    console.print(f"Adding new provider: [provider]{name}[/provider]")
    raw_priority = ask("Priority (0=highest): ").strip()
    try:
        priority = int(raw_priority) if raw_priority else 1
    except ValueError:
        console.print(f"[warning]Invalid priority '{raw_priority}', using 1[/warning]")
        priority = 1
    endpoint = ask("Endpoint URL: ").strip()
    model = ask("Model name: ").strip()
    api_key = ask_secret("API key (leave blank to use env/gopass): ").strip()
    ident = ctx.registry.add_provider(name, endpoint=endpoint, model=model, priority=priority, api_key=api_key)
    console.print(
        Panel(
            f"Priority: {priority}\nEndpoint: {ident.endpoint}\nModel: {ident.model}\n"
            f"Key: {'stored' if ident.usable else 'not set'}",
            title=f"[success]Provider '{ident.name}' added[/success]",
            box=ROUNDED,
        )
    )


def handle_auth(console: Console, ctx: CliContext, args: List[str], ask_secret: Ask = getpass) -> None:
    """Handle 'provider auth <name> [key]'."""
    if not args:
        console.print("Usage: provider auth <name> [key]")
        return
    name = args[0].strip().lower()
    key = args[1].strip() if len(args) > 1 else ask_secret(f"Enter API key for {name} (hidden): ").strip()
    ident = ctx.registry.set_api_key(name, key or None)
    if key:
        console.print(f"[success]API key updated for {name}.[/success]")
    elif ident.usable:
        console.print(f"Stored key cleared for {name}; a key is still provided by the environment or gopass.")
    else:
        console.print(f"[warning]API key cleared for {name}.[/warning]")


def handle_provider_command(
    console: Console,
    ctx: CliContext,
    args: List[str],
    ask: Ask = input,
    ask_secret: Ask = getpass,
) -> None:
    """Dispatch a provider subcommand. Invalid input is reported, never raised."""
    sub = args[0].lower() if args else "list"
    rest = args[1:]
    registry = ctx.registry
    try:
        if sub == "list":
            render_providers(console, ctx)
        elif sub == "test" and rest:
            test_provider(console, ctx, rest[0])
        elif sub in ("enable", "disable") and rest:
            registry.set_enabled(rest[0], sub == "enable")
            console.print(f"[success]Provider '{rest[0]}' {sub}d[/success]")
        elif sub == "priority" and len(rest) >= 2:
            registry.set_priority(rest[0], int(rest[1]))
            console.print(f"[success]Provider '{rest[0]}' priority set to {int(rest[1])}[/success]")
        elif sub == "default" and rest:
            registry.set_default(rest[0])
            console.print(f"[success]Default provider set to '{rest[0]}'[/success]")
        elif sub == "fallback" and rest:
            registry.set_fallback_enabled(rest[0].lower() in ("on", "true", "1", "yes"))
            console.print(f"Fallback {'enabled' if registry.fallback_enabled else 'disabled'}")
        elif sub == "add" and rest:
            add_provider_interactive(console, ctx, rest[0], ask, ask_secret)
        elif sub == "auth":
            handle_auth(console, ctx, rest, ask_secret)
        elif sub == "byok":
            handle_byok_command(console, ctx, rest)
        else:
            console.print(
                "Usage: provider list | test <name> | enable <name> | disable <name> | priority <name> <n> | "
                "default <name> | fallback on|off | add <name> | auth <name> [key] | byok ..."
            )
    except ValueError as e:
        error_panel(console, f"Invalid number: {e}")
    except ProviderError as e:
        error_panel(console, e)


# -------------------- BYOK --------------------


def render_byok(console: Console, ctx: CliContext) -> None:
    cfg = ctx.registry.byok_policy()
    if cfg is None:
        console.print(Panel("Status: not configured\nEnable with: byok enable", title="OpenRouter BYOK", box=ROUNDED))
        return
    lines = [
        f"Status: {'[success]enabled[/success]' if cfg.enabled else '[error]disabled[/error]'}",
        f"Fallback to shared: {cfg.allow_fallback_to_shared}",
        "",
    ]
    if cfg.provider_order:
        lines.append("Upstream priority order:")
        for i, upstream in enumerate(cfg.provider_order, start=1):
            lines.append(f"  {i}. {upstream}  [muted]model: {cfg.model_for(upstream) or '(not set)'}[/muted]")
    else:
        lines.append("No BYOK providers configured. Add with: byok add <name> <model>")
    lines += ["", "[muted]Known upstreams: " + ", ".join(KNOWN_BYOK_UPSTREAMS) + "[/muted]"]
    console.print(Panel("\n".join(lines), title="OpenRouter BYOK", box=ROUNDED))


def test_byok(console: Console, ctx: CliContext) -> bool:
    cfg = ctx.registry.byok_policy()
    if cfg is None or not cfg.enabled:
        error_panel(console, "BYOK not enabled. Enable it first: byok enable")
        return False
    if not cfg.provider_order:
        error_panel(console, "No BYOK providers configured. Add providers first: byok add <name> <model>")
        return False
    ident = ctx.registry.get_identity(AGGREGATOR_PROVIDER)
    model = cfg.model_for(cfg.provider_order[0]) or ident.model
    console.print(f"Testing BYOK order {cfg.provider_order} with model [accent]{model}[/accent]")
    request = ChatRequest(messages=(Message(role="user", content=BYOK_TEST_PROMPT),), model=model)
    try:
        result = ctx.orchestrator.try_provider(AGGREGATOR_PROVIDER, request)
    except ProvidersExhaustedError as e:
        error_panel(console, e.last_message, title="BYOK test failed")
        return False
    if not result.text:
        console.print("[warning]No response received[/warning]")
        return False
    console.print(Panel(result.text, title="[success]BYOK test successful[/success]", box=ROUNDED))
    return True


def handle_byok_command(console: Console, ctx: CliContext, args: List[str]) -> None:
    sub = args[0].lower() if args else "list"
    rest = args[1:]
    registry = ctx.registry
    try:
        if sub == "list":
            render_byok(console, ctx)
        elif sub in ("enable", "disable"):
            registry.byok_set_enabled(sub == "enable")
            console.print(f"[success]BYOK mode {sub}d[/success]")
        elif sub == "add" and len(rest) >= 2:
            registry.byok_add(rest[0], rest[1])
            console.print(f"[success]Added BYOK provider: {rest[0]}[/success] (model {rest[1]})")
            console.print("[muted]Add your upstream key at https://openrouter.ai/settings/integrations[/muted]")
        elif sub == "remove" and rest:
            registry.byok_remove(rest[0])
            console.print(f"[success]Removed BYOK provider: {rest[0]}[/success]")
        elif sub == "order" and rest:
            order = registry.byok_set_order(" ".join(rest).split(","))
            console.print("[success]BYOK provider order updated:[/success] " + ", ".join(order))
        elif sub == "model" and len(rest) >= 2:
            registry.byok_set_model(rest[0], rest[1])
            console.print(f"[success]BYOK model for {rest[0]} set to {rest[1]}[/success]")
        elif sub == "fallback" and rest:
            allow = rest[0].lower() == "true"
            registry.byok_set_fallback(allow)
            console.print(f"BYOK fallback to shared keys: {allow}")
        elif sub == "test":
            test_byok(console, ctx)
        else:
            console.print(
                "Usage: byok enable | disable | add <name> <model> | remove <name> | list | "
                "order <a,b,c> | model <name> <slug> | fallback <true|false> | test"
            )
    except ProviderError as e:
        error_panel(console, e)


# -------------------- preferences --------------------


def handle_stream(console: Console, ctx: CliContext, args: List[str]) -> bool:
    """Handle /stream [on|off]; toggles when no argument is given."""
    if args:
        enabled = args[0].lower() in ("on", "true", "1", "yes")
    else:
        enabled = not ctx.stream
    ctx.stream = enabled
    ctx.settings.set_pref(STREAM_PREF, "true" if enabled else "false")
    console.print(f"Streaming {'[success]on[/success]' if enabled else '[warning]off[/warning]'}")
    return enabled


def handle_theme(console: Console, ctx: CliContext, theme: str) -> str:
    new_theme = "light" if theme == "dark" else "dark"
    ctx.settings.set_pref("cli_theme", new_theme)
    return new_theme


def handle_colors(console: Console, ctx: CliContext, use_color: bool) -> bool:
    new_color = not use_color
    ctx.settings.set_pref("cli_color", "1" if new_color else "0")
    return new_color


# -------------------- history --------------------


def handle_history(console: Console, ctx: CliContext, args: List[str], current: Optional[str]) -> Optional[str]:
    """
    Handle /history subcommands. Returns the session id that should be current
    afterwards (None means a new session starts with the next message).
    """
    store = ctx.chat.sessions
    sub = args[0].lower() if args else "list"
    rest = args[1:]
    try:
        if sub == "list":
            table = Table(title="Chat sessions", box=ROUNDED)
            table.add_column("ID", no_wrap=True)
            table.add_column("Title")
            table.add_column("Messages", justify="right")
            table.add_column("Updated")
            for s in store.list():
                marker = " *" if s.id == current else ""
                table.add_row(s.id + marker, s.title, str(len(s.messages)), s.updated_at)
            console.print(table)
        elif sub == "view" and rest:
            session = store.get(rest[0])
            body = "\n\n".join(
                f"[{'accent' if m.role == 'user' else 'primary'}]{m.role}:[/] {m.content}" for m in session.messages
            )
            console.print(Panel(body or "(empty)", title=session.title, box=ROUNDED))
        elif sub in ("resume", "open") and rest:
            session = store.get(rest[0])
            console.print(f"Resumed session [accent]{session.title}[/accent]")
            return session.id
        elif sub == "last":
            session = store.latest()
            if session is None:
                console.print("No sessions yet.")
                return current
            console.print(f"Resumed session [accent]{session.title}[/accent]")
            return session.id
        elif sub == "new":
            console.print("Started a new session.")
            return None
        elif sub == "delete" and rest:
            store.delete(rest[0])
            console.print(f"[success]Deleted session {rest[0]}[/success]")
            return None if rest[0] == current else current
        elif sub == "clear":
            store.clear()
            console.print("[success]All history cleared[/success]")
            return None
        elif sub == "export" and rest:
            fmt = rest[1] if len(rest) > 1 else "md"
            path = Path(rest[2]) if len(rest) > 2 else Path(f"{rest[0]}.{fmt}")
            path.write_text(store.export(rest[0], fmt), encoding="utf-8")
            console.print(f"[success]Exported to {path}[/success]")
        else:
            console.print("Usage: history list | view <id> | resume <id> | last | new | delete <id> | clear | export <id> [md|txt] [file]")
    except SessionNotFoundError as e:
        error_panel(console, f"Session not found: {e.args[0]}")
    except (ValueError, OSError) as e:
        error_panel(console, e)
    return current


# -------------------- skills --------------------


def handle_skills(console: Console, ctx: CliContext, args: List[str], ask: Ask = input) -> None:
    library = ctx.chat.skills
    if library is None:
        console.print("[warning]Skills are not configured.[/warning]")
        return
    sub = args[0].lower() if args else "list"
    if sub == "list":
        skills = library.list()
        if not skills:
            console.print(f"No skills found in {library.root}")
            return
        table = Table(title="Skills", box=ROUNDED)
        table.add_column("Name", no_wrap=True)
        table.add_column("Description")
        table.add_column("Triggers")
        for s in skills:
            table.add_row(s.name, s.description, ", ".join(s.triggers))
        console.print(table)
    elif sub == "create" and len(args) > 1:
        description = ask("Description: ").strip()
        triggers = ask("Triggers (comma-separated): ").split(",")
        template = ask("Template: ").strip()
        try:
            path = library.create(args[1], description, triggers, template)
        except (ValueError, OSError) as e:
            error_panel(console, e)
            return
        console.print(f"[success]Skill '{args[1]}' created[/success] [muted]{path}[/muted]")
    elif sub == "show" and len(args) > 1:
        for s in library.list():
            if s.name == args[1]:
                console.print(Panel(json.dumps(s.__dict__, ensure_ascii=False, indent=2), title=s.name, box=ROUNDED))
                return
        error_panel(console, f"Skill not found: {args[1]}")
    else:
        console.print("Usage: skills list | create <name> | show <name>")
