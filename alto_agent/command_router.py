"""Slash-command routing, handlers and multi-line input accumulation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .agent import Agent
from .config import Config
from .errors import TransportError
from .llm import EndpointClient
from .rendering import get_icon, render_error, render_history
from .theme import (
    ACCENT as THEME_ACCENT,
    BORDER as THEME_BORDER,
    DIM as THEME_DIM,
    SUCCESS as THEME_SUCCESS,
    TEXT as THEME_TEXT,
    WARN as THEME_WARN,
)
from .tokenizer import estimate_history_tokens
from .ui import SLASH_COMMANDS

DIRECTIVE_PREFIX = "/"

_SLASH_ALIASES = {"/h": "/help", "/?": "/help", "/q": "/quit", "/reset": "/clear"}


# ── Input accumulation ──


@dataclass
class InputAction:
    kind: str  # "submit" | "directive" | "pending"
    text: str = ""


@dataclass
class InputAccumulator:
    """Collects plain lines into one prompt until a blank line submits it.

    Lines starting with ``/`` are directives and never join the prompt.
    """
    lines: List[str] = field(default_factory=list)

    @property
    def pending(self) -> int:
        return len(self.lines)

    def feed(self, line: str) -> InputAction:
        stripped = line.strip()
        if stripped.startswith(DIRECTIVE_PREFIX):
            return InputAction("directive", stripped)
        if not stripped:
            if self.lines:
                return InputAction("submit", self.take())
            return InputAction("pending")
        self.lines.append(line.rstrip("\r\n"))
        return InputAction("pending")

    def take(self) -> str:
        """Return the pending prompt and start a new one."""
        text = "\n".join(self.lines).strip("\n")
        self.lines = []
        return text

    def clear(self) -> None:
        self.lines = []


# ── Directives ──


@dataclass
class CommandContext:
    console: Console
    agent: Agent
    config: Config
    client: EndpointClient
    accumulator: InputAccumulator
    argument_text: str = ""


CommandHandler = Callable[[CommandContext, list[str]], str]


def _resolve_command(raw_cmd: str) -> str:
    """Resolve abbreviated slash commands via exact/alias/unique-prefix matching."""
    cmd = raw_cmd.lower()
    if cmd in SLASH_COMMANDS:
        return cmd
    if cmd in _SLASH_ALIASES:
        return _SLASH_ALIASES[cmd]

    matches = [candidate for candidate in SLASH_COMMANDS if candidate.startswith(cmd)]
    if len(matches) == 1:
        return matches[0]
    return cmd


def handle_command(
    command: str,
    *,
    console: Console,
    agent: Agent,
    config: Config,
    client: EndpointClient,
    accumulator: InputAccumulator,
) -> str:
    """Handle one slash command string.

    Returns "quit" to leave the session, "send" to submit the pending
    prompt, or "" to keep reading input.
    """
    parts = command.split()
    if not parts:
        return ""

    cmd = _resolve_command(parts[0])
    ctx = CommandContext(
        console=console, agent=agent, config=config, client=client,
        accumulator=accumulator, argument_text=command.strip()[len(parts[0]):].strip(),
    )
    handler = COMMAND_HANDLERS.get(cmd)
    if not handler:
        console.print(f"  [{THEME_WARN}]Unknown: {escape(parts[0])}. Try /help[/{THEME_WARN}]")
        return ""

    return handler(ctx, parts[1:])


def show_config_panel(console: Console, config: Config) -> None:
    table = Table(show_header=False, border_style=THEME_BORDER, padding=(0, 2), box=None)
    table.add_column("Key", style=f"bold {THEME_ACCENT}", min_width=14)
    table.add_column("Value", style=THEME_TEXT)
    for key, value in config.summary().items():
        table.add_row(key, escape(str(value)))
    console.print(Panel(table, title=f"[bold {THEME_ACCENT}] Configuration [/bold {THEME_ACCENT}]",
                        title_align="left", border_style=THEME_BORDER, padding=(0, 1)))


def show_model_table(console: Console, client: EndpointClient) -> None:
    try:
        models = client.list_models()
    except TransportError as e:
        render_error(console, f"Cannot list models: {e}")
        return
    if not models:
        console.print(f"  [{THEME_DIM}]No models found or unexpected response format.[/{THEME_DIM}]")
        return

    table = Table(border_style=THEME_BORDER)
    table.add_column("", width=2)
    table.add_column("Model", style=f"bold {THEME_ACCENT}")
    table.add_column("Context", style=THEME_DIM, justify="right")
    for info in models:
        marker = f"[{THEME_SUCCESS}]●[/{THEME_SUCCESS}]" if info.id == client.model else " "
        context = f"{info.n_ctx_train:,}" if info.n_ctx_train else "-"
        table.add_row(marker, escape(info.id), context)
    console.print(Panel(table, title=f"[bold {THEME_ACCENT}] Models [/bold {THEME_ACCENT}]",
                        title_align="left", border_style=THEME_BORDER))


def _cmd_quit(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    ctx.console.print(f"[{THEME_DIM}]Goodbye![/{THEME_DIM}]")
    return "quit"


def _cmd_help(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    from .ui import render_help

    render_help(ctx.console)
    return ""


def _cmd_send(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    if not ctx.accumulator.pending:
        ctx.console.print(f"  [{THEME_DIM}]Nothing to send.[/{THEME_DIM}]")
        return ""
    return "send"


def _cmd_clear(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    ctx.agent.reset()
    ctx.console.print(f"  [{THEME_SUCCESS}]{get_icon('✓')} Chat history cleared.[/{THEME_SUCCESS}]")
    return ""


def _cmd_history(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    history = ctx.agent.history
    estimate = estimate_history_tokens(history.to_wire(), ctx.client.model) if len(history) > 1 else None
    render_history(ctx.console, history.messages, estimate)
    return ""


def _cmd_system(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    text = ctx.argument_text
    if not text:
        ctx.console.print(Panel(escape(ctx.agent.history.system_prompt),
                                title=f"[bold {THEME_ACCENT}] System prompt [/bold {THEME_ACCENT}]",
                                title_align="left", border_style=THEME_BORDER))
        ctx.console.print(f"  [{THEME_DIM}]Usage: /system <text> to replace it[/{THEME_DIM}]")
        return ""
    ctx.agent.history.set_system(text)
    ctx.console.print(f"  [{THEME_SUCCESS}]{get_icon('✓')} System prompt replaced.[/{THEME_SUCCESS}]")
    return ""


def _cmd_models(ctx: CommandContext, args: list[str]) -> str:
    _ = args
    show_model_table(ctx.console, ctx.client)
    return ""


COMMAND_HANDLERS: dict[str, CommandHandler] = {
    "/quit": _cmd_quit,
    "/exit": _cmd_quit,
    "/help": _cmd_help,
    "/send": _cmd_send,
    "/clear": _cmd_clear,
    "/history": _cmd_history,
    "/system": _cmd_system,
    "/models": _cmd_models,
}
