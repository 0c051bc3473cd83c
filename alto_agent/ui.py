"""Prompt styling, slash-command palette, banner and help text."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.styles import Style
from rich.markup import escape

from .theme import ACCENT, BORDER, DIM, MUTED, PROMPT, SEPARATOR, SUCCESS, TEXT

PTK_STYLE = Style.from_dict({
    "completion-menu": "bg:default",
    "completion-menu.completion": f"bg:default {TEXT}",
    "completion-menu.completion.current": f"bg:{BORDER} {TEXT} bold",
    "completion-menu.command": SUCCESS,
    "completion-menu.args": MUTED,
    "completion-menu.description": ACCENT,
    "scrollbar.background": "bg:default",
    "scrollbar.button": "bg:default",
})


@dataclass(frozen=True)
class SlashCommandSpec:
    command: str
    usage: str
    description: str
    keywords: tuple[str, ...] = ()


SLASH_COMMAND_SPECS: tuple[SlashCommandSpec, ...] = (
    SlashCommandSpec("/help", "/help", "Show help", ("docs", "usage", "commands")),
    SlashCommandSpec("/send", "/send", "Submit the pending multi-line prompt", ("submit", "enter")),
    SlashCommandSpec("/clear", "/clear", "Clear chat history", ("reset", "conversation")),
    SlashCommandSpec("/history", "/history", "Show chat history", ("messages", "tokens")),
    SlashCommandSpec("/system", "/system [text]", "Show or replace the system prompt", ("preamble", "persona")),
    SlashCommandSpec("/models", "/models", "List endpoint models", ("llm", "context")),
    SlashCommandSpec("/exit", "/exit", "Quit", ("quit", "bye")),
    SlashCommandSpec("/quit", "/quit", "Quit", ("exit", "bye")),
)

SLASH_COMMANDS = [spec.command for spec in SLASH_COMMAND_SPECS]


def build_banner(version: str) -> str:
    return (
        f"[bold {ACCENT}]Alto[/bold {ACCENT}] "
        f"[{DIM}]v{version} · AI coding assistant[/{DIM}]"
    )


def build_help_text() -> str:
    usage_width = max(len(spec.usage) for spec in SLASH_COMMAND_SPECS)
    lines = ["", f"[bold {ACCENT}]Commands:[/bold {ACCENT}]"]
    for spec in SLASH_COMMAND_SPECS:
        lines.append(f"  {spec.usage:<{usage_width}}  {spec.description}")

    lines.extend([
        "",
        f"[bold {ACCENT}]Input:[/bold {ACCENT}]",
        "  Lines accumulate into one prompt; an empty line (or /send) submits it.",
        "  Ctrl-C cancels a streaming reply · Ctrl-D exits",
    ])
    return "\n".join(lines)


HELP_TEXT = build_help_text()


def render_help(console) -> None:
    console.print(HELP_TEXT)
    console.print()


def make_prompt_html(pending_lines: int = 0) -> HTML:
    """Main prompt, or a continuation marker while a multi-line prompt is pending."""
    if pending_lines:
        return HTML(f'<style fg="{SEPARATOR}">  ... </style>')
    return HTML(f'<style fg="{PROMPT}">alto</style><style fg="{SEPARATOR}"> › </style>')


def render_startup(console, config, context_window: Optional[int] = None) -> None:
    facts = [
        ("model", f"[bold]{escape(config.model)}[/bold]"),
        ("context", f"{context_window:,}" if context_window else "unknown"),
        ("approval", "[yellow]auto[/yellow]" if config.auto_confirm else "ask"),
        ("key", "[green]✓[/green]" if config.resolve_api_key() else "[dim]none[/dim]"),
    ]
    console.print(" [dim]•[/dim] ".join(f"[dim]{label}[/dim] {value}" for label, value in facts))
    for label, value in (("api", config.base_url), ("project", config.project_root),
                         ("config", config._config_source)):
        console.print(f"[dim]{label:<7}[/dim] {escape(str(value))}")
    console.print("[dim]/help · empty line sends · Ctrl+C to cancel[/dim]")
    console.print()


def _match_rank(token: str, spec: SlashCommandSpec) -> Optional[tuple[int, int]]:
    """Lower sorts first: prefix, then substring, then keyword hits. None: no match."""
    query = token.lower().lstrip("/")
    name = spec.command.lstrip("/")
    if name.startswith(query):
        return (0, 0)
    pos = name.find(query)
    if pos >= 0:
        return (1, pos)
    pos = " ".join((spec.description.lower(), *spec.keywords)).find(query)
    if pos >= 0:
        return (2, pos)
    return None


class SlashCommandCompleter(Completer):
    """Slash-command palette: completes the first word when it starts with '/'."""

    def __init__(self, specs: Sequence[SlashCommandSpec] = SLASH_COMMAND_SPECS):
        self.specs = list(specs)
        self.column = max(len(spec.usage) for spec in self.specs) + 2

    def _menu_row(self, spec: SlashCommandSpec):
        return [
            ("class:completion-menu.command", spec.command),
            ("class:completion-menu.args", spec.usage[len(spec.command):]),
            ("", " " * max(2, self.column - len(spec.usage))),
            ("class:completion-menu.description", spec.description),
        ]

    def get_completions(self, document, complete_event):
        typed = document.text_before_cursor.lstrip()
        if not typed.startswith("/") or " " in typed:
            return

        ranked = []
        for order, spec in enumerate(self.specs):
            rank = _match_rank(typed, spec)
            if rank is not None:
                ranked.append((rank, order, spec))
        for _, _, spec in sorted(ranked, key=lambda item: item[:2]):
            yield Completion(spec.command, start_position=-len(typed), display=self._menu_row(spec))
