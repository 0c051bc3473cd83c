"""Terminal rendering and user confirmation logic."""

from typing import Any, Dict, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .theme import ACCENT, BORDER, DIM, ERROR, MUTED, SEPARATOR, SUCCESS, TEXT, WARN

__all__ = [
    "get_icon", "set_use_unicode",
    "render_error", "render_tool_call", "render_result",
    "render_turn_stats", "render_history", "confirm_tool",
]


# ── Icon mapping for Unicode/ASCII fallback ──

_USE_UNICODE = True

_ICON_MAP = {
    "✓": "[OK]",
    "✗": "[X]",
    "✎": "[~]",
    "▸": ">",
    "·": ".",
    "⚠": "!",
    "─": "-",
}


def set_use_unicode(enabled: bool):
    """Set whether to use Unicode icons (True) or ASCII fallback (False)."""
    global _USE_UNICODE
    _USE_UNICODE = enabled


def get_icon(unicode_icon: str) -> str:
    if _USE_UNICODE:
        return unicode_icon
    return _ICON_MAP.get(unicode_icon, unicode_icon)


PREVIEW_LINES = 12


def render_error(console: Console, message: str):
    panel = Panel(
        f"[{ERROR}]{escape(message)}[/{ERROR}]",
        title=f"[bold {ERROR}]Error[/bold {ERROR}]",
        title_align="left",
        border_style=ERROR,
        padding=(0, 2),
    )
    console.print()
    console.print(panel)


def _tool_detail(name: str, args: Dict[str, Any]) -> str:
    match name:
        case "execute_command":
            detail = str(args.get("command", ""))
            if args.get("requires_approval") is True:
                detail += "  (approval required)"
            return detail
        case "search_replace":
            ops = args.get("patch_operations")
            count = len(ops) if isinstance(ops, list) else 0
            return f"{args.get('filePath', '')} ({count} ops)"
        case _:
            return ""


def render_tool_call(console: Console, name: str, args: Dict[str, Any],
                     index: Optional[int] = None, total: Optional[int] = None):
    icons = {"execute_command": "$", "search_replace": get_icon("✎")}
    icon = icons.get(name, get_icon("·"))

    progress = ""
    if total and total > 1:
        progress = f"[{DIM}]{index}/{total}[/{DIM}] "

    detail = escape(_tool_detail(name, args))
    console.print(f"\n  {progress}[{ACCENT}]{icon}[/{ACCENT}] [bold {TEXT}]{escape(name)}[/bold {TEXT}] [{DIM}]{detail}[/{DIM}]")


def render_result(console: Console, content: str, *, is_error: bool, elapsed: float = 0.0):
    time_str = f" [{SEPARATOR}]({elapsed:.1f}s)[/{SEPARATOR}]" if elapsed >= 0.1 else ""
    lines = content.splitlines() or [""]
    shown = lines[:PREVIEW_LINES]

    if is_error:
        console.print(f"     [{ERROR}]{get_icon('✗')}[/{ERROR}]{time_str}")
        for line in shown:
            console.print(f"     {line}", style=ERROR, markup=False, highlight=False)
    else:
        console.print(f"     [{SUCCESS}]{get_icon('✓')}[/{SUCCESS}]{time_str}")
        for line in shown:
            console.print(f"     {line}", style=DIM, markup=False, highlight=False)
    if len(lines) > PREVIEW_LINES:
        console.print(f"     [{DIM}]... ({len(lines) - PREVIEW_LINES} more lines)[/{DIM}]")


def render_turn_stats(console: Console, total_tokens: Optional[int], *,
                      context_window: Optional[int] = None,
                      timings: Optional[Dict[str, Any]] = None,
                      estimated: bool = False):
    """Print the per-turn usage line: tokens, context share and throughput."""
    if total_tokens is None and not timings:
        return
    parts = []
    if total_tokens is not None:
        marker = "~" if estimated else ""
        text = f"Total Tokens: {marker}{total_tokens}"
        if context_window:
            percent = total_tokens / context_window * 100
            text += f" / {context_window} ({percent:.2f}%)"
        parts.append(text)
    if timings:
        prompt_pps = timings.get("prompt_per_second")
        predicted_pps = timings.get("predicted_per_second")
        if isinstance(prompt_pps, (int, float)):
            parts.append(f"Prompt PPS: {prompt_pps:.2f}")
        if isinstance(predicted_pps, (int, float)):
            parts.append(f"Predicted PPS: {predicted_pps:.2f}")
    console.print(" | ".join(parts), style=DIM, markup=False, highlight=False)


def render_history(console: Console, messages: list, token_estimate: Optional[int] = None):
    if not messages:
        console.print(f"  [{DIM}]Chat history is empty.[/{DIM}]")
        return
    table = Table(border_style=BORDER, show_lines=False, padding=(0, 1))
    table.add_column("#", style=DIM, justify="right")
    table.add_column("Role", style=f"bold {ACCENT}")
    table.add_column("Content", style=TEXT, overflow="fold")
    for index, msg in enumerate(messages, 1):
        content = (msg.get("content") or "").strip()
        if len(content) > 200:
            content = content[:197] + "..."
        calls = msg.get("tool_calls") or []
        if calls:
            names = ", ".join(call["function"]["name"] for call in calls)
            content = f"{content}\n→ {names}" if content else f"→ {names}"
        role = msg["role"].upper()
        if msg.get("tool_call_id"):
            role += f" ({msg['tool_call_id']})"
        table.add_row(str(index), escape(role), escape(content))
    console.print(table)
    if token_estimate is not None:
        console.print(f"  [{DIM}]~{token_estimate} tokens[/{DIM}]")


def confirm_tool(console: Console, tool_name: str, arguments: dict) -> str:
    """Show what is about to run and prompt. Returns 'yes', 'always', or 'no'."""
    try:
        if tool_name == "execute_command":
            cmd = str(arguments.get("command", ""))
            console.print(f"  [{DIM}]$[/{DIM}] {escape(cmd)}", highlight=False)

        ans = console.input(
            f"  [{WARN}]?[/{WARN}] "
            f"[bold {TEXT}](y)[/bold {TEXT}][{MUTED}]es[/{MUTED}] / "
            f"[bold {TEXT}](n)[/bold {TEXT}][{MUTED}]o[/{MUTED}] / "
            f"[bold {TEXT}](a)[/bold {TEXT}][{MUTED}]lways[/{MUTED}]: "
        ).strip().lower()
        if ans in ("a", "always"):
            return "always"
        if ans in ("y", "yes"):
            return "yes"
        return "no"
    except (KeyboardInterrupt, EOFError):
        return "no"
