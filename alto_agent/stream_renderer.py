"""Streaming response rendering: plain text with thinking and tool-call modes."""

import json
from enum import Enum
from typing import Optional

from rich.console import Console
from rich.text import Text

from .rendering import get_icon
from .theme import DIM, THINKING, TOOL_CALL

__all__ = ["StreamRenderer", "Mode", "THINK_OPEN", "THINK_CLOSE", "THINKING_LABEL"]

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"
THINKING_LABEL = "THINKING: "
MAX_SUMMARY_CHARS = 120


class Mode(str, Enum):
    PLAIN = "plain"
    THINKING = "thinking"
    TOOL_CALL = "tool_call"


def _partial_marker_len(text: str, marker: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``marker``."""
    for size in range(min(len(text), len(marker) - 1), 0, -1):
        if marker.startswith(text[-size:]):
            return size
    return 0


def summarize_tool_arguments(raw: str) -> str:
    """One-line human summary of a tool-call argument buffer, or "" if unparseable."""
    try:
        args = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return ""
    if not isinstance(args, dict):
        return ""
    command = args.get("command")
    if isinstance(command, str) and command:
        line = command.strip().splitlines()[0] if command.strip() else command
        if len(line) > MAX_SUMMARY_CHARS:
            line = line[:MAX_SUMMARY_CHARS - 3] + "..."
        return f"$ {line}"
    path = args.get("filePath")
    if isinstance(path, str) and path:
        ops = args.get("patch_operations")
        count = len(ops) if isinstance(ops, list) else 0
        noun = "operation" if count == 1 else "operations"
        return f"{get_icon('✎')} {path} ({count} {noun})"
    return ""


class StreamRenderer:
    """Mirrors a streaming assistant turn to the terminal.

    Three channels feed it: thinking text, tool-call argument fragments and
    content text. At most one visual mode is active at a time; switching
    modes always closes the previous mode's framing first. Content may carry
    inline ``<think>`` tags; a tag split across chunks is held back in
    ``pending`` until it can be resolved, so a marker is never half written.

    Use as a context manager so ``flush()`` runs on every exit path.
    """

    def __init__(self, console: Console, *, reasoning_display: str = "full"):
        self.console = console
        self.show_thinking = reasoning_display != "off"
        self.mode = Mode.PLAIN
        self.pending = ""
        self._inline_thinking = False
        self._tool_buffer = ""
        self._line_open = False
        self._after_thinking = False

    def __enter__(self) -> "StreamRenderer":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.flush()
        return False

    # ── Channels ──────────────────────────────────

    def write_thinking(self, chunk: str) -> None:
        if not chunk or not self.show_thinking:
            return
        self._switch(Mode.THINKING)
        self._emit(chunk, THINKING)

    def write_tool_call(self, chunk: str, name: Optional[str] = None) -> None:
        if name is not None:
            # A new call starts: close the previous call's line first.
            self._switch(Mode.PLAIN)
            self._open_frame(Mode.TOOL_CALL, name)
            self.mode = Mode.TOOL_CALL
        elif self.mode is not Mode.TOOL_CALL:
            self._switch(Mode.TOOL_CALL)
        self._tool_buffer += chunk or ""

    def write_content(self, chunk: str) -> None:
        if not chunk:
            return
        text = self.pending + chunk
        self.pending = ""
        while text:
            marker = THINK_CLOSE if self._inline_thinking else THINK_OPEN
            index = text.find(marker)
            if index != -1:
                self._emit_content(text[:index])
                text = text[index + len(marker):]
                self._inline_thinking = not self._inline_thinking
                continue
            hold = _partial_marker_len(text, marker)
            self._emit_content(text[:len(text) - hold])
            self.pending = text[len(text) - hold:]
            break

    def flush(self) -> None:
        """Write anything held back and return the terminal to plain mode.

        Safe to call any number of times.
        """
        if self.pending:
            pending, self.pending = self.pending, ""
            self._emit_content(pending)
        self._switch(Mode.PLAIN)
        self._inline_thinking = False
        if self._line_open:
            self._raw("\n")

    # ── Mode handling ─────────────────────────────

    def _switch(self, mode: Mode) -> None:
        if mode is self.mode:
            return
        self._close_frame(self.mode)
        if self.mode is Mode.THINKING:
            self._after_thinking = True
        self._open_frame(mode)
        self.mode = mode

    def _open_frame(self, mode: Mode, name: str = "") -> None:
        if mode is Mode.PLAIN:
            return
        if self._line_open:
            self._raw("\n")
        if mode is Mode.THINKING:
            self._emit(THINKING_LABEL, THINKING)
        else:
            self._tool_buffer = ""
            self._emit(f"  {get_icon('▸')} {name or 'tool'}", f"bold {TOOL_CALL}")

    def _close_frame(self, mode: Mode) -> None:
        if mode is Mode.THINKING:
            self._raw("\n")
        elif mode is Mode.TOOL_CALL:
            summary = summarize_tool_arguments(self._tool_buffer)
            self._tool_buffer = ""
            if summary:
                self._emit(f"  {summary}", DIM)
            self._raw("\n")

    # ── Output ────────────────────────────────────

    def _emit_content(self, text: str) -> None:
        if not text:
            return
        if self._inline_thinking:
            if self.show_thinking:
                self.write_thinking(text)
            return
        self._switch(Mode.PLAIN)
        if self._after_thinking:
            text = text.lstrip("\n")
            if not text:
                return
            self._after_thinking = False
        self._raw(text)

    def _emit(self, text: str, style: str) -> None:
        if not text:
            return
        self.console.print(Text(text, style=style), end="", highlight=False, soft_wrap=True)
        self._line_open = not text.endswith("\n")

    def _raw(self, text: str) -> None:
        if not text:
            return
        self.console.print(text, end="", markup=False, highlight=False, soft_wrap=True)
        self._line_open = not text.endswith("\n")
