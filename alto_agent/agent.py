"""Conversation loop: one user message in, one or more streamed turns out."""

import random
from contextlib import closing
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional

from rich.console import Console
from rich.status import Status

from .errors import ProtocolError, ToolArgumentError, TransportError
from .history import ConversationHistory
from .llm import EndpointClient
from .logger import get_logger
from .rendering import confirm_tool, render_error, render_result, render_tool_call, render_turn_stats
from .stream import DeltaMerger, ToolCall, TurnResult
from .stream_renderer import StreamRenderer
from .theme import ACCENT, DIM, SEPARATOR, WARN
from .tokenizer import estimate_history_tokens
from .tools import ResultKind, ToolRegistry

_log = get_logger(__name__)

__all__ = ["Agent", "RoundResult", "RoundStatus"]

SPINNER_MESSAGES = (
    "Alto is processing your prompt...",
    "Alto is analyzing the prompt...",
    "Alto is understanding your request...",
    "Alto is interpreting the prompt...",
)


class RoundStatus(str, Enum):
    COMPLETED = "completed"
    DENIED = "denied"
    UNKNOWN_TOOL = "unknown_tool"
    TOOL_ERROR = "tool_error"
    TRANSPORT_ERROR = "transport_error"
    INTERRUPTED = "interrupted"
    MAX_ITERATIONS = "max_iterations"


_ABORT_STATUS = {
    ResultKind.DENIED: RoundStatus.DENIED,
    ResultKind.UNKNOWN: RoundStatus.UNKNOWN_TOOL,
    ResultKind.ERROR: RoundStatus.TOOL_ERROR,
}


@dataclass
class RoundResult:
    content: str
    status: RoundStatus
    turns: int = 0

    @property
    def completed(self) -> bool:
        return self.status is RoundStatus.COMPLETED


class Agent:
    """Drives a round: stream a turn, run its tool calls in order, repeat.

    The history object is owned here; every turn sends a snapshot of it and
    the loop is the only writer. A round ends when a turn has no tool calls,
    or aborts after a denied, unknown or (with ``stop_on_tool_error``) failed
    tool call. Transport failures and Ctrl-C end the round without adding an
    assistant message.
    """

    def __init__(self, client: EndpointClient, tools: ToolRegistry, history: ConversationHistory,
                 *, console: Optional[Console] = None, auto_confirm: bool = False,
                 max_iterations: int = 30, reasoning_display: str = "full",
                 stop_on_tool_error: bool = True, show_stats: bool = True,
                 context_window: Optional[int] = None):
        self.client = client
        self.tools = tools
        self.history = history
        self.console = console if console is not None else Console()
        self.auto_confirm = auto_confirm
        self.max_iterations = max_iterations
        self.reasoning_display = reasoning_display
        self.stop_on_tool_error = stop_on_tool_error
        self.show_stats = show_stats
        self.context_window = context_window
        self.total_tokens = 0

    def chat(self, user_message: str) -> RoundResult:
        self.history.append_user(user_message)

        for turn in range(1, self.max_iterations + 1):
            try:
                result = self._stream_turn()
            except (TransportError, ProtocolError) as e:
                _log.error("Request failed: %s", e)
                render_error(self.console, f"{e}\nThe request was not completed. Please try again.")
                return RoundResult(str(e), RoundStatus.TRANSPORT_ERROR, turn)
            except KeyboardInterrupt:
                _log.info("Turn interrupted by user")
                self.console.print(f"\n  [{WARN}]⚠ Stream interrupted by user[/{WARN}]")
                return RoundResult("", RoundStatus.INTERRUPTED, turn)

            if result.truncated:
                self.console.print(f"  [{DIM}](stream ended without a finish signal)[/{DIM}]")
            self.history.append_assistant(result.content, result.tool_calls)
            self._report_usage(result)

            if not result.has_tool_calls():
                return RoundResult(result.content, RoundStatus.COMPLETED, turn)

            aborted = self._run_tool_calls(result.tool_calls)
            if aborted is not None:
                return RoundResult(result.content, aborted, turn)

        msg = f"⚠ Reached max iterations ({self.max_iterations})."
        _log.warning("Round stopped after %d turns", self.max_iterations)
        self.console.print(f"\n[{WARN}]{msg}[/{WARN}]")
        return RoundResult(msg, RoundStatus.MAX_ITERATIONS, self.max_iterations)

    # ── Streaming ──────────────────────────────

    def _stream_turn(self) -> TurnResult:
        status = Status(f"[{DIM}]{random.choice(SPINNER_MESSAGES)}[/{DIM}]",
                        console=self.console, spinner="dots", spinner_style=ACCENT)
        status.start()
        try:
            records = self.client.stream_chat(self.history.to_wire(), self.tools.schemas)
            with closing(records), \
                    StreamRenderer(self.console, reasoning_display=self.reasoning_display) as renderer:
                merger = DeltaMerger(renderer)
                return merger.consume(self._until_first_record(records, status))
        finally:
            status.stop()

    @staticmethod
    def _until_first_record(records: Iterable[Dict[str, Any]], status: Status) -> Iterator[Dict[str, Any]]:
        """Pass records through, stopping the spinner before the first one renders."""
        for record in records:
            status.stop()
            yield record

    def _report_usage(self, result: TurnResult):
        usage = result.usage or {}
        reported = usage.get("total_tokens")
        if isinstance(reported, int):
            self.total_tokens = reported
        if not self.show_stats:
            return
        if isinstance(reported, int):
            render_turn_stats(self.console, reported, context_window=self.context_window,
                              timings=result.timings)
        else:
            estimate = estimate_history_tokens(self.history.to_wire(), self.client.model)
            render_turn_stats(self.console, estimate, context_window=self.context_window,
                              timings=result.timings, estimated=True)

    # ── Tool execution ─────────────────────────

    def _run_tool_calls(self, tool_calls: List[ToolCall]) -> Optional[RoundStatus]:
        """Dispatch calls in order. Returns the abort status, or None to keep going."""
        total = len(tool_calls)
        for i, call in enumerate(tool_calls, 1):
            if i > 1:
                self.console.print(f"     [{SEPARATOR}]·[/{SEPARATOR}]")
            try:
                preview_args = call.parse_arguments()
            except ToolArgumentError:
                preview_args = {}
            render_tool_call(self.console, call.name, preview_args, index=i, total=total)

            result = self.tools.dispatch(call, approve=self._approve)
            render_result(self.console, result.content, is_error=result.is_error, elapsed=result.elapsed)
            self.history.append_tool_result(call.id, result.content)

            if result.aborts_round or (result.is_error and self.stop_on_tool_error):
                remaining = total - i
                if remaining:
                    _log.info("Skipping %d remaining tool call(s) after %s", remaining, result.kind.value)
                return _ABORT_STATUS[result.kind]
        return None

    def _approve(self, tool_name: str, arguments: dict) -> bool:
        if self.auto_confirm:
            return True
        answer = confirm_tool(self.console, tool_name, arguments)
        if answer == "always":
            self.auto_confirm = True
        return answer in ("yes", "always")

    # ── Session ────────────────────────────────

    def reset(self, system_prompt: Optional[str] = None):
        self.history.reset(system_prompt)
        self.total_tokens = 0
