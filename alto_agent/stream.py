"""Delta merging: folds streamed chat-completion records into one assistant turn.

Raw records are decoded once, at this boundary, into a small set of tagged
events. Everything downstream (merger state, renderer, agent loop) works with
those events and never inspects optional JSON fields itself.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

from .errors import ProtocolError, ToolArgumentError
from .logger import get_logger

_log = get_logger(__name__)

__all__ = [
    "ContentDelta", "ThinkingDelta", "ToolCallFragment", "FinishSignal", "UsageUpdate",
    "ToolCall", "StreamState", "TurnResult", "DeltaMerger", "decode_record",
    "THINKING_FIELDS",
]

# Endpoint dialects disagree on the name of the reasoning field.
THINKING_FIELDS = ("reasoning_content", "reasoning")


# ── Tagged stream events ──────────────────────────


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class ThinkingDelta:
    text: str


@dataclass(frozen=True)
class ToolCallFragment:
    slot: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


@dataclass(frozen=True)
class FinishSignal:
    reason: str


@dataclass(frozen=True)
class UsageUpdate:
    usage: Optional[Dict[str, Any]] = None
    timings: Optional[Dict[str, Any]] = None


StreamEvent = Union[ContentDelta, ThinkingDelta, ToolCallFragment, FinishSignal, UsageUpdate]


def _optional_str(value: Any, what: str) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    raise ProtocolError(f"{what} must be a string, got {type(value).__name__}")


def _decode_tool_fragment(raw: Any) -> Optional[ToolCallFragment]:
    if not isinstance(raw, dict):
        raise ProtocolError("tool_calls entries must be objects")
    slot = raw.get("index")
    if slot is None:
        _log.debug("Ignoring tool-call fragment without a slot index: %r", raw)
        return None
    if not isinstance(slot, int) or isinstance(slot, bool):
        raise ProtocolError(f"tool-call slot index must be an integer, got {slot!r}")
    function = raw.get("function") or {}
    if not isinstance(function, dict):
        raise ProtocolError("tool-call function must be an object")
    return ToolCallFragment(
        slot=slot,
        id=_optional_str(raw.get("id"), "tool-call id"),
        name=_optional_str(function.get("name"), "tool-call name"),
        arguments=_optional_str(function.get("arguments"), "tool-call arguments") or "",
    )


def decode_record(record: Dict[str, Any]) -> List[StreamEvent]:
    """Translate one decoded stream record into tagged events, in render order."""
    events: List[StreamEvent] = []

    usage = record.get("usage")
    timings = record.get("timings")
    if isinstance(usage, dict) or isinstance(timings, dict):
        events.append(UsageUpdate(
            usage=usage if isinstance(usage, dict) else None,
            timings=timings if isinstance(timings, dict) else None,
        ))

    choices = record.get("choices") or []
    if not isinstance(choices, list):
        raise ProtocolError("choices must be a list")

    for choice in choices:
        if not isinstance(choice, dict):
            raise ProtocolError("choice entries must be objects")
        index = choice.get("index", 0)
        delta = choice.get("delta") or {}
        if not isinstance(delta, dict):
            raise ProtocolError("delta must be an object")

        thinking = None
        for name in THINKING_FIELDS:
            thinking = _optional_str(delta.get(name), name)
            if thinking:
                break
        if thinking:
            events.append(ThinkingDelta(thinking))

        content = _optional_str(delta.get("content"), "content")
        if content:
            events.append(ContentDelta(content))

        raw_calls = delta.get("tool_calls") or []
        if not isinstance(raw_calls, list):
            raise ProtocolError("tool_calls must be a list")
        for raw in raw_calls:
            fragment = _decode_tool_fragment(raw)
            if fragment is not None:
                events.append(fragment)

        finish = choice.get("finish_reason")
        if finish and index == 0:
            events.append(FinishSignal(str(finish)))

    return events


# ── Turn state ────────────────────────────────────


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str = ""

    def parse_arguments(self) -> Dict[str, Any]:
        """Parse the accumulated argument text. Only valid once the turn ended."""
        text = self.arguments.strip()
        if not text:
            return {}
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise ToolArgumentError(f"arguments for '{self.name}' are not valid JSON: {e}")
        if not isinstance(parsed, dict):
            raise ToolArgumentError(f"arguments for '{self.name}' must be a JSON object")
        return parsed

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class StreamState:
    content: str = ""
    thinking: str = ""
    tool_calls: Dict[int, ToolCall] = field(default_factory=dict)
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None
    timings: Optional[Dict[str, Any]] = None
    records: int = 0


@dataclass
class TurnResult:
    content: str = ""
    thinking: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None
    timings: Optional[Dict[str, Any]] = None

    @property
    def truncated(self) -> bool:
        """The transport closed before any finish signal arrived."""
        return self.finish_reason is None

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class RenderSink(Protocol):
    def write_thinking(self, chunk: str) -> None: ...
    def write_tool_call(self, chunk: str, name: Optional[str] = None) -> None: ...
    def write_content(self, chunk: str) -> None: ...


class DeltaMerger:
    """Accumulates one assistant turn and mirrors it to a renderer as it grows."""

    def __init__(self, sink: Optional[RenderSink] = None):
        self.sink = sink
        self.state = StreamState()
        self.finished = False

    def feed(self, record: Dict[str, Any]) -> bool:
        """Apply one record. Returns True once the turn has finished."""
        if self.finished:
            return True
        self.state.records += 1
        for event in decode_record(record):
            self.apply(event)
        return self.finished

    def apply(self, event: StreamEvent) -> None:
        state = self.state
        if isinstance(event, ContentDelta):
            state.content += event.text
            if self.sink:
                self.sink.write_content(event.text)
        elif isinstance(event, ThinkingDelta):
            state.thinking += event.text
            if self.sink:
                self.sink.write_thinking(event.text)
        elif isinstance(event, ToolCallFragment):
            self._merge_fragment(event)
        elif isinstance(event, UsageUpdate):
            if event.usage is not None:
                state.usage = event.usage
            if event.timings is not None:
                state.timings = event.timings
        elif isinstance(event, FinishSignal):
            state.finish_reason = event.reason
            self.finished = True

    def _merge_fragment(self, fragment: ToolCallFragment) -> None:
        calls = self.state.tool_calls
        call = calls.get(fragment.slot)
        starting = call is None
        if starting:
            call = ToolCall(id=fragment.id or "", name=fragment.name or "", arguments="")
            calls[fragment.slot] = call
        else:
            if fragment.id and not call.id:
                call.id = fragment.id
            if fragment.name and not call.name:
                call.name = fragment.name
        call.arguments += fragment.arguments
        if self.sink:
            self.sink.write_tool_call(fragment.arguments, name=call.name if starting else None)

    def consume(self, records: Iterable[Dict[str, Any]]) -> TurnResult:
        """Drain ``records`` until the turn finishes or the stream runs dry."""
        for record in records:
            if self.feed(record):
                break
        if not self.finished:
            _log.warning("Stream ended without a finish reason after %d records", self.state.records)
        return self.result()

    def result(self) -> TurnResult:
        state = self.state
        return TurnResult(
            content=state.content,
            thinking=state.thinking,
            tool_calls=[
                ToolCall(id=call.id or f"call_{slot}", name=call.name, arguments=call.arguments)
                for slot, call in sorted(state.tool_calls.items())
            ],
            finish_reason=state.finish_reason,
            usage=state.usage,
            timings=state.timings,
        )
