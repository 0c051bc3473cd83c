"""Tests for delta merging and stream event decoding."""

import pytest

from alto_agent.errors import ProtocolError, ToolArgumentError
from alto_agent.stream import (
    ContentDelta,
    DeltaMerger,
    FinishSignal,
    ThinkingDelta,
    ToolCall,
    ToolCallFragment,
    UsageUpdate,
    decode_record,
)


def _delta(index=0, finish=None, **delta):
    choice = {"index": index, "delta": delta}
    if finish:
        choice["finish_reason"] = finish
    return {"choices": [choice]}


def _frag(slot, args="", call_id=None, name=None):
    raw = {"index": slot, "function": {"arguments": args}}
    if call_id:
        raw["id"] = call_id
    if name:
        raw["function"]["name"] = name
    return _delta(tool_calls=[raw])


class RecordingSink:
    def __init__(self):
        self.calls = []

    def write_thinking(self, chunk):
        self.calls.append(("thinking", chunk))

    def write_tool_call(self, chunk, name=None):
        self.calls.append(("tool", chunk, name))

    def write_content(self, chunk):
        self.calls.append(("content", chunk))


class TestDecodeRecord:
    def test_content(self):
        assert decode_record(_delta(content="hi")) == [ContentDelta("hi")]

    @pytest.mark.parametrize("field", ["reasoning_content", "reasoning"])
    def test_thinking_dialects(self, field):
        assert decode_record(_delta(**{field: "hmm"})) == [ThinkingDelta("hmm")]

    def test_thinking_rendered_before_content(self):
        events = decode_record(_delta(reasoning="a", content="b"))
        assert events == [ThinkingDelta("a"), ContentDelta("b")]

    def test_usage_and_timings(self):
        record = {"choices": [], "usage": {"total_tokens": 9},
                  "timings": {"predicted_per_second": 12.5}}
        assert decode_record(record) == [
            UsageUpdate(usage={"total_tokens": 9}, timings={"predicted_per_second": 12.5})
        ]

    def test_finish_only_on_choice_zero(self):
        record = {"choices": [
            {"index": 1, "delta": {}, "finish_reason": "stop"},
            {"index": 0, "delta": {"content": "x"}},
        ]}
        assert FinishSignal("stop") not in decode_record(record)
        assert decode_record(_delta(finish="tool_calls")) == [FinishSignal("tool_calls")]

    def test_fragment_without_slot_ignored(self):
        record = _delta(tool_calls=[{"function": {"arguments": "{}"}}])
        assert decode_record(record) == []

    def test_tool_fragment(self):
        events = decode_record(_frag(2, '{"a"', call_id="c1", name="execute_command"))
        assert events == [ToolCallFragment(slot=2, id="c1", name="execute_command", arguments='{"a"')]

    @pytest.mark.parametrize("record", [
        {"choices": {"index": 0}},
        {"choices": ["oops"]},
        {"choices": [{"index": 0, "delta": "text"}]},
        {"choices": [{"index": 0, "delta": {"content": 5}}]},
        {"choices": [{"index": 0, "delta": {"tool_calls": {"index": 0}}}]},
        {"choices": [{"index": 0, "delta": {"tool_calls": [{"index": "0"}]}}]},
    ])
    def test_wrong_shapes_raise(self, record):
        with pytest.raises(ProtocolError):
            decode_record(record)


class TestDeltaMerger:
    def test_interleaved_slots(self):
        merger = DeltaMerger()
        for record in [
            _frag(1, '{"command": ', call_id="b", name="execute_command"),
            _frag(0, '{"filePath": "x.py", ', call_id="a", name="search_replace"),
            _frag(1, '"ls", "requires_approval": false}'),
            _frag(0, '"patch_operations": []}'),
            _delta(finish="tool_calls"),
        ]:
            merger.feed(record)

        result = merger.result()
        assert [call.id for call in result.tool_calls] == ["a", "b"]
        assert result.tool_calls[0].parse_arguments() == {"filePath": "x.py", "patch_operations": []}
        assert result.tool_calls[1].parse_arguments() == {"command": "ls", "requires_approval": False}
        assert result.finish_reason == "tool_calls"
        assert not result.truncated

    def test_sink_sees_every_fragment(self):
        sink = RecordingSink()
        merger = DeltaMerger(sink)
        merger.feed(_frag(0, '{"co', call_id="a", name="execute_command"))
        merger.feed(_frag(0, 'mmand": "ls"}'))
        assert sink.calls == [
            ("tool", '{"co', "execute_command"),
            ("tool", 'mmand": "ls"}', None),
        ]

    def test_content_and_thinking_accumulate(self):
        sink = RecordingSink()
        merger = DeltaMerger(sink)
        merger.feed(_delta(reasoning_content="plan "))
        merger.feed(_delta(reasoning="more"))
        merger.feed(_delta(content="Hello "))
        merger.feed(_delta(content="world"))
        result = merger.result()
        assert result.thinking == "plan more"
        assert result.content == "Hello world"
        assert sink.calls == [
            ("thinking", "plan "), ("thinking", "more"),
            ("content", "Hello "), ("content", "world"),
        ]

    def test_both_fields_content_wins_for_history(self):
        sink = RecordingSink()
        merger = DeltaMerger(sink)
        merger.feed(_delta(reasoning="why", content="what"))
        assert merger.result().content == "what"
        assert ("thinking", "why") in sink.calls

    def test_consume_stops_at_finish(self):
        seen = []

        def records():
            for record in [_delta(content="a"), _delta(finish="stop"), _delta(content="late")]:
                seen.append(record)
                yield record

        result = DeltaMerger().consume(records())
        assert result.content == "a"
        assert len(seen) == 2

    def test_truncated_turn(self):
        result = DeltaMerger().consume(iter([_delta(content="part")]))
        assert result.truncated
        assert result.content == "part"
        assert result.tool_calls == []

    def test_usage_kept_after_finish_record(self):
        record = _delta(finish="stop")
        record["usage"] = {"total_tokens": 77}
        record["timings"] = {"prompt_per_second": 100.0}
        result = DeltaMerger().consume(iter([_delta(content="x"), record]))
        assert result.usage == {"total_tokens": 77}
        assert result.timings == {"prompt_per_second": 100.0}

    def test_missing_id_gets_slot_name(self):
        merger = DeltaMerger()
        merger.feed(_frag(3, "{}", name="execute_command"))
        assert merger.result().tool_calls[0].id == "call_3"

    def test_late_identity_fills_blanks(self):
        merger = DeltaMerger()
        merger.feed(_frag(0, "{"))
        merger.feed(_frag(0, "}", call_id="late", name="search_replace"))
        call = merger.result().tool_calls[0]
        assert (call.id, call.name, call.arguments) == ("late", "search_replace", "{}")


class TestToolCall:
    def test_empty_arguments_parse_to_empty_object(self):
        assert ToolCall("1", "x", "  ").parse_arguments() == {}

    def test_invalid_json(self):
        with pytest.raises(ToolArgumentError):
            ToolCall("1", "x", '{"a": ').parse_arguments()

    def test_non_object(self):
        with pytest.raises(ToolArgumentError):
            ToolCall("1", "x", "[1]").parse_arguments()

    def test_to_wire(self):
        assert ToolCall("id1", "execute_command", "{}").to_wire() == {
            "id": "id1",
            "type": "function",
            "function": {"name": "execute_command", "arguments": "{}"},
        }
