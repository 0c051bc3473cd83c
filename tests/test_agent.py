"""Conversation loop tests: multi-turn rounds, approval and abort policy."""

import json
from unittest.mock import MagicMock

import pytest

import alto_agent.agent as agent_module
from alto_agent.agent import Agent, RoundStatus
from alto_agent.errors import TransportError
from alto_agent.history import ConversationHistory
from alto_agent.tools import ToolRegistry


class FakeStatus:
    instances = []

    def __init__(self, *args, **kwargs):
        self.started = 0
        self.stopped = 0
        FakeStatus.instances.append(self)

    def start(self):
        self.started += 1

    def stop(self):
        self.stopped += 1


class FakeClient:
    """Replays one scripted turn per request and records every request body."""

    model = "test-model"

    def __init__(self, *turns):
        self.turns = list(turns)
        self.requests = []

    def stream_chat(self, messages, tools=None):
        self.requests.append(messages)
        turn = self.turns.pop(0)
        if isinstance(turn, BaseException):
            raise turn
        yield from turn


def _text_turn(text, usage=None, timings=None):
    final = {"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]}
    if usage:
        final["usage"] = usage
    if timings:
        final["timings"] = timings
    return [{"choices": [{"index": 0, "delta": {"content": text}}]}, final]


def _tool_turn(*calls):
    """``calls`` are (name, args) pairs; argument JSON is split in two fragments."""
    records = []
    for slot, (name, args) in enumerate(calls):
        raw = json.dumps(args)
        half = len(raw) // 2
        records.append({"choices": [{"index": 0, "delta": {"tool_calls": [
            {"index": slot, "id": f"call_{slot}", "type": "function",
             "function": {"name": name, "arguments": raw[:half]}}]}}]})
        records.append({"choices": [{"index": 0, "delta": {"tool_calls": [
            {"index": slot, "function": {"arguments": raw[half:]}}]}}]})
    records.append({"choices": [{"index": 0, "delta": {}, "finish_reason": "tool_calls"}]})
    return records


def _cmd(command, approval=False):
    return ("execute_command", {"command": command, "requires_approval": approval})


@pytest.fixture(autouse=True)
def fake_status(monkeypatch):
    FakeStatus.instances = []
    monkeypatch.setattr(agent_module, "Status", FakeStatus)


def _build_agent(client, tmp_path, console, **kwargs):
    params = {"show_stats": False}
    params.update(kwargs)
    tools = ToolRegistry(project_root=str(tmp_path), command_timeout=10)
    return Agent(client, tools, ConversationHistory("You are a test."), console=console, **params)


def _roles(agent):
    return [msg["role"] for msg in agent.history.to_wire()]


class TestRounds:
    def test_scenario_a_tool_then_answer(self, tmp_path, mock_console):
        (tmp_path / "sample.txt").write_text("x", encoding="utf-8")
        client = FakeClient(_tool_turn(_cmd("ls")), _text_turn("Here are the files."))
        agent = _build_agent(client, tmp_path, mock_console)

        result = agent.chat("list files")

        assert result.status is RoundStatus.COMPLETED
        assert result.content == "Here are the files."
        assert result.turns == 2
        mock_console.input.assert_not_called()
        assert _roles(agent) == ["system", "user", "assistant", "tool", "assistant"]

        messages = agent.history.to_wire()
        assistant = messages[2]
        assert assistant["tool_calls"][0]["function"]["name"] == "execute_command"
        assert json.loads(assistant["tool_calls"][0]["function"]["arguments"]) == {
            "command": "ls", "requires_approval": False,
        }
        assert messages[3]["tool_call_id"] == "call_0"
        assert "sample.txt" in messages[3]["content"]
        assert "tool_calls" not in messages[4]

        assert len(client.requests) == 2
        assert [m["role"] for m in client.requests[0]] == ["system", "user"]
        assert client.requests[1][-1]["role"] == "tool"

    def test_scenario_b_denied(self, tmp_path, mock_console):
        client = FakeClient(_tool_turn(_cmd("rm -rf /", approval=True)))
        agent = _build_agent(client, tmp_path, mock_console)
        agent.tools.shell.execute = MagicMock(return_value="should not run")

        result = agent.chat("clean up")

        assert result.status is RoundStatus.DENIED
        agent.tools.shell.execute.assert_not_called()
        mock_console.input.assert_called_once()
        tool_msg = agent.history.to_wire()[-1]
        assert tool_msg == {
            "role": "tool",
            "tool_call_id": "call_0",
            "content": "ERROR: User denied execution of command: rm -rf /",
        }
        assert len(client.requests) == 1

    def test_always_enables_auto_confirm(self, tmp_path, mock_console):
        mock_console.input.return_value = "a"
        client = FakeClient(
            _tool_turn(_cmd("echo one", approval=True)),
            _tool_turn(_cmd("echo two", approval=True)),
            _text_turn("done"),
        )
        agent = _build_agent(client, tmp_path, mock_console)

        result = agent.chat("go")

        assert result.completed
        assert agent.auto_confirm is True
        assert mock_console.input.call_count == 1

    def test_tool_calls_run_in_order(self, tmp_path, mock_console):
        client = FakeClient(
            _tool_turn(_cmd("echo first > log.txt"), _cmd("echo second >> log.txt")),
            _text_turn("ok"),
        )
        agent = _build_agent(client, tmp_path, mock_console)

        agent.chat("write")

        assert (tmp_path / "log.txt").read_text() == "first\nsecond\n"
        tool_ids = [m["tool_call_id"] for m in agent.history.to_wire() if m["role"] == "tool"]
        assert tool_ids == ["call_0", "call_1"]

    def test_unknown_tool_skips_the_rest(self, tmp_path, mock_console):
        client = FakeClient(_tool_turn(("browse", {"url": "x"}), _cmd("touch never")))
        agent = _build_agent(client, tmp_path, mock_console)

        result = agent.chat("go")

        assert result.status is RoundStatus.UNKNOWN_TOOL
        assert not (tmp_path / "never").exists()
        tool_msgs = [m for m in agent.history.to_wire() if m["role"] == "tool"]
        assert len(tool_msgs) == 1
        assert tool_msgs[0]["content"].startswith("ERROR: Unknown tool: browse")

    def test_tool_error_stops_round_by_default(self, tmp_path, mock_console):
        client = FakeClient(_tool_turn(_cmd("exit 1")), _text_turn("unused"))
        agent = _build_agent(client, tmp_path, mock_console)

        result = agent.chat("go")

        assert result.status is RoundStatus.TOOL_ERROR
        assert len(client.requests) == 1
        assert agent.history.to_wire()[-1]["content"].startswith("ERROR: Command failed")

    def test_tool_error_can_continue(self, tmp_path, mock_console):
        client = FakeClient(_tool_turn(_cmd("exit 1")), _text_turn("recovered"))
        agent = _build_agent(client, tmp_path, mock_console, stop_on_tool_error=False)

        result = agent.chat("go")

        assert result.status is RoundStatus.COMPLETED
        assert result.content == "recovered"
        assert len(client.requests) == 2

    def test_max_iterations(self, tmp_path, mock_console):
        client = FakeClient(_tool_turn(_cmd("true")), _tool_turn(_cmd("true")))
        agent = _build_agent(client, tmp_path, mock_console, max_iterations=2)

        result = agent.chat("loop")

        assert result.status is RoundStatus.MAX_ITERATIONS
        assert len(client.requests) == 2


class TestFailures:
    def test_transport_error_keeps_history_clean(self, tmp_path, mock_console):
        client = FakeClient(TransportError("Cannot connect to http://localhost:8080/v1"))
        agent = _build_agent(client, tmp_path, mock_console)

        result = agent.chat("hi")

        assert result.status is RoundStatus.TRANSPORT_ERROR
        assert _roles(agent) == ["system", "user"]
        assert FakeStatus.instances[0].stopped >= 1

    def test_error_text_with_brackets_is_shown_literally(self, tmp_path, text_console):
        error = TransportError('HTTP error 400: {"error": "bad token [/INST]"}', status=400)
        agent = _build_agent(FakeClient(error), tmp_path, text_console)

        result = agent.chat("hi")

        assert result.status is RoundStatus.TRANSPORT_ERROR
        assert "bad token [/INST]" in text_console.file.getvalue()

    def test_malformed_record_shape_ends_round(self, tmp_path, mock_console):
        client = FakeClient([{"choices": "broken"}])
        agent = _build_agent(client, tmp_path, mock_console)

        result = agent.chat("hi")

        assert result.status is RoundStatus.TRANSPORT_ERROR
        assert _roles(agent) == ["system", "user"]

    def test_interrupt_during_stream(self, tmp_path, text_console):
        def interrupted():
            yield {"choices": [{"index": 0, "delta": {"reasoning": "thinking..."}}]}
            raise KeyboardInterrupt

        client = FakeClient(interrupted())
        agent = _build_agent(client, tmp_path, text_console)

        result = agent.chat("hi")

        out = text_console.file.getvalue()
        assert result.status is RoundStatus.INTERRUPTED
        assert _roles(agent) == ["system", "user"]
        assert "THINKING: thinking...\n" in out
        assert "Stream interrupted by user" in out

    def test_truncated_turn_is_flagged(self, tmp_path, text_console):
        client = FakeClient([{"choices": [{"index": 0, "delta": {"content": "partial"}}]}])
        agent = _build_agent(client, tmp_path, text_console)

        result = agent.chat("hi")

        assert result.status is RoundStatus.COMPLETED
        assert result.content == "partial"
        assert "(stream ended without a finish signal)" in text_console.file.getvalue()


class TestStats:
    def test_reported_usage(self, tmp_path, text_console):
        client = FakeClient(_text_turn(
            "Hello",
            usage={"total_tokens": 120},
            timings={"prompt_per_second": 50, "predicted_per_second": 20.0},
        ))
        agent = _build_agent(client, tmp_path, text_console, show_stats=True, context_window=1000)

        agent.chat("hi")

        out = text_console.file.getvalue()
        assert "Hello" in out
        assert "Total Tokens: 120 / 1000 (12.00%) | Prompt PPS: 50.00 | Predicted PPS: 20.00" in out
        assert agent.total_tokens == 120

    def test_estimated_usage(self, tmp_path, text_console, monkeypatch):
        monkeypatch.setattr(agent_module, "estimate_history_tokens", lambda messages, model: 99)
        client = FakeClient(_text_turn("Hello"))
        agent = _build_agent(client, tmp_path, text_console, show_stats=True)

        agent.chat("hi")

        assert "Total Tokens: ~99" in text_console.file.getvalue()

    def test_reset(self, tmp_path, mock_console):
        client = FakeClient(_text_turn("x", usage={"total_tokens": 5}))
        agent = _build_agent(client, tmp_path, mock_console)
        agent.chat("hi")

        agent.reset()

        assert _roles(agent) == ["system"]
        assert agent.total_tokens == 0
