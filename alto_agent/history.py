"""Conversation history owned by the conversation loop."""

import copy
from typing import Any, Dict, List, Optional, Sequence

from .stream import ToolCall

Message = Dict[str, Any]


class ConversationHistory:
    """Ordered wire messages. The first message is always the system preamble.

    The preamble is only ever replaced wholesale (``reset``/``set_system``),
    never edited in place.
    """

    def __init__(self, system_prompt: str):
        self._messages: List[Message] = [self._system(system_prompt)]

    @staticmethod
    def _system(text: str) -> Message:
        return {"role": "system", "content": text}

    @property
    def system_prompt(self) -> str:
        return self._messages[0]["content"]

    @property
    def messages(self) -> List[Message]:
        """Messages after the preamble (read-only copy)."""
        return copy.deepcopy(self._messages[1:])

    def __len__(self) -> int:
        return len(self._messages)

    def reset(self, system_prompt: Optional[str] = None) -> None:
        """Drop every message; install ``system_prompt`` or keep the current one."""
        text = self.system_prompt if system_prompt is None else system_prompt
        self._messages = [self._system(text)]

    def set_system(self, system_prompt: str) -> None:
        self._messages[0] = self._system(system_prompt)

    def append_user(self, content: str) -> None:
        self._messages.append({"role": "user", "content": content})

    def append_assistant(self, content: str, tool_calls: Sequence[ToolCall] = ()) -> None:
        msg: Message = {"role": "assistant", "content": content}
        if tool_calls:
            msg["tool_calls"] = [call.to_wire() for call in tool_calls]
        self._messages.append(msg)

    def append_tool_result(self, tool_call_id: str, content: str) -> None:
        self._messages.append({"role": "tool", "tool_call_id": tool_call_id, "content": content})

    def to_wire(self) -> List[Message]:
        """Snapshot for a request body, so later appends never alias it."""
        return copy.deepcopy(self._messages)
