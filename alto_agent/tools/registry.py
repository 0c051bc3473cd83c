"""Tool registry: dict-based dispatch from a completed tool call to a result message."""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..errors import PatchError, ToolArgumentError, ToolError
from ..logger import get_logger
from ..stream import ToolCall
from .patch import PatchEngine
from .schemas import EXECUTE_COMMAND, EXECUTE_COMMAND_SCHEMA, SEARCH_REPLACE, SEARCH_REPLACE_SCHEMA
from .shell import ShellExecutor

_log = get_logger(__name__)

ERROR_MARKER = "ERROR:"

# (tool name, parsed arguments) -> approved?
Approver = Callable[[str, Dict[str, Any]], bool]


class ResultKind(str, Enum):
    OK = "ok"
    ERROR = "error"
    DENIED = "denied"
    UNKNOWN = "unknown"


@dataclass
class ToolResult:
    tool_call_id: str
    name: str
    content: str
    kind: ResultKind = ResultKind.OK
    elapsed: float = 0.0

    @property
    def is_error(self) -> bool:
        return self.kind is not ResultKind.OK

    @property
    def aborts_round(self) -> bool:
        """Denials and unknown tools end the round whatever the error policy."""
        return self.kind in (ResultKind.DENIED, ResultKind.UNKNOWN)


class _ToolEntry:
    """Single tool registration: handler + schema + argument checks."""
    __slots__ = ("handler", "schema", "validate", "needs_approval")

    def __init__(self, handler: Callable, schema: dict,
                 validate: Callable[[Dict[str, Any]], None],
                 needs_approval: Callable[[Dict[str, Any]], bool] = lambda args: False):
        self.handler = handler
        self.schema = schema
        self.validate = validate
        self.needs_approval = needs_approval


def _check_command_args(args: Dict[str, Any]) -> None:
    command = args.get("command")
    if not isinstance(command, str) or not command.strip():
        raise ToolArgumentError('"command" must be a non-empty string')
    if not isinstance(args.get("requires_approval"), bool):
        raise ToolArgumentError('"requires_approval" must be a boolean (true or false)')


def _check_patch_args(args: Dict[str, Any]) -> None:
    if not isinstance(args.get("filePath"), str):
        raise ToolArgumentError('"filePath" must be a string')
    if "patch_operations" not in args:
        raise ToolArgumentError('"patch_operations" is required')


class ToolRegistry:
    def __init__(self, project_root: str, command_timeout: int = 120):
        self.shell = ShellExecutor(project_root, command_timeout)
        self.patcher = PatchEngine(project_root)
        self._tools: Dict[str, _ToolEntry] = {}
        self._register_tools()

    def _register_tools(self):
        """Schema, handler and argument checks for each tool, in one place."""
        T = _ToolEntry

        self._tools[EXECUTE_COMMAND] = T(
            handler=lambda **a: self.shell.execute(a["command"]),
            schema=EXECUTE_COMMAND_SCHEMA,
            validate=_check_command_args,
            needs_approval=lambda a: a["requires_approval"],
        )
        self._tools[SEARCH_REPLACE] = T(
            handler=lambda **a: self.patcher.search_replace(a["filePath"], a["patch_operations"]),
            schema=SEARCH_REPLACE_SCHEMA,
            validate=_check_patch_args,
        )

    # ── Public API ──

    @property
    def schemas(self) -> List[dict]:
        return [entry.schema for entry in self._tools.values()]

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def dispatch(self, call: ToolCall, approve: Optional[Approver] = None) -> ToolResult:
        """Run one completed tool call. Never raises for tool-level failures.

        ``approve`` is consulted only for calls that ask for approval; without
        an approver such calls are denied.
        """
        def result(content: str, kind: ResultKind = ResultKind.ERROR, elapsed: float = 0.0):
            return ToolResult(call.id, call.name, content, kind, elapsed)

        entry = self._tools.get(call.name)
        if not entry:
            _log.warning("Model requested unknown tool: %s", call.name)
            known = ", ".join(self.names)
            return result(f"{ERROR_MARKER} Unknown tool: {call.name} (available: {known})",
                          ResultKind.UNKNOWN)

        try:
            args = call.parse_arguments()
            entry.validate(args)
        except ToolArgumentError as e:
            _log.info("Rejected arguments for %s: %s", call.name, e)
            return result(f"{ERROR_MARKER} Invalid arguments for {call.name}: {e}")

        if entry.needs_approval(args):
            if approve is None or not approve(call.name, args):
                _log.info("User denied %s", call.name)
                subject = args.get("command", call.name)
                return result(f"{ERROR_MARKER} User denied execution of command: {subject}",
                              ResultKind.DENIED)

        _log.info("Running tool %s", call.name)
        start = time.monotonic()
        try:
            content = entry.handler(**args)
        except (ToolError, PatchError) as e:
            elapsed = time.monotonic() - start
            _log.info("Tool %s failed after %.2fs: %s", call.name, elapsed, str(e).partition("\n")[0])
            return result(f"{ERROR_MARKER} {e}", elapsed=elapsed)
        except Exception as e:
            elapsed = time.monotonic() - start
            _log.exception("Tool %s raised unexpectedly", call.name)
            return result(f"{ERROR_MARKER} {call.name} error: {type(e).__name__}: {e}",
                          elapsed=elapsed)

        elapsed = time.monotonic() - start
        _log.info("Tool %s finished in %.2fs", call.name, elapsed)
        return result(content, ResultKind.OK, elapsed)
