"""Structured error types for the agent system."""


class AgentError(Exception):
    """Base error for all agent operations."""
    pass


class TransportError(AgentError):
    """The model endpoint could not be reached, failed, or timed out."""

    def __init__(self, message: str, status: int = None):
        self.status = status
        super().__init__(message)


class ProtocolError(AgentError):
    """A decoded stream record does not have the shape of a chat delta."""
    pass


class ToolError(AgentError):
    """Error raised during tool execution.

    The message is what the model sees after the ``ERROR:`` marker.
    """

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(message)


class ShellTimeoutError(ToolError):
    """Raised when a shell command exceeds its timeout."""

    def __init__(self, timeout: int):
        self.timeout = timeout
        super().__init__("execute_command", f"Command timed out after {timeout}s")


class ToolArgumentError(AgentError):
    """Tool-call arguments are not a usable JSON object."""
    pass


class PatchError(AgentError):
    """An anchored patch batch was rejected or changed nothing."""
    pass
