"""Shell command execution for the execute_command tool."""

import os
import subprocess
from pathlib import Path

from ..errors import ShellTimeoutError, ToolError
from ..logger import get_logger
from .schemas import EXECUTE_COMMAND

_log = get_logger(__name__)

MAX_OUTPUT_CHARS = 16000


def truncate_middle(text: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    """Keep the head and tail of ``text`` when it exceeds ``limit`` characters."""
    if len(text) <= limit:
        return text
    half = limit // 2
    return text[:half] + "\n...(truncated)...\n" + text[-half:]


class ShellExecutor:
    """Run commands with ``bash -c`` in the project root, bounded by a timeout.

    No command screening happens here: the model flags risky commands with
    ``requires_approval`` and the user decides.
    """

    def __init__(self, project_root: str, timeout: int = 120):
        self.project_root = Path(project_root).resolve()
        self.timeout = timeout

    def execute(self, command: str) -> str:
        """Return stdout on success; raise ToolError on a non-zero exit."""
        if not command.strip():
            raise ToolError(EXECUTE_COMMAND, "Empty command")

        _log.debug("Executing command: %s", command[:100])

        try:
            result = subprocess.run(
                ["bash", "-c", command],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=str(self.project_root),
                env={**os.environ, "TERM": "dumb"},
            )
        except subprocess.TimeoutExpired:
            _log.warning("Command timed out after %ss: %s", self.timeout, command[:100])
            raise ShellTimeoutError(self.timeout)
        except OSError as e:
            raise ToolError(EXECUTE_COMMAND, f"Command failed: {e}")

        stdout = truncate_middle(result.stdout or "")
        stderr = truncate_middle(result.stderr or "")

        if result.returncode != 0:
            _log.info("Command exited with %d: %s", result.returncode, command[:100])
            parts = [f"Command failed with exit code {result.returncode}"]
            if stderr.strip():
                parts.append(stderr.rstrip())
            if stdout.strip():
                parts.append(stdout.rstrip())
            raise ToolError(EXECUTE_COMMAND, "\n".join(parts))

        output = stdout
        if stderr.strip():
            output = f"{stdout.rstrip()}\n[stderr]\n{stderr.rstrip()}" if stdout.strip() \
                else f"[stderr]\n{stderr.rstrip()}"
        return output if output.strip() else "(no output)"
