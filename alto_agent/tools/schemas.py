"""Tool JSON Schema definitions for the LLM."""

EXECUTE_COMMAND = "execute_command"
SEARCH_REPLACE = "search_replace"


def _schema(name: str, description: str, properties: dict, required: list) -> dict:
    """Build an OpenAI-compatible function schema."""
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


_S = lambda desc, **kw: {"type": "string", "description": desc, **kw}
_B = lambda desc, **kw: {"type": "boolean", "description": desc, **kw}
_LINES = lambda desc: {"type": "array", "items": {"type": "string"}, "description": desc}


EXECUTE_COMMAND_SCHEMA = _schema(
    EXECUTE_COMMAND,
    "Run a CLI command in the user's shell, from the project root. Use it for builds, "
    "tests, dependency installs, version control and inspecting the file system. "
    "Returns stdout on success, or an ERROR: message with the diagnostic output.",
    {
        "command": _S("The exact command line to execute."),
        "requires_approval": _B(
            "Set to true when the command can make significant or irreversible changes "
            "(deleting files, installing system-wide software, changing system "
            "configuration). The user is asked to confirm before it runs. Set to false "
            "for safe commands such as ls, git status or running tests."),
    },
    ["command", "requires_approval"],
)

SEARCH_REPLACE_SCHEMA = _schema(
    SEARCH_REPLACE,
    "Applies structured search and replace operations to a file. Supports multi-line "
    "search and replacement, and requires at least 3 context lines (before or after) "
    "for each operation to ensure precision. Returns the full modified file content.",
    {
        "filePath": _S("The path to the file to be edited, relative to the project root."),
        "patch_operations": {
            "type": "array",
            "description": "An array of patch operations to apply, in order. Each operation "
                           "defines a multi-line search pattern, its multi-line replacement, "
                           "and required context lines.",
            "items": {
                "type": "object",
                "properties": {
                    "search_pattern": _LINES(
                        "Lines of the block to search for, one string per line. Must be non-empty."),
                    "replacement_text": _LINES(
                        "Lines that replace the search_pattern. Can be empty to delete lines."),
                    "before_context": _LINES(
                        "Optional: lines expected immediately before the search_pattern. "
                        "Must have at least 3 lines if after_context has fewer than 3."),
                    "after_context": _LINES(
                        "Optional: lines expected immediately after the search_pattern. "
                        "Must have at least 3 lines if before_context has fewer than 3."),
                },
                "required": ["search_pattern", "replacement_text"],
            },
        },
    },
    ["filePath", "patch_operations"],
)

TOOL_SCHEMAS = [EXECUTE_COMMAND_SCHEMA, SEARCH_REPLACE_SCHEMA]
