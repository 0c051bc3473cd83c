"""Anchored search/replace over line arrays.

An operation names a block of lines to replace plus the lines expected
around it. The surrounding context is what makes an edit unambiguous when
the search block also occurs elsewhere in the file, so every operation must
carry at least ``MIN_CONTEXT_LINES`` lines of context on one side.

Processing runs in three phases over the whole batch:

1. validate every operation before the file is read;
2. for each operation in the given order, find the first position where the
   block and its context match the *current* lines;
3. splice the replacement in, so later operations see earlier edits.

A batch that leaves the file unchanged is an error, never a silent success.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from ..errors import PatchError
from ..logger import get_logger

_log = get_logger(__name__)

__all__ = [
    "PatchOperation", "PatchEngine", "MIN_CONTEXT_LINES",
    "validate_operations", "find_match", "apply_operations", "split_lines", "join_lines",
]

MIN_CONTEXT_LINES = 3

_LINE_BREAK = re.compile(r"(\r?\n)")


def _is_line_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(line, str) for line in value)


@dataclass
class PatchOperation:
    search_pattern: List[str]
    replacement_text: List[str]
    before_context: Optional[List[str]] = None
    after_context: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, raw: Any) -> "PatchOperation":
        """Build an operation from decoded tool arguments, checking every field."""
        if not isinstance(raw, dict):
            raise PatchError("each patch operation must be an object")
        search = raw.get("search_pattern")
        if not _is_line_list(search) or not search:
            raise PatchError('"search_pattern" must be a non-empty array of strings')
        replacement = raw.get("replacement_text")
        if not _is_line_list(replacement):
            raise PatchError('"replacement_text" must be an array of strings')
        before = raw.get("before_context")
        if before is not None and not _is_line_list(before):
            raise PatchError('"before_context" must be an array of strings if provided')
        after = raw.get("after_context")
        if after is not None and not _is_line_list(after):
            raise PatchError('"after_context" must be an array of strings if provided')

        op = cls(list(search), list(replacement),
                 list(before) if before is not None else None,
                 list(after) if after is not None else None)
        if not op.has_enough_context():
            raise PatchError(
                f'needs at least {MIN_CONTEXT_LINES} lines of "before_context" '
                f'or at least {MIN_CONTEXT_LINES} lines of "after_context"'
            )
        return op

    def has_enough_context(self) -> bool:
        return (len(self.before_context or []) >= MIN_CONTEXT_LINES
                or len(self.after_context or []) >= MIN_CONTEXT_LINES)


def validate_operations(raw_ops: Any) -> List[PatchOperation]:
    """Validate a whole batch. Any bad operation rejects all of them."""
    if not isinstance(raw_ops, list):
        raise PatchError("patch_operations must be an array")
    if not raw_ops:
        raise PatchError("No patch operations provided.")

    operations, errors = [], []
    for i, raw in enumerate(raw_ops, 1):
        try:
            operations.append(PatchOperation.from_dict(raw))
        except PatchError as e:
            errors.append(f"Op {i}: {e}")

    if errors:
        raise PatchError(
            f"patch validation failed ({len(errors)} error(s)):\n"
            + "\n".join(f"  - {e}" for e in errors)
        )
    return operations


def _lines_equal(lines: Sequence[str], start: int, expected: Sequence[str]) -> bool:
    if start < 0 or start + len(expected) > len(lines):
        return False
    return all(lines[start + k] == expected[k] for k in range(len(expected)))


def find_match(lines: Sequence[str], op: PatchOperation) -> int:
    """Lowest index where ``op`` matches with its context, or -1."""
    size = len(op.search_pattern)
    for i in range(len(lines) - size + 1):
        if not _lines_equal(lines, i, op.search_pattern):
            continue
        if op.before_context is not None and \
                not _lines_equal(lines, i - len(op.before_context), op.before_context):
            continue
        if op.after_context is not None and \
                not _lines_equal(lines, i + size, op.after_context):
            continue
        return i
    return -1


def _splice_endings(endings: List[str], start: int, size: int, count: int) -> None:
    """Line terminators for ``count`` lines replacing ``endings[start:start + size]``.

    Inserted lines take the block's own newline; the last one keeps the
    terminator of the block's last line, so a block at EOF stays unterminated.
    """
    block = endings[start:start + size]
    newline = next((e for e in block if e), None) or _preferred_newline(endings)
    if count:
        endings[start:start + size] = [newline] * (count - 1) + [block[-1]]
        return
    del endings[start:start + size]
    if start == len(endings) and start > 0:
        endings[start - 1] = ""


def apply_operations(lines: List[str], operations: Sequence[PatchOperation],
                     endings: Optional[List[str]] = None) -> List[int]:
    """Apply ``operations`` in order, editing ``lines`` in place.

    ``endings`` (from ``split_lines``) is kept in step with ``lines`` when
    given. Each operation changes at most its first match. Returns the
    1-based numbers of the operations that found no match.
    """
    unmatched = []
    for number, op in enumerate(operations, 1):
        index = find_match(lines, op)
        if index == -1:
            unmatched.append(number)
            continue
        size = len(op.search_pattern)
        lines[index:index + size] = op.replacement_text
        if endings is not None:
            _splice_endings(endings, index, size, len(op.replacement_text))
    return unmatched


def split_lines(text: str) -> Tuple[List[str], List[str]]:
    """Split on LF or CRLF, keeping each line's own terminator.

    Returns the lines and their terminators; the last terminator is always "".
    """
    parts = _LINE_BREAK.split(text)
    return parts[0::2], parts[1::2] + [""]


def join_lines(lines: Sequence[str], endings: Sequence[str]) -> str:
    return "".join(line + ending for line, ending in zip(lines, endings))


def _preferred_newline(endings: Sequence[str]) -> str:
    return "\r\n" if "\r\n" in endings else "\n"


class PatchEngine:
    """Applies anchored patch batches to files under ``project_root``."""

    def __init__(self, project_root: str):
        self.project_root = Path(project_root).resolve()

    def _resolve(self, path: str) -> Path:
        p = Path(path)
        if not p.is_absolute():
            p = self.project_root / p
        p = p.resolve()
        try:
            p.relative_to(self.project_root)
        except ValueError:
            raise PatchError(
                f"Access denied: '{path}' is outside project root ({self.project_root})"
            )
        return p

    def search_replace(self, file_path: str, patch_operations: Any) -> str:
        """Patch ``file_path`` and return its full new content."""
        if not isinstance(file_path, str) or not file_path.strip():
            raise PatchError('"filePath" must be a non-empty string')
        operations = validate_operations(patch_operations)

        fp = self._resolve(file_path)
        try:
            # Bytes, not read_text(): universal newlines would hide CRLF.
            original = fp.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise PatchError(f'Error reading file "{file_path}": {e}')

        lines, endings = split_lines(original)
        unmatched = apply_operations(lines, operations, endings)
        if len(unmatched) == len(operations):
            raise PatchError(
                f"No changes applied to {file_path}: none of the {len(operations)} "
                "operation(s) matched. Re-read the file and check the search pattern "
                "and context lines."
            )
        updated = join_lines(lines, endings)
        if updated == original:
            raise PatchError(
                f"No changes applied to {file_path}: the replacements are identical "
                "to the lines they match."
            )

        try:
            fp.write_text(updated, encoding="utf-8", newline="")
        except OSError as e:
            raise PatchError(f'Error writing file "{file_path}": {e}')

        applied = len(operations) - len(unmatched)
        _log.info("Patched %s: %d of %d operation(s) applied", file_path, applied, len(operations))
        if unmatched:
            _log.warning("Patch operations without a match in %s: %s",
                         file_path, ", ".join(map(str, unmatched)))
        return updated
