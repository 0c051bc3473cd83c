"""Centralized color constants for terminal output."""

import os

# Core palette (GitHub dark)
ACCENT = "#7FA6D9"
BORDER = "#30363D"
DIM = "#6E7681"
TEXT = "#E6EDF3"
MUTED = "#8B949E"
SEPARATOR = "#484F58"

# Semantic colors
SUCCESS = "#57DB9C"
WARN = "#E3B341"
ERROR = "#F85149"
INFO = "#58A6FF"

# Prompt / input
PROMPT = "#B7C6D8"

# Stream modes
THINKING = "bright_black"
TOOL_CALL = "#7FA6D9"

if os.environ.get("NO_COLOR"):
    ACCENT = BORDER = DIM = TEXT = MUTED = SEPARATOR = "default"
    SUCCESS = WARN = ERROR = INFO = PROMPT = "default"
    THINKING = TOOL_CALL = "default"

__all__ = [
    "ACCENT", "BORDER", "DIM", "TEXT", "MUTED", "SEPARATOR",
    "SUCCESS", "WARN", "ERROR", "INFO", "PROMPT",
    "THINKING", "TOOL_CALL",
]
