"""alto-agent: a streaming terminal coding assistant."""

__version__ = "0.3.0"
