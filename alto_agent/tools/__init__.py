from .registry import ResultKind, ToolRegistry, ToolResult
from .schemas import TOOL_SCHEMAS
__all__ = ["ToolRegistry", "ToolResult", "ResultKind", "TOOL_SCHEMAS"]
