from .registry import (
    MCPTool,
    ToolArguments,
    ToolContext,
    ToolRegistry,
    format_tool_error,
    format_tool_result,
)
from .backend_client import BackendAppClient
from .blackbox_tools import create_default_registry

__all__ = [
    "MCPTool",
    "ToolArguments",
    "ToolContext",
    "ToolRegistry",
    "format_tool_error",
    "format_tool_result",
    "BackendAppClient",
    "create_default_registry",
]
