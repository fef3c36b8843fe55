# mcp_bridge/tools/registry.py
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from mcp.types import CallToolResult, TextContent, Tool as MCPToolDefinition
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class ToolContext(BaseModel):
    """Caller identity handed to every tool handler."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    session_token: str = Field(repr=False)
    user_email: Optional[str] = None


class ToolArguments(BaseModel):
    """Base class for tool argument models. Unknown arguments are dropped."""
    model_config = ConfigDict(extra="ignore")


ToolHandler = Callable[[Any, ToolContext], Awaitable[Any]]


class MCPTool:
    """A named tool: its argument model doubles as the advertised input schema."""

    def __init__(
        self,
        name: str,
        description: str,
        arguments_model: Type[ToolArguments],
        handler: ToolHandler,
    ):
        self.name = name
        self.description = description
        self.arguments_model = arguments_model
        self.handler = handler

    @property
    def input_schema(self) -> Dict[str, Any]:
        schema = self.arguments_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return schema

    def validate_arguments(self, arguments: Optional[Dict[str, Any]]) -> ToolArguments:
        """Raises pydantic.ValidationError for arguments that don't fit the schema."""
        return self.arguments_model.model_validate(arguments or {})

    def definition(self) -> MCPToolDefinition:
        return MCPToolDefinition(
            name=self.name,
            description=self.description,
            inputSchema=self.input_schema,
        )

    def __repr__(self) -> str:
        return f"MCPTool(name={self.name!r})"


class ToolRegistry:
    """Fixed set of tools, populated once at startup."""

    def __init__(self, tools: Optional[List[MCPTool]] = None):
        self._tools: Dict[str, MCPTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: MCPTool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered.")
        self._tools[tool.name] = tool
        logger.info(f"Registered tool '{tool.name}'.")

    def get(self, name: str) -> Optional[MCPTool]:
        return self._tools.get(name)

    def list_tools(self) -> List[MCPToolDefinition]:
        return [tool.definition() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def format_tool_result(value: Any) -> CallToolResult:
    """
    Wraps a handler's return value as MCP content.

    Strings are passed through, anything else is rendered as indented
    JSON. Dict results are also attached verbatim as structuredContent.
    """
    if isinstance(value, str):
        text = value
    else:
        text = json.dumps(value, indent=2, default=str)
    structured = value if isinstance(value, dict) else None
    return CallToolResult(
        content=[TextContent(type="text", text=text)],
        structuredContent=structured,
    )


def format_tool_error(message: str) -> CallToolResult:
    return CallToolResult(
        content=[TextContent(type="text", text=f"Error: {message}")],
        structuredContent={"error": message},
        isError=True,
    )
