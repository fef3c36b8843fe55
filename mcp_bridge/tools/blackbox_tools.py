# mcp_bridge/tools/blackbox_tools.py
import logging
from typing import Any, Dict

from fastmcp.exceptions import ToolError
from pydantic import Field

from .backend_client import BackendAppClient
from .registry import MCPTool, ToolArguments, ToolContext, ToolRegistry

logger = logging.getLogger(__name__)

BUILD_APP_PATH = "/api/mcp/build-app"
CREDITS_PATH = "/api/mcp/credits"


class BuildAppArguments(ToolArguments):
    prompt: str = Field(min_length=1, description="The prompt describing what app to build")


class CheckCreditsArguments(ToolArguments):
    # Credits are always looked up for the authenticated user.
    pass


def make_build_app_tool(backend: BackendAppClient) -> MCPTool:
    async def build_app(arguments: BuildAppArguments, context: ToolContext) -> Any:
        logger.info(f"Tool 'build_app' called by user '{context.user_id}'")
        return await backend.post_json(
            BUILD_APP_PATH,
            context,
            {"prompt": arguments.prompt, "userId": context.user_id},
        )

    return MCPTool(
        name="build_app",
        description=(
            "Build an app in blackbox-v0cc with a prompt. "
            "Creates a new app project based on the provided prompt."
        ),
        arguments_model=BuildAppArguments,
        handler=build_app,
    )


def make_check_credits_tool(backend: BackendAppClient) -> MCPTool:
    async def check_credits(arguments: CheckCreditsArguments, context: ToolContext) -> Any:
        email = context.user_email
        if not email:
            raise ToolError("User email not found")
        logger.info(f"Tool 'check_credits' called by user '{context.user_id}'")

        result = await backend.get_json(CREDITS_PATH, context, params={"email": email})
        if isinstance(result, dict):
            credits: Dict[str, Any] = dict(result)
            credits["email"] = email
            return credits
        return {"email": email, "credits": result}

    return MCPTool(
        name="check_credits",
        description="Check available credits for the authenticated user in blackbox-v0cc",
        arguments_model=CheckCreditsArguments,
        handler=check_credits,
    )


def create_default_registry(backend: BackendAppClient) -> ToolRegistry:
    """Registry holding the backend application tools."""
    return ToolRegistry([
        make_build_app_tool(backend),
        make_check_credits_tool(backend),
    ])
