# mcp_bridge/dependencies.py
import logging
from fastapi import HTTPException, Request, status

from .backend_auth import BetterAuthTokenHandler
from .mcp_handlers.dispatcher import MCPDispatcher
from .oauth.metadata import MetadataGenerator
from .sessions import AbstractSessionStore
from .settings import Settings

logger = logging.getLogger(__name__)


def _from_app_state(request: Request, attribute: str):
    value = getattr(request.app.state, attribute, None)
    if value is None:
        logger.critical(f"app.state.{attribute} is not configured; was the app built with create_app()?")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is not fully initialized.",
        )
    return value


def get_settings(request: Request) -> Settings:
    return _from_app_state(request, "settings")


def get_session_store(request: Request) -> AbstractSessionStore:
    return _from_app_state(request, "session_store")


def get_token_handler(request: Request) -> BetterAuthTokenHandler:
    return _from_app_state(request, "token_handler")


def get_dispatcher(request: Request) -> MCPDispatcher:
    return _from_app_state(request, "dispatcher")


def get_metadata_generator(request: Request) -> MetadataGenerator:
    return _from_app_state(request, "metadata")
