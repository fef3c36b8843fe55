# mcp_bridge/main.py
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

load_dotenv()

from .settings import Settings, settings as default_settings
from .backend_auth import BetterAuthTokenHandler
from .mcp_handlers.dispatcher import MCPDispatcher
from .mcp_handlers.endpoints import mcp_router
from .oauth.endpoints import discovery_router, login_router, registration_router
from .oauth.errors import OAuthError
from .oauth.metadata import MetadataGenerator
from .oauth.models import DiscoveryConfig
from .sessions import AbstractSessionStore, create_session_store
from .tools import BackendAppClient, ToolRegistry, create_default_registry

if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level="DEBUG" if default_settings.debug_mode else default_settings.log_level.upper(),
        format='%(asctime)s - %(name)s [%(levelname)s] - %(message)s'
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def bridge_app_lifespan(app_instance: FastAPI):
    """
    Starts the session store (and its sweeper) on startup; on shutdown
    stops it and closes the outbound HTTP clients this app owns.
    """
    state = app_instance.state
    logger.info(f"{state.settings.app_name} startup initiated.")
    await state.session_store.initialize()
    logger.info(f"Session store '{type(state.session_store).__name__}' initialized.")
    try:
        yield
    finally:
        logger.info("Application shutdown initiated.")
        try:
            await state.session_store.teardown()
        except Exception as e_td:
            logger.error(f"Session store teardown error: {e_td}", exc_info=True)
        for client in state.owned_http_clients:
            await client.aclose()
        logger.info("All components torn down.")


async def oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    """Renders OAuth errors as top-level RFC 6749 error objects."""
    return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)


def create_app(
    settings: Optional[Settings] = None,
    session_store: Optional[AbstractSessionStore] = None,
    token_handler: Optional[BetterAuthTokenHandler] = None,
    tool_registry: Optional[ToolRegistry] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Builds the application and its collaborators.

    Every collaborator can be supplied by the caller; whatever is not
    supplied is built from settings. An http_client passed in is shared
    by the auth service and backend calls and is not closed on shutdown.
    """
    cfg = settings or default_settings

    owned_http_clients = []
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=httpx.Timeout(cfg.outbound_timeout_seconds))
        owned_http_clients.append(http_client)

    store = session_store if session_store is not None else create_session_store(cfg)
    handler = token_handler if token_handler is not None else BetterAuthTokenHandler(http_client, cfg)
    registry = (
        tool_registry if tool_registry is not None
        else create_default_registry(BackendAppClient(http_client, cfg))
    )
    metadata = MetadataGenerator(DiscoveryConfig.from_settings(cfg))
    dispatcher = MCPDispatcher(
        settings=cfg,
        session_store=store,
        token_handler=handler,
        tool_registry=registry,
        metadata=metadata,
    )

    app = FastAPI(
        title=cfg.app_name,
        version=cfg.server_version,
        lifespan=bridge_app_lifespan,
    )
    app.state.settings = cfg
    app.state.session_store = store
    app.state.token_handler = handler
    app.state.tool_registry = registry
    app.state.metadata = metadata
    app.state.dispatcher = dispatcher
    app.state.owned_http_clients = owned_http_clients

    app.add_exception_handler(OAuthError, oauth_error_handler)

    @app.get("/health")
    async def health_api():
        """Health check reporting session store reachability."""
        store_statuses: Dict[str, str] = {}
        all_healthy = True
        store_name = type(store).__name__
        if await store.ping():
            store_statuses[store_name] = "healthy"
        else:
            store_statuses[store_name] = "unhealthy"
            all_healthy = False
        return {
            "status": "healthy" if all_healthy else "degraded",
            "session_store_backend": cfg.session_store_backend,
            "tools": len(registry),
            "details": store_statuses,
        }

    app.include_router(mcp_router)
    app.include_router(discovery_router)
    app.include_router(registration_router)
    app.include_router(login_router)

    logger.info(
        f"{cfg.app_name} initialized. Base URL: {cfg.resolved_base_url}. "
        f"Auth service: {cfg.resolved_auth_service_url}. Tools: {len(registry)}."
    )
    return app


app = create_app()
