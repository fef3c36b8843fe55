# mcp_bridge/mcp_handlers/endpoints.py
import json
import logging
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from ..dependencies import get_dispatcher, get_metadata_generator, get_settings
from ..oauth.metadata import MetadataGenerator
from ..sessions import resolve_mcp_session_id
from ..settings import Settings
from ..utils.security import mask_token
from .dispatcher import DispatchResult, MCPDispatcher
from .jsonrpc import parse_error

logger = logging.getLogger(__name__)
mcp_router = APIRouter(tags=["MCP"])


def _wants_redirect(request: Request) -> bool:
    """
    Browser-style callers get a redirect to the login URL instead of an
    in-band auth error: any GET, or a POST that accepts HTML but not JSON.
    """
    if request.method == "GET":
        return True
    accept = request.headers.get("accept", "").lower()
    return "text/html" in accept and "application/json" not in accept


def _to_response(result: DispatchResult, mcp_session_id: str, settings: Settings) -> Response:
    headers = {settings.session_id_header: mcp_session_id}
    if result.redirect_url:
        return RedirectResponse(url=result.redirect_url, status_code=result.status_code, headers=headers)
    if result.payload is None:
        return Response(status_code=result.status_code, headers=headers)
    return JSONResponse(content=result.payload, status_code=result.status_code, headers=headers)


def _parse_error_response(mcp_session_id: str, settings: Settings, detail: str) -> Response:
    error = parse_error(detail)
    return _to_response(DispatchResult.failure(None, error), mcp_session_id, settings)


async def _dispatch(
    request: Request,
    message: Any,
    mcp_session_id: str,
    was_minted: bool,
    dispatcher: MCPDispatcher,
    settings: Settings,
) -> Response:
    method = message.get("method") if isinstance(message, dict) else None
    logger.info(
        f"MCP {request.method} {request.url.path} method='{method}' "
        f"session='{mask_token(mcp_session_id)}'{' (new)' if was_minted else ''}"
    )
    result = await dispatcher.dispatch(
        message, mcp_session_id, allow_redirect=_wants_redirect(request)
    )
    return _to_response(result, mcp_session_id, settings)


def _register_mcp_endpoint(path: str, discovery_base_path: Optional[str]) -> None:
    async def handle_post(
        request: Request,
        dispatcher: Annotated[MCPDispatcher, Depends(get_dispatcher)],
        settings: Annotated[Settings, Depends(get_settings)],
    ) -> Response:
        mcp_session_id, was_minted = resolve_mcp_session_id(request, settings)
        raw_body = await request.body()
        try:
            message = json.loads(raw_body)
        except ValueError as e:
            logger.warning(f"Unparseable MCP request body on {path}: {e}")
            return _parse_error_response(mcp_session_id, settings, "Parse error")
        return await _dispatch(request, message, mcp_session_id, was_minted, dispatcher, settings)

    async def handle_get(
        request: Request,
        dispatcher: Annotated[MCPDispatcher, Depends(get_dispatcher)],
        metadata: Annotated[MetadataGenerator, Depends(get_metadata_generator)],
        settings: Annotated[Settings, Depends(get_settings)],
    ) -> Response:
        mcp_session_id, was_minted = resolve_mcp_session_id(request, settings)
        method = request.query_params.get("method")
        if not method:
            info = metadata.mcp_server_info(path, discovery_base_path)
            return JSONResponse(
                content=info.model_dump(exclude_none=True),
                headers={settings.session_id_header: mcp_session_id},
            )

        params: Any = None
        raw_params = request.query_params.get("params")
        if raw_params:
            try:
                params = json.loads(raw_params)
            except ValueError:
                return _parse_error_response(mcp_session_id, settings, "Invalid 'params' query parameter")
        message = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": request.query_params.get("id"),
        }
        return await _dispatch(request, message, mcp_session_id, was_minted, dispatcher, settings)

    route_name = path.strip("/").replace("/", "_")
    mcp_router.add_api_route(path, handle_post, methods=["POST"], name=f"{route_name}_post")
    mcp_router.add_api_route(path, handle_get, methods=["GET"], name=f"{route_name}_get")


_register_mcp_endpoint("/mcp", None)
_register_mcp_endpoint("/api/mcp", "/api/mcp/.well-known")
