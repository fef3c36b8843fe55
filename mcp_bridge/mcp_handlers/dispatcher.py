# mcp_bridge/mcp_handlers/dispatcher.py
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from fastapi import status
from fastmcp.exceptions import ToolError
from pydantic import BaseModel, ValidationError

from ..backend_auth import BetterAuthTokenHandler
from ..oauth.metadata import MetadataGenerator
from ..sessions import AbstractSessionStore, build_auth_url
from ..settings import Settings
from ..tools import ToolContext, ToolRegistry, format_tool_error, format_tool_result
from ..utils.security import mask_token
from .jsonrpc import (
    JSONRPCProtocolError,
    RequestId,
    auth_required,
    internal_error,
    invalid_params,
    invalid_request,
    method_not_found,
    result_payload,
)

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class AuthResolution(BaseModel):
    """Per-request authentication outcome, derived from the store and the auth service."""
    state: AuthState
    mcp_session_id: str
    auth_url: str
    session_token: Optional[str] = None
    user_id: Optional[str] = None
    user_email: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.state == AuthState.AUTHENTICATED

    def tool_context(self) -> ToolContext:
        return ToolContext(
            user_id=self.user_id or "",
            session_token=self.session_token or "",
            user_email=self.user_email,
        )


class DispatchResult:
    """What the HTTP layer should send back for one JSON-RPC message."""

    def __init__(
        self,
        status_code: int = status.HTTP_200_OK,
        payload: Optional[Dict[str, Any]] = None,
        redirect_url: Optional[str] = None,
    ):
        self.status_code = status_code
        self.payload = payload
        self.redirect_url = redirect_url

    @classmethod
    def success(cls, request_id: RequestId, result: Any) -> "DispatchResult":
        return cls(payload=result_payload(request_id, result))

    @classmethod
    def failure(cls, request_id: RequestId, error: JSONRPCProtocolError) -> "DispatchResult":
        return cls(status_code=error.http_status, payload=error.to_payload(request_id))

    @classmethod
    def redirect(cls, url: str) -> "DispatchResult":
        return cls(status_code=status.HTTP_302_FOUND, redirect_url=url)

    @classmethod
    def accepted(cls) -> "DispatchResult":
        return cls(status_code=status.HTTP_202_ACCEPTED)

    def __repr__(self) -> str:
        return f"DispatchResult(status_code={self.status_code}, redirect_url={self.redirect_url!r})"


class MCPDispatcher:
    """
    JSON-RPC method dispatch for the MCP endpoint.

    The authentication state is recomputed on every request:

    * no stored session -> Unauthenticated
    * stored token rejected by the auth service -> session deleted, Unauthenticated
    * token valid but close to expiry -> refresh pending, then Authenticated
      with either the rotated token or, if rotation failed, the old one
    * token valid -> Authenticated

    ``initialize`` and ``ping`` never require authentication. ``tools/list``
    and ``tools/call`` do, answering with an auth-required error or a
    redirect to the login URL.
    """

    def __init__(
        self,
        settings: Settings,
        session_store: AbstractSessionStore,
        token_handler: BetterAuthTokenHandler,
        tool_registry: ToolRegistry,
        metadata: MetadataGenerator,
    ):
        self.settings = settings
        self.session_store = session_store
        self.token_handler = token_handler
        self.tool_registry = tool_registry
        self.metadata = metadata

    def build_auth_url(self, mcp_session_id: str) -> str:
        return build_auth_url(mcp_session_id, self.settings)

    def _unauthenticated(self, mcp_session_id: str) -> AuthResolution:
        return AuthResolution(
            state=AuthState.UNAUTHENTICATED,
            mcp_session_id=mcp_session_id,
            auth_url=self.build_auth_url(mcp_session_id),
        )

    def _default_expiry(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(
            seconds=self.settings.default_session_lifetime_seconds
        )

    async def _rotate_token(self, mcp_session_id: str, token: str, user_id: str) -> Optional[str]:
        """
        Refreshes a token that is about to expire and stores the new one.

        The rotated token is validated once more to learn its real expiry;
        the fixed default lifetime is used only when the auth service does
        not report one. Returns None if the token could not be rotated.
        """
        new_token = await self.token_handler.refresh(token)
        if not new_token:
            return None

        check = await self.token_handler.validate(new_token)
        if not check.valid:
            logger.warning(
                f"Rotated token {mask_token(new_token)} for session '{mask_token(mcp_session_id)}' "
                "did not validate; keeping the previous token."
            )
            return None

        expires_at = check.session.expires_at if check.session else None
        if expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at is None or expires_at <= datetime.now(timezone.utc):
            expires_at = self._default_expiry()

        await self.session_store.set(mcp_session_id, new_token, user_id, expires_at)
        return new_token

    async def resolve_auth(self, mcp_session_id: str) -> AuthResolution:
        session = await self.session_store.get(mcp_session_id)
        if session is None:
            logger.debug(f"No stored session for '{mask_token(mcp_session_id)}'.")
            return self._unauthenticated(mcp_session_id)

        validation = await self.token_handler.validate(session.auth_session_token)
        if not validation.valid or validation.session is None:
            logger.info(
                f"Stored token for session '{mask_token(mcp_session_id)}' is no longer valid; removing."
            )
            await self.session_store.delete(mcp_session_id)
            return self._unauthenticated(mcp_session_id)

        backend_session = validation.session
        token = session.auth_session_token
        user_id = backend_session.user.id

        if validation.needs_refresh:
            logger.info(f"Session '{mask_token(mcp_session_id)}' has a refresh pending.")
            rotated = await self._rotate_token(mcp_session_id, token, user_id)
            if rotated:
                token = rotated
            else:
                logger.info(
                    f"Refresh failed for session '{mask_token(mcp_session_id)}'; "
                    "continuing with the current token."
                )

        return AuthResolution(
            state=AuthState.AUTHENTICATED,
            mcp_session_id=mcp_session_id,
            auth_url=self.build_auth_url(mcp_session_id),
            session_token=token,
            user_id=user_id,
            user_email=backend_session.user.email,
        )

    async def dispatch(
        self,
        message: Any,
        mcp_session_id: str,
        allow_redirect: bool = False,
    ) -> DispatchResult:
        request_id: RequestId = message.get("id") if isinstance(message, dict) else None
        try:
            method, params = self._validate_envelope(message)

            if method.startswith("notifications/"):
                logger.debug(f"Acknowledged notification '{method}'.")
                return DispatchResult.accepted()
            if method == "ping":
                return DispatchResult.success(request_id, "pong")
            if method == "initialize":
                return DispatchResult.success(request_id, await self._initialize(mcp_session_id))
            if method in ("tools/list", "tools/call"):
                auth = await self.resolve_auth(mcp_session_id)
                if not auth.authenticated:
                    if allow_redirect:
                        return DispatchResult.redirect(auth.auth_url)
                    raise auth_required(auth.auth_url)
                if method == "tools/list":
                    return DispatchResult.success(request_id, self._list_tools())
                return DispatchResult.success(request_id, await self._call_tool(params, auth))

            raise method_not_found(f"Method not found: {method}")
        except JSONRPCProtocolError as e:
            logger.info(f"JSON-RPC error {e.code} for session '{mask_token(mcp_session_id)}': {e.message}")
            return DispatchResult.failure(request_id, e)

    @staticmethod
    def _validate_envelope(message: Any) -> Tuple[str, Dict[str, Any]]:
        if isinstance(message, list):
            raise invalid_request("Batch requests are not supported")
        if not isinstance(message, dict):
            raise invalid_request("Request must be a JSON object")
        if message.get("jsonrpc", "2.0") != "2.0":
            raise invalid_request("Unsupported JSON-RPC version")
        method = message.get("method")
        if not isinstance(method, str) or not method:
            raise invalid_request("Request is missing 'method'")
        params = message.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise invalid_params("'params' must be an object")
        return method, params

    async def _initialize(self, mcp_session_id: str) -> Dict[str, Any]:
        auth = await self.resolve_auth(mcp_session_id)
        result: Dict[str, Any] = {
            "protocolVersion": self.settings.mcp_protocol_version,
            "capabilities": {
                "tools": {},
                "experimental": {"oauth": self.metadata.initialize_oauth_capability()},
            },
            "serverInfo": {
                "name": self.settings.server_name,
                "version": self.settings.server_version,
            },
        }
        if not auth.authenticated:
            result["authUrl"] = auth.auth_url
        return result

    def _list_tools(self) -> Dict[str, Any]:
        return {
            "tools": [
                tool.model_dump(exclude_none=True, by_alias=True)
                for tool in self.tool_registry.list_tools()
            ]
        }

    async def _call_tool(self, params: Dict[str, Any], auth: AuthResolution) -> Dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise invalid_params("tools/call requires a tool 'name'")

        tool = self.tool_registry.get(name)
        if tool is None:
            raise method_not_found(f"Tool not found: {name}")

        raw_arguments = params.get("arguments")
        if raw_arguments is not None and not isinstance(raw_arguments, dict):
            raise invalid_params(f"Arguments for tool '{name}' must be an object")
        try:
            arguments = tool.validate_arguments(raw_arguments)
        except ValidationError as e:
            raise invalid_params(
                f"Invalid arguments for tool '{name}'",
                {"errors": e.errors(include_url=False, include_context=False)},
            )

        logger.info(f"Calling tool '{name}' for user '{auth.user_id}'.")
        try:
            value = await tool.handler(arguments, auth.tool_context())
        except ToolError as e:
            logger.info(f"Tool '{name}' reported an error: {e}")
            result = format_tool_error(str(e))
        except Exception as e:
            logger.error(f"Tool '{name}' raised unexpectedly: {e}", exc_info=True)
            raise internal_error(str(e) or type(e).__name__)
        else:
            result = format_tool_result(value)
        return result.model_dump(exclude_none=True, by_alias=True)
