# mcp_bridge/oauth/endpoints.py
import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Callable, Dict, Optional
from urllib.parse import urlencode, urlparse

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, ValidationError

from ..backend_auth import BackendSession, BetterAuthTokenHandler
from ..dependencies import (
    get_metadata_generator,
    get_session_store,
    get_settings,
    get_token_handler,
)
from ..sessions import (
    AbstractSessionStore,
    build_auth_url,
    extract_mcp_session_id,
    generate_mcp_session_id,
)
from ..settings import Settings
from ..utils.security import mask_token
from .errors import InvalidClientMetadataError, InvalidRedirectURIError, InvalidRequestError
from .metadata import MetadataGenerator
from .models import ClientRegistrationRequest, ClientRegistrationResponse

logger = logging.getLogger(__name__)

discovery_router = APIRouter(tags=["OAuth Discovery"])
registration_router = APIRouter(tags=["OAuth Client Registration"])
login_router = APIRouter(tags=["MCP Login"])

# OAuth authorization request parameters relayed to the auth service.
FORWARDED_AUTHORIZATION_PARAMS = (
    "response_type",
    "client_id",
    "redirect_uri",
    "state",
    "scope",
    "code_challenge",
    "code_challenge_method",
    "resource",
)


def _cached_json(document: BaseModel, max_age: int) -> JSONResponse:
    return JSONResponse(
        content=document.model_dump(exclude_none=True),
        headers={"Cache-Control": f"public, max-age={max_age}"},
    )


# --- Discovery documents ---

def _discovery_route(
    path: str,
    name: str,
    build: Callable[[MetadataGenerator], BaseModel],
) -> None:
    async def endpoint(
        metadata: Annotated[MetadataGenerator, Depends(get_metadata_generator)],
        settings: Annotated[Settings, Depends(get_settings)],
    ) -> JSONResponse:
        return _cached_json(build(metadata), settings.discovery_cache_max_age)

    endpoint.__name__ = name
    discovery_router.add_api_route(path, endpoint, methods=["GET"], name=name)


_AS_WELL_KNOWN = "/.well-known/oauth-authorization-server"

_discovery_route(
    _AS_WELL_KNOWN, "oauth_authorization_server",
    lambda m: m.authorization_server_metadata("/mcp"),
)
_discovery_route(
    f"{_AS_WELL_KNOWN}/mcp", "oauth_authorization_server_mcp",
    lambda m: m.authorization_server_metadata("/mcp"),
)
_discovery_route(
    "/api/mcp/.well-known/oauth-authorization-server", "oauth_authorization_server_api_mcp",
    lambda m: m.authorization_server_metadata("/api/mcp"),
)

_discovery_route(
    "/.well-known/oauth-protected-resource", "oauth_protected_resource",
    lambda m: m.protected_resource_metadata("/mcp"),
)
_discovery_route(
    "/.well-known/oauth-protected-resource/mcp", "oauth_protected_resource_mcp",
    lambda m: m.protected_resource_metadata("/mcp", f"{_AS_WELL_KNOWN}/mcp"),
)
_discovery_route(
    "/mcp/.well-known/oauth-protected-resource", "oauth_protected_resource_mcp_scoped",
    lambda m: m.protected_resource_metadata("/mcp", f"{_AS_WELL_KNOWN}/mcp"),
)
_discovery_route(
    "/api/mcp/.well-known/oauth-protected-resource", "oauth_protected_resource_api_mcp",
    lambda m: m.protected_resource_metadata(
        "/api/mcp", "/api/mcp/.well-known/oauth-authorization-server"
    ),
)

_discovery_route(
    "/.well-known/openid-configuration", "openid_configuration",
    lambda m: m.openid_configuration("/mcp"),
)
_discovery_route(
    "/.well-known/openid-configuration/mcp", "openid_configuration_mcp",
    lambda m: m.openid_configuration("/mcp"),
)
_discovery_route(
    "/mcp/.well-known/openid-configuration", "openid_configuration_mcp_scoped",
    lambda m: m.openid_configuration("/mcp"),
)
_discovery_route(
    "/api/mcp/.well-known/openid-configuration", "openid_configuration_api_mcp",
    lambda m: m.openid_configuration("/api/mcp"),
)

_discovery_route(
    "/.well-known/mcp.json", "mcp_server_discovery",
    lambda m: m.mcp_server_info("/mcp"),
)
_discovery_route(
    "/api/mcp/.well-known/mcp.json", "mcp_server_discovery_api_mcp",
    lambda m: m.mcp_server_info("/api/mcp", "/api/mcp/.well-known"),
)


# --- Dynamic Client Registration (RFC 7591) ---

SERVER_ISSUED_CLIENT_FIELDS = frozenset({
    "client_id",
    "client_secret",
    "client_id_issued_at",
    "client_secret_expires_at",
})


def _describe_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in error.errors()
    )


def _check_redirect_uris(registration: ClientRegistrationRequest) -> None:
    for uri in registration.redirect_uris:
        parsed = urlparse(uri)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidRedirectURIError(f"Redirect URI '{uri}' must be an absolute http(s) URL.")
        if parsed.fragment:
            raise InvalidRedirectURIError(f"Redirect URI '{uri}' must not contain a fragment.")


async def register_client(request: Request) -> JSONResponse:
    """
    Registers an OAuth client.

    Credentials are generated per call and not persisted; the auth service
    is the party that actually authenticates users.
    """
    raw_body = await request.body()
    body: Any = {}
    if raw_body.strip():
        try:
            body = await request.json()
        except ValueError:
            raise InvalidClientMetadataError("Request body must be a JSON object.")
    if not isinstance(body, dict):
        raise InvalidClientMetadataError("Request body must be a JSON object.")

    try:
        registration = ClientRegistrationRequest.model_validate(body)
    except ValidationError as e:
        raise InvalidClientMetadataError(_describe_validation_error(e))
    _check_redirect_uris(registration)

    client_id = f"mcp_{secrets.token_hex(16)}"
    client_secret = (
        None if registration.token_endpoint_auth_method == "none" else secrets.token_urlsafe(32)
    )
    # Credentials are always server-issued; client-supplied values are ignored.
    client_metadata = {
        key: value
        for key, value in registration.model_dump().items()
        if key not in SERVER_ISSUED_CLIENT_FIELDS
    }
    try:
        response = ClientRegistrationResponse(
            **client_metadata,
            client_id=client_id,
            client_secret=client_secret,
            client_id_issued_at=int(time.time()),
        )
    except ValidationError as e:
        raise InvalidClientMetadataError(_describe_validation_error(e))
    logger.info(
        f"Registered OAuth client '{client_id}' "
        f"(name: {registration.client_name!r}, redirect_uris: {registration.redirect_uris})"
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=response.model_dump(exclude_none=True),
        headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
    )


registration_router.add_api_route(
    "/api/auth/oauth/register", register_client, methods=["POST"], name="oauth_register_client"
)
registration_router.add_api_route(
    "/.well-known/oauth-registration", register_client, methods=["POST"],
    name="oauth_register_client_well_known",
)


# --- Login flow ---

def _auth_service_login_url(settings: Settings, params: Dict[str, str]) -> str:
    return f"{settings.resolved_auth_service_url}/?{urlencode(params)}"


def _callback_url(settings: Settings, mcp_session_id: str) -> str:
    query = urlencode({settings.session_id_query_param: mcp_session_id})
    return f"{settings.resolved_base_url}/api/auth/mcp-callback?{query}"


@login_router.get("/", name="root")
async def root(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """
    Landing URL handed to the host as the authorization URL.

    With ``mcp_auth_required=true`` the user is sent to the auth service
    login, which returns to /api/auth/mcp-callback. A plain OAuth
    authorization request is relayed to the auth service unchanged.
    """
    query = request.query_params
    mcp_session_id = query.get(settings.session_id_query_param)

    if query.get("response_type") == "code" and query.get("client_id") and query.get("redirect_uri"):
        mcp_session_id = mcp_session_id or generate_mcp_session_id()
        params = {
            settings.session_id_query_param: mcp_session_id,
            "mcp_auth_required": "true",
        }
        for name in FORWARDED_AUTHORIZATION_PARAMS:
            value = query.get(name)
            if value:
                params[name] = value
        logger.info(
            f"Relaying OAuth authorization request from client '{query.get('client_id')}' "
            f"for MCP session '{mask_token(mcp_session_id)}'."
        )
        return RedirectResponse(
            url=_auth_service_login_url(settings, params),
            status_code=status.HTTP_302_FOUND,
            headers={settings.session_id_header: mcp_session_id},
        )

    if mcp_session_id and query.get("mcp_auth_required") == "true":
        params = {
            settings.session_id_query_param: mcp_session_id,
            "mcp_auth_required": "true",
            "callbackURL": _callback_url(settings, mcp_session_id),
        }
        logger.info(f"Sending MCP session '{mask_token(mcp_session_id)}' to the auth service login.")
        return RedirectResponse(
            url=_auth_service_login_url(settings, params),
            status_code=status.HTTP_302_FOUND,
            headers={settings.session_id_header: mcp_session_id},
        )

    document: Dict[str, Any] = {"message": f"Welcome to {settings.app_name}!"}
    if query.get("auth_success") == "true":
        document["auth_success"] = True
        document["mcp_session_id"] = mcp_session_id
    elif query.get("error"):
        document["error"] = query.get("error")
        document["mcp_session_id"] = mcp_session_id
    return document


def _post_login_redirect(settings: Settings, mcp_session_id: str, error: Optional[str] = None) -> RedirectResponse:
    if error:
        params = {"error": error, settings.session_id_query_param: mcp_session_id}
    else:
        params = {"auth_success": "true", settings.session_id_query_param: mcp_session_id}
    return RedirectResponse(
        url=f"{settings.resolved_base_url}/?{urlencode(params)}",
        status_code=status.HTTP_302_FOUND,
    )


def _session_expiry(session: BackendSession, settings: Settings) -> datetime:
    now = datetime.now(timezone.utc)
    expires_at = session.expires_at
    if expires_at is not None and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at is None or expires_at <= now:
        return now + timedelta(seconds=settings.default_session_lifetime_seconds)
    return expires_at


@login_router.get("/api/auth/mcp-callback", name="mcp_auth_callback")
async def mcp_auth_callback(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    session_store: Annotated[AbstractSessionStore, Depends(get_session_store)],
    token_handler: Annotated[BetterAuthTokenHandler, Depends(get_token_handler)],
    mcp_session_id: Annotated[Optional[str], Query()] = None,
):
    """
    Binds the backend session the user just logged into to the MCP session.

    This is the only place a session is created; after it succeeds the
    status endpoint reports the MCP session as completed.
    """
    if not mcp_session_id:
        raise InvalidRequestError("Missing mcp_session_id parameter")

    cookie_token = request.cookies.get(settings.auth_cookie_name)
    session_token: Optional[str]
    backend_session: Optional[BackendSession]

    if cookie_token:
        validation = await token_handler.validate(cookie_token)
        if not validation.valid or validation.session is None:
            logger.warning(
                f"Callback for MCP session '{mask_token(mcp_session_id)}' carried an invalid token "
                f"{mask_token(cookie_token)}."
            )
            return _post_login_redirect(settings, mcp_session_id, error="invalid_session")
        session_token, backend_session = cookie_token, validation.session
    else:
        backend_session = await token_handler.get_session(request.headers.get("cookie", ""))
        if backend_session is None or not backend_session.session_token:
            logger.warning(
                f"Callback for MCP session '{mask_token(mcp_session_id)}' found no backend session."
            )
            return _post_login_redirect(settings, mcp_session_id, error="no_session")
        session_token = backend_session.session_token

    expires_at = _session_expiry(backend_session, settings)
    await session_store.set(mcp_session_id, session_token, backend_session.user.id, expires_at)
    logger.info(
        f"MCP session '{mask_token(mcp_session_id)}' authenticated as user '{backend_session.user.id}' "
        f"until {expires_at.isoformat()}."
    )
    return _post_login_redirect(settings, mcp_session_id)


@login_router.get("/api/auth/status", name="mcp_auth_status")
async def mcp_auth_status(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    session_store: Annotated[AbstractSessionStore, Depends(get_session_store)],
):
    """
    Polling endpoint for the login flow.

    ``pending`` until the callback has stored a session for the id,
    ``completed`` afterwards. Reads the session store only.
    """
    mcp_session_id = extract_mcp_session_id(request, settings)
    if not mcp_session_id:
        raise InvalidRequestError("No MCP session ID provided")

    session = await session_store.get(mcp_session_id)
    if session is None:
        return {
            "status": "pending",
            "authenticated": False,
            "mcp_session_id": mcp_session_id,
            "authUrl": build_auth_url(mcp_session_id, settings),
        }
    return {
        "status": "completed",
        "authenticated": True,
        "mcp_session_id": mcp_session_id,
        "user": {"id": session.user_id},
        "expiresAt": session.expires_at.isoformat(),
    }


@login_router.delete("/api/auth/session", name="mcp_logout", status_code=status.HTTP_200_OK)
async def mcp_logout(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    session_store: Annotated[AbstractSessionStore, Depends(get_session_store)],
):
    """Unbinds the backend session from an MCP session."""
    mcp_session_id = extract_mcp_session_id(request, settings)
    if not mcp_session_id:
        raise InvalidRequestError("No MCP session ID provided")
    await session_store.delete(mcp_session_id)
    return {"success": True, "authenticated": False, "mcp_session_id": mcp_session_id}
