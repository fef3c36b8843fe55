# mcp_bridge/sessions/session_id.py
import logging
from typing import Optional, Tuple
from urllib.parse import urlencode
from uuid import uuid4

from starlette.requests import Request

from ..settings import Settings, settings as default_settings
from ..utils.security import mask_token

logger = logging.getLogger(__name__)

BEARER_SESSION_PREFIX = "mcp-session:"


def generate_mcp_session_id() -> str:
    """Mints a new MCP session id of the form mcp_<uuid4>."""
    return f"mcp_{uuid4()}"


def _session_id_from_authorization(auth_header: Optional[str]) -> Optional[str]:
    if not auth_header:
        return None
    parts = auth_header.split(None, 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    if token.startswith(BEARER_SESSION_PREFIX):
        return token[len(BEARER_SESSION_PREFIX):] or None
    return None


def extract_mcp_session_id(request: Request, settings: Optional[Settings] = None) -> Optional[str]:
    """
    Finds the MCP session id carried by a request.

    Looked up in order: the session header, an
    ``Authorization: Bearer mcp-session:<id>`` value, then the query
    parameter. Returns None when none of them is present.
    """
    cfg = settings or default_settings

    header_value = request.headers.get(cfg.session_id_header)
    if header_value and header_value.strip():
        return header_value.strip()

    bearer_value = _session_id_from_authorization(request.headers.get("Authorization"))
    if bearer_value:
        return bearer_value

    query_value = request.query_params.get(cfg.session_id_query_param)
    if query_value and query_value.strip():
        return query_value.strip()

    return None


def resolve_mcp_session_id(request: Request, settings: Optional[Settings] = None) -> Tuple[str, bool]:
    """Returns (session_id, was_minted), minting an id when the request has none."""
    existing = extract_mcp_session_id(request, settings)
    if existing:
        return existing, False
    new_id = generate_mcp_session_id()
    logger.debug(f"No MCP session id on request; minted '{mask_token(new_id)}'.")
    return new_id, True


def build_auth_url(mcp_session_id: str, settings: Optional[Settings] = None) -> str:
    """The login URL a client must visit to bind a backend session to mcp_session_id."""
    cfg = settings or default_settings
    query = urlencode({
        cfg.session_id_query_param: mcp_session_id,
        "mcp_auth_required": "true",
    })
    return f"{cfg.resolved_base_url}/?{query}"
