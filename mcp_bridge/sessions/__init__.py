# mcp_bridge/sessions/__init__.py
"""
Session management for MCP Bridge.

Holds the MCP session record, the storage backends that own it, and the
helpers that find a session id on an inbound request.
"""

from .session_data import MCPSession
from .session_store import (
    AbstractSessionStore,
    InMemorySessionStore,
    RedisSessionStore,
    create_session_store,
)
from .session_id import (
    build_auth_url,
    extract_mcp_session_id,
    generate_mcp_session_id,
    resolve_mcp_session_id,
)

__all__ = [
    "MCPSession",
    "AbstractSessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    "create_session_store",
    "build_auth_url",
    "extract_mcp_session_id",
    "generate_mcp_session_id",
    "resolve_mcp_session_id",
]
