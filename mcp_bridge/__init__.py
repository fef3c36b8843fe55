# mcp_bridge/__init__.py
"""
MCP Bridge.

Serves an MCP JSON-RPC endpoint and the OAuth discovery surface needed by a
chat-assistant host, bridging MCP session ids to backend auth sessions.
"""

__version__ = "1.0.0"
