# mcp_bridge/oauth/__init__.py
# OAuth discovery and client registration surface for MCP Bridge

from .models import (
    AuthorizationServerMetadata,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    DiscoveryConfig,
    MCPServerInfo,
    OpenIDConfiguration,
    ProtectedResourceMetadata,
)

from .errors import (
    OAuthError,
    InvalidRequestError,
    InvalidClientMetadataError,
    InvalidRedirectURIError,
)

from .metadata import MetadataGenerator

__all__ = [
    "AuthorizationServerMetadata",
    "ClientRegistrationRequest",
    "ClientRegistrationResponse",
    "DiscoveryConfig",
    "MCPServerInfo",
    "OpenIDConfiguration",
    "ProtectedResourceMetadata",
    "OAuthError",
    "InvalidRequestError",
    "InvalidClientMetadataError",
    "InvalidRedirectURIError",
    "MetadataGenerator",
]
