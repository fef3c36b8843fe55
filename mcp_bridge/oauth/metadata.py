# mcp_bridge/oauth/metadata.py
import logging
from typing import Optional

from .models import (
    AuthorizationServerMetadata,
    DiscoveryConfig,
    MCPServerInfo,
    MCPServerOAuthInfo,
    OpenIDConfiguration,
    ProtectedResourceMetadata,
)

logger = logging.getLogger(__name__)

AUTHORIZATION_SERVER_WELL_KNOWN = "/.well-known/oauth-authorization-server"
PROTECTED_RESOURCE_WELL_KNOWN = "/.well-known/oauth-protected-resource"


class MetadataGenerator:
    """Single source for every discovery document the server publishes."""

    def __init__(self, config: DiscoveryConfig):
        self.config = config

    def authorization_server_metadata(
        self, mcp_path: Optional[str] = None
    ) -> AuthorizationServerMetadata:
        cfg = self.config
        return AuthorizationServerMetadata(
            issuer=cfg.issuer,
            authorization_endpoint=cfg.authorization_endpoint,
            token_endpoint=cfg.token_endpoint,
            introspection_endpoint=cfg.introspection_endpoint,
            registration_endpoint=cfg.registration_endpoint,
            scopes_supported=list(cfg.scopes_supported),
            mcp_auth_endpoint=cfg.mcp_auth_endpoint,
            mcp_server=cfg.mcp_server_url(mcp_path),
        )

    def protected_resource_metadata(
        self,
        mcp_path: Optional[str] = None,
        authorization_server_path: str = AUTHORIZATION_SERVER_WELL_KNOWN,
    ) -> ProtectedResourceMetadata:
        cfg = self.config
        return ProtectedResourceMetadata(
            resource=cfg.mcp_server_url(mcp_path),
            authorization_servers=[f"{cfg.base_url}{authorization_server_path}"],
            scopes_supported=list(cfg.scopes_supported),
            mcp_auth_endpoint=cfg.mcp_auth_endpoint,
        )

    def openid_configuration(self, mcp_path: Optional[str] = None) -> OpenIDConfiguration:
        cfg = self.config
        base = self.authorization_server_metadata(mcp_path)
        return OpenIDConfiguration(
            **base.model_dump(),
            userinfo_endpoint=cfg.userinfo_endpoint,
            jwks_uri=cfg.jwks_uri,
        )

    def mcp_server_info(
        self, mcp_path: Optional[str] = None, discovery_base_path: Optional[str] = None
    ) -> MCPServerInfo:
        """
        Describes the MCP endpoint and where its OAuth metadata lives.

        discovery_base_path defaults to the server-wide /.well-known
        documents; pass e.g. "/mcp/.well-known" for the path-scoped ones.
        """
        cfg = self.config
        discovery_base = f"{cfg.base_url}{discovery_base_path or '/.well-known'}"
        return MCPServerInfo(
            name=cfg.server_name,
            version=cfg.server_version,
            mcpVersion=cfg.protocol_version,
            oauth=MCPServerOAuthInfo(
                authorizationServerMetadataUrl=f"{discovery_base}/oauth-authorization-server",
                protectedResourceMetadataUrl=f"{discovery_base}/oauth-protected-resource",
                clientRegistrationUrl=cfg.registration_endpoint,
            ),
            server=cfg.mcp_server_url(mcp_path),
        )

    def initialize_oauth_capability(self) -> dict:
        """The experimental.oauth block advertised in the initialize result."""
        cfg = self.config
        return {
            "authorizationServerMetadataUrl": f"{cfg.base_url}{AUTHORIZATION_SERVER_WELL_KNOWN}",
            "protectedResourceMetadataUrl": f"{cfg.base_url}{PROTECTED_RESOURCE_WELL_KNOWN}",
            "clientRegistrationUrl": cfg.registration_endpoint,
        }
