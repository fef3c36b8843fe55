# mcp_bridge/oauth/models.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List

from ..settings import Settings


class DiscoveryConfig(BaseModel):
    """
    Every URL and constant the discovery documents are built from.

    Built once from settings so all well-known routes agree on the same
    issuer, endpoints and scopes.
    """
    model_config = ConfigDict(frozen=True)

    base_url: str
    auth_service_url: str
    server_name: str
    server_version: str
    protocol_version: str
    scopes_supported: List[str]
    registration_path: str = "/api/auth/oauth/register"
    default_mcp_path: str = "/mcp"

    @classmethod
    def from_settings(cls, settings: Settings) -> "DiscoveryConfig":
        return cls(
            base_url=settings.resolved_base_url,
            auth_service_url=settings.resolved_auth_service_url,
            server_name=settings.server_name,
            server_version=settings.server_version,
            protocol_version=settings.mcp_protocol_version,
            scopes_supported=list(settings.scopes_supported),
        )

    @property
    def issuer(self) -> str:
        return self.base_url

    @property
    def authorization_endpoint(self) -> str:
        return self.base_url

    @property
    def token_endpoint(self) -> str:
        return f"{self.auth_service_url}/api/auth/token"

    @property
    def introspection_endpoint(self) -> str:
        return f"{self.auth_service_url}/api/auth/get-session"

    @property
    def userinfo_endpoint(self) -> str:
        return f"{self.auth_service_url}/api/auth/userinfo"

    @property
    def jwks_uri(self) -> str:
        return f"{self.auth_service_url}/api/auth/jwks"

    @property
    def registration_endpoint(self) -> str:
        return f"{self.base_url}{self.registration_path}"

    @property
    def mcp_auth_endpoint(self) -> str:
        return f"{self.base_url}?mcp_auth_required=true"

    def mcp_server_url(self, mcp_path: Optional[str] = None) -> str:
        return f"{self.base_url}{mcp_path or self.default_mcp_path}"


class AuthorizationServerMetadata(BaseModel):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414) with MCP hints."""
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    introspection_endpoint: str
    registration_endpoint: str
    response_types_supported: List[str] = ["code"]
    grant_types_supported: List[str] = ["authorization_code", "refresh_token"]
    code_challenge_methods_supported: List[str] = ["S256"]
    scopes_supported: List[str]
    mcp_oauth_required: bool = True
    mcp_auth_endpoint: str
    mcp_server: str


class OpenIDConfiguration(AuthorizationServerMetadata):
    userinfo_endpoint: str
    jwks_uri: str
    subject_types_supported: List[str] = ["public"]
    id_token_signing_alg_values_supported: List[str] = ["RS256"]
    token_endpoint_auth_methods_supported: List[str] = ["client_secret_basic", "client_secret_post"]
    claims_supported: List[str] = ["sub", "name", "email", "email_verified", "picture"]


class ProtectedResourceMetadata(BaseModel):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    resource: str
    authorization_servers: List[str]
    scopes_supported: List[str]
    bearer_methods_supported: List[str] = ["header"]
    mcp_oauth_required: bool = True
    mcp_auth_endpoint: str


class MCPServerCapabilities(BaseModel):
    tools: bool = True
    prompts: bool = False
    resources: bool = False


class MCPServerOAuthInfo(BaseModel):
    required: bool = True
    authorizationServerMetadataUrl: str
    protectedResourceMetadataUrl: str
    clientRegistrationUrl: str


class MCPServerInfo(BaseModel):
    """Server discovery document served at GET /mcp and /.well-known/mcp.json."""
    name: str
    version: str
    description: str = "Blackbox MCP server with OAuth authentication"
    mcpVersion: str
    capabilities: MCPServerCapabilities = Field(default_factory=MCPServerCapabilities)
    oauth: MCPServerOAuthInfo
    server: str


class ClientRegistrationRequest(BaseModel):
    """RFC 7591 client metadata. Unrecognized metadata is echoed back."""
    model_config = ConfigDict(extra="allow")

    redirect_uris: List[str] = Field(default_factory=list)
    client_name: Optional[str] = None
    grant_types: List[str] = Field(default_factory=lambda: ["authorization_code", "refresh_token"])
    response_types: List[str] = Field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "client_secret_post"
    scope: Optional[str] = None


class ClientRegistrationResponse(ClientRegistrationRequest):
    client_id: str
    client_secret: Optional[str] = None
    client_id_issued_at: int
    client_secret_expires_at: int = 0
