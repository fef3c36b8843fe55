# mcp_bridge/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# This settings.py file is at <project>/mcp_bridge/settings.py
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
DOTENV_PATH = PROJECT_ROOT / ".env"

SEVEN_DAYS_SECONDS = 7 * 24 * 3600


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    app_name: str = "MCP Bridge"
    debug_mode: bool = False
    log_level: str = "INFO"

    # Public URL of this server; used as OAuth issuer and for authorization URLs
    base_url: str = "http://localhost:3000"
    # Backend application that serves the tool APIs
    backend_app_url: str = "http://localhost:3001"
    # Better Auth service; falls back to backend_app_url when unset
    auth_service_url: Optional[str] = None

    # Session storage
    session_store_backend: str = Field(
        default="memory",
        description="'memory' for the in-process store, 'redis' for a durable one."
    )
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    session_encryption_key: Optional[str] = Field(
        default=None,
        description="Fernet key used to encrypt backend tokens held in Redis."
    )

    # Session and token lifetimes
    session_sweep_interval_seconds: int = 300
    token_refresh_threshold_seconds: int = 300
    default_session_lifetime_seconds: int = SEVEN_DAYS_SECONDS
    outbound_timeout_seconds: float = 10.0

    # Backend credential and session id propagation
    auth_cookie_name: str = "better-auth.session_token"
    session_id_header: str = "X-MCP-Session-ID"
    session_id_query_param: str = "mcp_session_id"

    # MCP server identity
    mcp_protocol_version: str = "2024-11-05"
    server_name: str = "blackbox-mcp-server"
    server_version: str = "1.0.0"

    scopes_supported: List[str] = Field(default_factory=lambda: ["openid", "profile", "email"])
    discovery_cache_max_age: int = 3600

    model_config = SettingsConfigDict(
        env_file=DOTENV_PATH if DOTENV_PATH.exists() else None,
        extra="ignore",
        env_file_encoding='utf-8'
    )

    @property
    def resolved_auth_service_url(self) -> str:
        """Better Auth base URL without a trailing slash."""
        return (self.auth_service_url or self.backend_app_url).rstrip("/")

    @property
    def resolved_backend_app_url(self) -> str:
        return self.backend_app_url.rstrip("/")

    @property
    def resolved_base_url(self) -> str:
        return self.base_url.rstrip("/")


settings = Settings()

logger.debug(
    f"Settings loaded. base_url='{settings.base_url}', "
    f"auth_service_url='{settings.resolved_auth_service_url}', "
    f"session_store_backend='{settings.session_store_backend}', "
    f"session_encryption_key={'********' if settings.session_encryption_key else 'None'}"
)
