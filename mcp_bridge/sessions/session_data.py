# mcp_bridge/sessions/session_data.py
from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MCPSession(BaseModel):
    """
    Binds an MCP session id to a backend auth session.

    The session store owns these records exclusively. A refresh overwrites
    the record in place under the same mcp_session_id.
    """

    mcp_session_id: str = Field(
        description="The MCP session identifier provided by the client or minted by the server."
    )
    auth_session_token: str = Field(
        description="Opaque backend credential. Never parsed by this layer."
    )
    user_id: Optional[str] = Field(
        default=None,
        description="Backend user identifier, informational only."
    )

    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime

    @model_validator(mode="after")
    def _check_lifetime(self) -> "MCPSession":
        self.created_at = as_utc(self.created_at)
        self.expires_at = as_utc(self.expires_at)
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or utc_now())
