# mcp_bridge/backend_auth/models.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


class BackendUser(BaseModel):
    """User record as reported by the auth service's get-session endpoint."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    email: Optional[str] = None
    name: Optional[str] = None


class BackendSessionInfo(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[str] = None
    token: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")


class BackendSession(BaseModel):
    """The ``{user, session}`` payload returned for a valid backend token."""
    model_config = ConfigDict(extra="allow")

    user: BackendUser
    session: BackendSessionInfo = Field(default_factory=BackendSessionInfo)

    @property
    def session_token(self) -> Optional[str]:
        return self.session.token or self.session.id

    @property
    def expires_at(self) -> Optional[datetime]:
        return self.session.expires_at


class TokenValidationResult(BaseModel):
    """Outcome of validating a backend token. Never persisted."""
    valid: bool
    session: Optional[BackendSession] = None
    needs_refresh: bool = False

    @classmethod
    def invalid(cls) -> "TokenValidationResult":
        return cls(valid=False)
