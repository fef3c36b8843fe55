from .models import BackendSession, BackendSessionInfo, BackendUser, TokenValidationResult
from .token_handler import BetterAuthTokenHandler

__all__ = [
    "BackendSession",
    "BackendSessionInfo",
    "BackendUser",
    "TokenValidationResult",
    "BetterAuthTokenHandler",
]
