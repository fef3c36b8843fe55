# mcp_bridge/oauth/errors.py
from fastapi import HTTPException, status
from typing import Optional


class OAuthError(HTTPException):
    """Base class for OAuth errors rendered as RFC 6749 error bodies."""

    def __init__(
        self,
        status_code: int,
        error: str,
        error_description: Optional[str] = None,
        headers: Optional[dict] = None,
    ):
        self.error = error
        self.error_description = error_description

        detail = {"error": error}
        if error_description:
            detail["error_description"] = error_description

        super().__init__(status_code=status_code, detail=detail, headers=headers)


class InvalidRequestError(OAuthError):
    """
    The request is missing a required parameter or is otherwise malformed.
    (RFC 6749 - Section 5.2)
    """

    def __init__(self, error_description: Optional[str] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="invalid_request",
            error_description=error_description,
        )


class InvalidClientMetadataError(OAuthError):
    """
    The value of one of the client metadata fields is invalid.
    (RFC 7591 - Section 3.2.2)
    """

    def __init__(self, error_description: Optional[str] = "Invalid client metadata."):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="invalid_client_metadata",
            error_description=error_description,
        )


class InvalidRedirectURIError(OAuthError):
    """(RFC 7591 - Section 3.2.2)"""

    def __init__(self, error_description: Optional[str] = "Invalid redirect URI."):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="invalid_redirect_uri",
            error_description=error_description,
        )

