# mcp_bridge/backend_auth/token_handler.py
import logging
import re
from datetime import datetime, timezone
from typing import Optional

import httpx
from pydantic import ValidationError

from ..settings import Settings
from ..utils.security import mask_token
from .models import BackendSession, TokenValidationResult

logger = logging.getLogger(__name__)

GET_SESSION_PATH = "/api/auth/get-session"
REFRESH_SESSION_PATH = "/api/auth/refresh-session"


class BetterAuthTokenHandler:
    """
    Validates and refreshes backend session tokens against the auth service.

    Every failure (network, timeout, non-2xx, malformed body) is reported
    through the return value. Nothing raised by the HTTP layer escapes.
    """

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings):
        self._client = http_client
        self._settings = settings
        self._auth_base_url = settings.resolved_auth_service_url
        self._timeout = httpx.Timeout(settings.outbound_timeout_seconds)
        self._refresh_threshold_seconds = settings.token_refresh_threshold_seconds
        self._set_cookie_pattern = re.compile(
            rf"{re.escape(settings.auth_cookie_name)}=([^;]+)"
        )

    def _cookie_header(self, token: str) -> dict:
        return {"Cookie": f"{self._settings.auth_cookie_name}={token}"}

    def _needs_refresh(self, expires_at: Optional[datetime]) -> bool:
        if expires_at is None:
            return True
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        remaining = (expires_at - datetime.now(timezone.utc)).total_seconds()
        return remaining < self._refresh_threshold_seconds

    async def _fetch_session(self, headers: dict) -> Optional[BackendSession]:
        url = f"{self._auth_base_url}{GET_SESSION_PATH}"
        try:
            response = await self._client.get(url, headers=headers, timeout=self._timeout)
        except httpx.HTTPError as e:
            logger.warning(f"Auth service unreachable during get-session: {e!r}")
            return None

        if not response.is_success:
            logger.info(f"get-session rejected the credential (HTTP {response.status_code}).")
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("get-session returned a non-JSON body.")
            return None

        if not isinstance(payload, dict) or not payload.get("user"):
            logger.info("get-session returned no user; treating credential as invalid.")
            return None

        try:
            return BackendSession.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"get-session payload did not match the expected shape: {e}")
            return None

    async def validate(self, token: str) -> TokenValidationResult:
        """
        Checks a backend token with the auth service.

        needs_refresh is set when the reported expiry is less than the
        refresh threshold away, or when no expiry is reported at all.
        """
        if not token:
            return TokenValidationResult.invalid()

        session = await self._fetch_session(self._cookie_header(token))
        if session is None:
            logger.debug(f"Token {mask_token(token)} failed validation.")
            return TokenValidationResult.invalid()

        needs_refresh = self._needs_refresh(session.expires_at)
        logger.debug(
            f"Token {mask_token(token)} valid for user '{session.user.id}'. "
            f"needs_refresh={needs_refresh}"
        )
        return TokenValidationResult(valid=True, session=session, needs_refresh=needs_refresh)

    async def get_session(self, cookie_header: str) -> Optional[BackendSession]:
        """Looks up the backend session for a raw, browser-forwarded Cookie header."""
        if not cookie_header:
            return None
        return await self._fetch_session({"Cookie": cookie_header})

    async def refresh(self, token: str) -> Optional[str]:
        """
        Exchanges a token for a rotated one.

        The new token is read from the Set-Cookie headers of the refresh
        response. Returns None on any failure; the caller decides whether
        the old token is still usable.
        """
        url = f"{self._auth_base_url}{REFRESH_SESSION_PATH}"
        try:
            response = await self._client.post(
                url, headers=self._cookie_header(token), timeout=self._timeout
            )
        except httpx.HTTPError as e:
            logger.warning(f"Auth service unreachable during refresh: {e!r}")
            return None

        if not response.is_success:
            logger.info(f"Token refresh rejected (HTTP {response.status_code}).")
            return None

        for set_cookie in response.headers.get_list("set-cookie"):
            match = self._set_cookie_pattern.search(set_cookie)
            if match:
                new_token = match.group(1)
                logger.info(f"Token {mask_token(token)} refreshed to {mask_token(new_token)}.")
                return new_token

        logger.warning("Refresh succeeded but no rotated session cookie was returned.")
        return None
