# mcp_bridge/tools/backend_client.py
import logging
from typing import Any, Dict, Optional

import httpx
from fastmcp.exceptions import ToolError

from ..settings import Settings
from .registry import ToolContext

logger = logging.getLogger(__name__)


class BackendAppClient:
    """
    Calls the backend application on behalf of an authenticated user.

    The backend token is sent both as the auth cookie and as a bearer
    credential. Any failure is raised as ToolError so it reaches the user
    as a readable tool result.
    """

    def __init__(self, http_client: httpx.AsyncClient, settings: Settings):
        self._client = http_client
        self._settings = settings
        self._base_url = settings.resolved_backend_app_url
        self._timeout = httpx.Timeout(settings.outbound_timeout_seconds)

    def _auth_headers(self, context: ToolContext) -> Dict[str, str]:
        return {
            "Cookie": f"{self._settings.auth_cookie_name}={context.session_token}",
            "Authorization": f"Bearer {context.session_token}",
        }

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for key in ("error", "message"):
                value = body.get(key)
                if isinstance(value, str) and value:
                    return value
        return f"HTTP {response.status_code}"

    async def _request(
        self,
        method: str,
        path: str,
        context: ToolContext,
        *,
        json_payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        logger.debug(f"Backend {method} {url} for user '{context.user_id}'")
        try:
            response = await self._client.request(
                method,
                url,
                json=json_payload,
                params=params,
                headers=self._auth_headers(context),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Backend {method} {path} timed out: {e!r}")
            raise ToolError(f"Backend request timed out: {path}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Backend {method} {path} failed: {e!r}")
            raise ToolError(f"Backend request failed: {e}") from e

        if not response.is_success:
            message = self._error_message(response)
            logger.info(f"Backend {method} {path} returned {response.status_code}: {message}")
            raise ToolError(message)

        try:
            return response.json()
        except ValueError as e:
            raise ToolError(f"Backend returned a non-JSON response for {path}") from e

    async def post_json(self, path: str, context: ToolContext, payload: Dict[str, Any]) -> Any:
        return await self._request("POST", path, context, json_payload=payload)

    async def get_json(
        self, path: str, context: ToolContext, params: Optional[Dict[str, Any]] = None
    ) -> Any:
        return await self._request("GET", path, context, params=params)
