"""
Shared fixtures for MCP Bridge tests.

Provides:
- Settings pointing at fake auth-service and backend hosts
- FakeBlackboxBackend, an httpx.MockTransport handler standing in for the
  Better Auth service and the backend application
- An in-memory session store and an app wired to both
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

import httpx
import pytest

from mcp_bridge.main import create_app
from mcp_bridge.sessions import InMemorySessionStore
from mcp_bridge.settings import Settings

# =============================================================================
# Test Constants
# =============================================================================

BASE_URL = "http://bridge.test"
AUTH_URL = "http://auth.test"
BACKEND_URL = "http://backend.test"
COOKIE_NAME = "better-auth.session_token"
SECURE_COOKIE_NAME = "__Secure-better-auth.session_token"

TEST_USER_ID = "user-123"
TEST_USER_EMAIL = "alice@example.com"
TEST_TOKEN = "tok-valid-abc"


def utc_in(**delta) -> datetime:
    return datetime.now(timezone.utc) + timedelta(**delta)


def iso_z(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_cookie_header(header: str) -> Dict[str, str]:
    cookies: Dict[str, str] = {}
    for part in header.split(";"):
        name, sep, value = part.strip().partition("=")
        if sep:
            cookies[name] = value
    return cookies


# =============================================================================
# Fake auth service + backend application
# =============================================================================


class FakeBlackboxBackend:
    """
    Minimal Better Auth + backend application.

    Tokens live in ``self.tokens``; each maps to the user and expiry that
    get-session reports. Every handled request is appended to ``self.calls``.
    """

    def __init__(self):
        self.tokens: Dict[str, Dict[str, Any]] = {}
        self.calls: List[httpx.Request] = []
        self.refresh_enabled = True
        self.refresh_expiry_delta = timedelta(days=7)
        self.network_down = False
        self.credits_error: Optional[httpx.Response] = None
        self.build_app_error: Optional[httpx.Response] = None
        self._rotation = 0

    def add_token(
        self,
        token: str = TEST_TOKEN,
        user_id: str = TEST_USER_ID,
        email: Optional[str] = TEST_USER_EMAIL,
        expires_at: Optional[datetime] = None,
    ) -> str:
        self.tokens[token] = {
            "user_id": user_id,
            "email": email,
            "expires_at": expires_at if expires_at is not None else utc_in(days=7),
        }
        return token

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.calls if r.url.path == path]

    def _token_from(self, request: httpx.Request) -> Optional[str]:
        cookies = parse_cookie_header(request.headers.get("cookie", ""))
        return cookies.get(COOKIE_NAME) or cookies.get(SECURE_COOKIE_NAME)

    def _session_payload(self, token: str) -> Dict[str, Any]:
        record = self.tokens[token]
        return {
            "user": {"id": record["user_id"], "email": record["email"], "name": "Alice"},
            "session": {
                "id": f"sess-{token}",
                "token": token,
                "userId": record["user_id"],
                "expiresAt": iso_z(record["expires_at"]),
            },
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.network_down:
            raise httpx.ConnectError("connection refused", request=request)

        host, path = request.url.host, request.url.path

        if host == "auth.test" and path == "/api/auth/get-session":
            token = self._token_from(request)
            if token in self.tokens:
                return httpx.Response(200, json=self._session_payload(token))
            return httpx.Response(401, json={"error": "unauthorized"})

        if host == "auth.test" and path == "/api/auth/refresh-session":
            token = self._token_from(request)
            if not self.refresh_enabled or token not in self.tokens:
                return httpx.Response(500, json={"error": "refresh failed"})
            self._rotation += 1
            new_token = f"{token}-r{self._rotation}"
            record = self.tokens[token]
            self.add_token(
                new_token,
                user_id=record["user_id"],
                email=record["email"],
                expires_at=datetime.now(timezone.utc) + self.refresh_expiry_delta,
            )
            return httpx.Response(
                200,
                json={"ok": True},
                headers=[
                    ("set-cookie", "other_cookie=1; Path=/"),
                    ("set-cookie", f"{COOKIE_NAME}={new_token}; Path=/; HttpOnly; SameSite=Lax"),
                ],
            )

        if host == "backend.test" and path == "/api/mcp/credits":
            if self.credits_error is not None:
                return self.credits_error
            email = parse_qs(request.url.query.decode()).get("email", [None])[0]
            return httpx.Response(200, json={"credits": 42, "email": email, "plan": "pro"})

        if host == "backend.test" and path == "/api/mcp/build-app":
            if self.build_app_error is not None:
                return self.build_app_error
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={"appId": "app_001", "status": "building", "prompt": body.get("prompt")},
            )

        return httpx.Response(404, json={"error": f"no route for {host}{path}"})


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        base_url=BASE_URL,
        auth_service_url=AUTH_URL,
        backend_app_url=BACKEND_URL,
        session_store_backend="memory",
    )


@pytest.fixture
def fake_backend() -> FakeBlackboxBackend:
    backend = FakeBlackboxBackend()
    backend.add_token()
    return backend


@pytest.fixture
def outbound_client(fake_backend) -> httpx.AsyncClient:
    """Outbound client whose requests are answered by fake_backend."""
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_backend))


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore(sweep_interval_seconds=300)


@pytest.fixture
def bridge_app(test_settings, session_store, outbound_client):
    return create_app(
        settings=test_settings,
        session_store=session_store,
        http_client=outbound_client,
    )


def bridge_client(app) -> httpx.AsyncClient:
    """In-process client for the bridge app. Use with ``async with``."""
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL)


def rpc(method: str, params: Optional[Dict[str, Any]] = None, request_id: Any = 1) -> Dict[str, Any]:
    message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        message["params"] = params
    return message
