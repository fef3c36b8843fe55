"""
End-to-end tests for the MCP JSON-RPC endpoint.

Requests go through the full FastAPI app; the auth service and the backend
application are answered by FakeBlackboxBackend.
"""

import logging
from datetime import timedelta

import httpx
import pytest

from conftest import (
    BASE_URL,
    COOKIE_NAME,
    TEST_TOKEN,
    TEST_USER_EMAIL,
    TEST_USER_ID,
    bridge_client,
    rpc,
    utc_in,
)
from mcp_bridge.main import create_app
from mcp_bridge.mcp_handlers.dispatcher import AuthState
from mcp_bridge.tools import MCPTool, ToolArguments, ToolRegistry

SESSION_ID = "mcp_test-session"
SESSION_HEADERS = {"X-MCP-Session-ID": SESSION_ID}


async def authenticate(session_store, token: str = TEST_TOKEN, session_id: str = SESSION_ID):
    await session_store.set(session_id, token, TEST_USER_ID, utc_in(days=7))


def expected_auth_url(session_id: str) -> str:
    return f"{BASE_URL}/?mcp_session_id={session_id}&mcp_auth_required=true"


class TestUnauthenticatedMethods:
    """initialize and ping never require a login."""

    @pytest.mark.asyncio
    async def test_ping(self, bridge_app):
        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=rpc("ping", request_id=3))

        assert response.status_code == 200
        assert response.json() == {"jsonrpc": "2.0", "id": 3, "result": "pong"}

    @pytest.mark.asyncio
    async def test_initialize_mints_session_and_returns_auth_url(self, bridge_app):
        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=rpc("initialize", {"protocolVersion": "2024-11-05"}))

        assert response.status_code == 200
        minted = response.headers["X-MCP-Session-ID"]
        assert minted.startswith("mcp_")
        result = response.json()["result"]
        assert result["protocolVersion"] == "2024-11-05"
        assert result["serverInfo"] == {"name": "blackbox-mcp-server", "version": "1.0.0"}
        assert result["capabilities"]["tools"] == {}
        oauth = result["capabilities"]["experimental"]["oauth"]
        assert oauth["clientRegistrationUrl"] == f"{BASE_URL}/api/auth/oauth/register"
        assert result["authUrl"] == expected_auth_url(minted)

    @pytest.mark.asyncio
    async def test_initialize_when_authenticated_has_no_auth_url(self, bridge_app, session_store):
        await authenticate(session_store)

        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=rpc("initialize"), headers=SESSION_HEADERS)

        assert response.status_code == 200
        assert response.headers["X-MCP-Session-ID"] == SESSION_ID
        assert "authUrl" not in response.json()["result"]

    @pytest.mark.asyncio
    async def test_notifications_are_accepted_without_body(self, bridge_app):
        message = {"jsonrpc": "2.0", "method": "notifications/initialized"}

        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=message, headers=SESSION_HEADERS)

        assert response.status_code == 202
        assert response.content == b""


class TestAuthGate:
    """tools/list and tools/call without a live session."""

    @pytest.mark.asyncio
    async def test_tools_list_requires_auth(self, bridge_app):
        async with bridge_client(bridge_app) as client:
            response = await client.post(
                "/mcp",
                json=rpc("tools/list", request_id="abc"),
                headers={**SESSION_HEADERS, "Accept": "application/json, text/event-stream"},
            )

        assert response.status_code == 401
        body = response.json()
        assert body["id"] == "abc"
        assert body["error"]["code"] == -32001
        assert body["error"]["message"] == "Authentication required"
        assert body["error"]["data"]["authUrl"] == expected_auth_url(SESSION_ID)
        assert response.headers["X-MCP-Session-ID"] == SESSION_ID

    @pytest.mark.asyncio
    async def test_tools_call_requires_auth(self, bridge_app, fake_backend):
        async with bridge_client(bridge_app) as client:
            response = await client.post(
                "/mcp",
                json=rpc("tools/call", {"name": "check_credits", "arguments": {}}),
                headers=SESSION_HEADERS,
            )

        assert response.status_code == 401
        assert fake_backend.calls_to("/api/mcp/credits") == []

    @pytest.mark.asyncio
    async def test_get_request_is_redirected_to_login(self, bridge_app):
        async with bridge_client(bridge_app) as client:
            response = await client.get(
                "/mcp", params={"method": "tools/list"}, headers=SESSION_HEADERS
            )

        assert response.status_code == 302
        assert response.headers["location"] == expected_auth_url(SESSION_ID)

    @pytest.mark.asyncio
    async def test_html_only_post_is_redirected_to_login(self, bridge_app):
        async with bridge_client(bridge_app) as client:
            response = await client.post(
                "/mcp",
                json=rpc("tools/list"),
                headers={**SESSION_HEADERS, "Accept": "text/html"},
            )

        assert response.status_code == 302
        assert response.headers["location"] == expected_auth_url(SESSION_ID)

    @pytest.mark.asyncio
    async def test_expired_session_is_rejected_and_removed(self, bridge_app, session_store):
        await session_store.set(SESSION_ID, TEST_TOKEN, TEST_USER_ID, utc_in(hours=1))
        params = {"name": "check_credits", "arguments": {}}

        async with bridge_client(bridge_app) as client:
            before = await client.post("/mcp", json=rpc("tools/call", params), headers=SESSION_HEADERS)
            session_store._sessions[SESSION_ID].expires_at = utc_in(seconds=-1)
            after = await client.post("/mcp", json=rpc("tools/call", params), headers=SESSION_HEADERS)

        assert before.status_code == 200
        assert before.json()["result"]["isError"] is False
        assert after.status_code == 401
        assert after.json()["error"]["code"] == -32001
        assert len(session_store) == 0

    @pytest.mark.asyncio
    async def test_revoked_backend_token_deletes_session(self, bridge_app, session_store):
        await authenticate(session_store, token="revoked-token")

        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=rpc("tools/list"), headers=SESSION_HEADERS)

        assert response.status_code == 401
        assert response.json()["error"]["code"] == -32001
        assert await session_store.get(SESSION_ID) is None

    @pytest.mark.asyncio
    async def test_unreachable_auth_service_is_unauthenticated(self, bridge_app, session_store, fake_backend):
        await authenticate(session_store)
        fake_backend.network_down = True

        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=rpc("tools/list"), headers=SESSION_HEADERS)

        assert response.status_code == 401


class TestAuthenticatedTools:
    """tools/list and tools/call with a bound session."""

    @pytest.mark.asyncio
    async def test_tools_list(self, bridge_app, session_store):
        await authenticate(session_store)

        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=rpc("tools/list"), headers=SESSION_HEADERS)

        assert response.status_code == 200
        tools = {tool["name"]: tool for tool in response.json()["result"]["tools"]}
        assert set(tools) == {"build_app", "check_credits"}
        assert tools["build_app"]["inputSchema"]["required"] == ["prompt"]

    @pytest.mark.asyncio
    async def test_check_credits_ignores_caller_supplied_email(self, bridge_app, session_store, fake_backend):
        await authenticate(session_store)
        params = {"name": "check_credits", "arguments": {"email": "mallory@example.com"}}

        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=rpc("tools/call", params), headers=SESSION_HEADERS)

        assert response.status_code == 200
        result = response.json()["result"]
        assert result["isError"] is False
        assert result["structuredContent"]["email"] == TEST_USER_EMAIL
        assert result["structuredContent"]["credits"] == 42
        assert fake_backend.calls_to("/api/mcp/credits")[0].url.params["email"] == TEST_USER_EMAIL

    @pytest.mark.asyncio
    async def test_build_app(self, bridge_app, session_store, fake_backend):
        await authenticate(session_store)
        params = {"name": "build_app", "arguments": {"prompt": "a todo app"}}

        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=rpc("tools/call", params), headers=SESSION_HEADERS)

        assert response.status_code == 200
        result = response.json()["result"]
        assert result["structuredContent"]["appId"] == "app_001"
        assert result["content"][0]["type"] == "text"
        backend_request = fake_backend.calls_to("/api/mcp/build-app")[0]
        assert backend_request.headers["cookie"] == f"{COOKIE_NAME}={TEST_TOKEN}"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, bridge_app, session_store):
        await authenticate(session_store)

        async with bridge_client(bridge_app) as client:
            response = await client.post(
                "/mcp", json=rpc("tools/call", {"name": "nope"}), headers=SESSION_HEADERS
            )

        assert response.status_code == 404
        assert response.json()["error"] == {"code": -32601, "message": "Tool not found: nope"}

    @pytest.mark.asyncio
    async def test_missing_required_argument(self, bridge_app, session_store, fake_backend):
        await authenticate(session_store)

        async with bridge_client(bridge_app) as client:
            response = await client.post(
                "/mcp",
                json=rpc("tools/call", {"name": "build_app", "arguments": {}}),
                headers=SESSION_HEADERS,
            )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == -32602
        assert error["data"]["errors"][0]["loc"] == ["prompt"]
        assert fake_backend.calls_to("/api/mcp/build-app") == []

    @pytest.mark.asyncio
    async def test_non_object_arguments(self, bridge_app, session_store):
        await authenticate(session_store)

        async with bridge_client(bridge_app) as client:
            response = await client.post(
                "/mcp",
                json=rpc("tools/call", {"name": "build_app", "arguments": ["x"]}),
                headers=SESSION_HEADERS,
            )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32602

    @pytest.mark.asyncio
    async def test_backend_failure_is_a_tool_result(self, bridge_app, session_store, fake_backend):
        await authenticate(session_store)
        fake_backend.build_app_error = httpx.Response(402, json={"error": "Insufficient credits"})
        params = {"name": "build_app", "arguments": {"prompt": "x"}}

        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=rpc("tools/call", params), headers=SESSION_HEADERS)

        assert response.status_code == 200
        result = response.json()["result"]
        assert result["isError"] is True
        assert result["content"][0]["text"] == "Error: Insufficient credits"

    @pytest.mark.asyncio
    async def test_unexpected_handler_exception_is_internal_error(
        self, test_settings, session_store, outbound_client
    ):
        class NoArgs(ToolArguments):
            pass

        async def explode(arguments, context):
            raise RuntimeError("boom")

        app = create_app(
            settings=test_settings,
            session_store=session_store,
            http_client=outbound_client,
            tool_registry=ToolRegistry([MCPTool("explode", "Always fails.", NoArgs, explode)]),
        )
        await authenticate(session_store)

        async with bridge_client(app) as client:
            response = await client.post(
                "/mcp", json=rpc("tools/call", {"name": "explode"}), headers=SESSION_HEADERS
            )

        assert response.status_code == 500
        assert response.json()["error"] == {"code": -32603, "message": "boom"}


class TestTokenRefresh:
    """Tokens close to expiry are rotated before the request proceeds."""

    @pytest.mark.asyncio
    async def test_rotated_token_replaces_stored_token(self, bridge_app, session_store, fake_backend):
        fake_backend.add_token("expiring", expires_at=utc_in(minutes=3))
        await authenticate(session_store, token="expiring")

        async with bridge_client(bridge_app) as client:
            listed = await client.post("/mcp", json=rpc("tools/list"), headers=SESSION_HEADERS)
            called = await client.post(
                "/mcp",
                json=rpc("tools/call", {"name": "build_app", "arguments": {"prompt": "x"}}),
                headers=SESSION_HEADERS,
            )

        assert listed.status_code == 200
        assert called.status_code == 200
        stored = await session_store.get(SESSION_ID)
        assert stored.auth_session_token == "expiring-r1"
        assert stored.expires_at > utc_in(days=7) - timedelta(minutes=1)
        backend_request = fake_backend.calls_to("/api/mcp/build-app")[0]
        assert backend_request.headers["cookie"] == f"{COOKIE_NAME}=expiring-r1"
        assert len(fake_backend.calls_to("/api/auth/refresh-session")) == 1

    @pytest.mark.asyncio
    async def test_refresh_resolves_to_authenticated(self, bridge_app, session_store, fake_backend):
        fake_backend.add_token("expiring", expires_at=utc_in(minutes=3))
        await authenticate(session_store, token="expiring")

        resolution = await bridge_app.state.dispatcher.resolve_auth(SESSION_ID)

        assert resolution.state is AuthState.AUTHENTICATED
        assert resolution.session_token == "expiring-r1"
        assert {state.value for state in AuthState} == {"unauthenticated", "authenticated"}

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_current_token(self, bridge_app, session_store, fake_backend):
        fake_backend.add_token("expiring", expires_at=utc_in(minutes=3))
        fake_backend.refresh_enabled = False
        await authenticate(session_store, token="expiring")

        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=rpc("tools/list"), headers=SESSION_HEADERS)

        assert response.status_code == 200
        assert (await session_store.get(SESSION_ID)).auth_session_token == "expiring"


class TestProtocolErrors:
    """Malformed and unsupported requests."""

    @pytest.mark.asyncio
    async def test_unknown_method(self, bridge_app):
        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=rpc("resources/list", request_id=9))

        assert response.status_code == 404
        body = response.json()
        assert body["id"] == 9
        assert body["error"]["code"] == -32601

    @pytest.mark.asyncio
    async def test_malformed_json(self, bridge_app):
        async with bridge_client(bridge_app) as client:
            response = await client.post(
                "/mcp", content=b"{not json", headers={"Content-Type": "application/json"}
            )

        assert response.status_code == 400
        body = response.json()
        assert body["id"] is None
        assert body["error"]["code"] == -32700
        assert response.headers["X-MCP-Session-ID"].startswith("mcp_")

    @pytest.mark.asyncio
    async def test_batch_is_rejected(self, bridge_app):
        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=[rpc("ping"), rpc("ping", request_id=2)])

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32600

    @pytest.mark.asyncio
    async def test_wrong_jsonrpc_version(self, bridge_app):
        message = {"jsonrpc": "1.0", "method": "ping", "id": 1}

        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=message)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32600

    @pytest.mark.asyncio
    async def test_missing_method(self, bridge_app):
        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json={"jsonrpc": "2.0", "id": 1})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32600


class TestSessionIdTransport:
    """Session ids arrive by header, bearer token or query parameter."""

    @pytest.mark.asyncio
    async def test_bearer_session_token(self, bridge_app, session_store):
        await authenticate(session_store)

        async with bridge_client(bridge_app) as client:
            response = await client.post(
                "/mcp",
                json=rpc("tools/list"),
                headers={"Authorization": f"Bearer mcp-session:{SESSION_ID}"},
            )

        assert response.status_code == 200
        assert response.headers["X-MCP-Session-ID"] == SESSION_ID

    @pytest.mark.asyncio
    async def test_query_parameter(self, bridge_app, session_store):
        await authenticate(session_store)

        async with bridge_client(bridge_app) as client:
            response = await client.post(
                "/mcp", params={"mcp_session_id": SESSION_ID}, json=rpc("tools/list")
            )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_api_mcp_path_behaves_the_same(self, bridge_app, session_store):
        await authenticate(session_store)

        async with bridge_client(bridge_app) as client:
            response = await client.post("/api/mcp", json=rpc("tools/list"), headers=SESSION_HEADERS)

        assert response.status_code == 200
        assert len(response.json()["result"]["tools"]) == 2


class TestGetTransport:
    """JSON-RPC over GET query parameters."""

    @pytest.mark.asyncio
    async def test_get_ping(self, bridge_app):
        async with bridge_client(bridge_app) as client:
            response = await client.get("/mcp", params={"method": "ping", "id": "7"})

        assert response.status_code == 200
        assert response.json() == {"jsonrpc": "2.0", "id": "7", "result": "pong"}

    @pytest.mark.asyncio
    async def test_get_tools_call_when_authenticated(self, bridge_app, session_store):
        await authenticate(session_store)
        params = '{"name": "check_credits", "arguments": {}}'

        async with bridge_client(bridge_app) as client:
            response = await client.get(
                "/mcp",
                params={"method": "tools/call", "params": params, "id": "1"},
                headers=SESSION_HEADERS,
            )

        assert response.status_code == 200
        assert response.json()["result"]["structuredContent"]["email"] == TEST_USER_EMAIL

    @pytest.mark.asyncio
    async def test_get_with_invalid_params(self, bridge_app):
        async with bridge_client(bridge_app) as client:
            response = await client.get("/mcp", params={"method": "tools/call", "params": "{oops"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32700


class TestAppWiring:
    """Collaborators passed to create_app are used as given."""

    def test_empty_collaborators_are_kept(self, test_settings, session_store, outbound_client):
        registry = ToolRegistry([])

        app = create_app(
            settings=test_settings,
            session_store=session_store,
            http_client=outbound_client,
            tool_registry=registry,
        )

        assert len(session_store) == 0
        assert app.state.session_store is session_store
        assert app.state.tool_registry is registry
        assert app.state.dispatcher.session_store is session_store

    @pytest.mark.asyncio
    async def test_session_seeded_after_creation_is_visible(self, bridge_app, session_store):
        await authenticate(session_store)

        async with bridge_client(bridge_app) as client:
            response = await client.post("/mcp", json=rpc("tools/list"), headers=SESSION_HEADERS)

        assert response.status_code == 200


class TestLogging:
    """Session ids are shortened in log output."""

    @pytest.mark.asyncio
    async def test_full_session_id_is_not_logged(self, bridge_app, session_store, caplog):
        session_id = "mcp_0123456789abcdef"
        headers = {"X-MCP-Session-ID": session_id}
        other_headers = {"X-MCP-Session-ID": "mcp_fedcba9876543210"}
        await authenticate(session_store, session_id=session_id)
        caplog.set_level(logging.DEBUG, logger="mcp_bridge")

        async with bridge_client(bridge_app) as client:
            await client.post("/mcp", json=rpc("tools/list"), headers=headers)
            await client.post("/mcp", json=rpc("tools/list"), headers=other_headers)
        await session_store.delete(session_id)

        assert "mcp_01..." in caplog.text
        assert session_id not in caplog.text
        assert "mcp_fedcba9876543210" not in caplog.text
