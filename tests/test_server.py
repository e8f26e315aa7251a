"""Tests for the protocol engine."""

import asyncio
import json

import pytest

from conftest import (
    CLIENT_INFO,
    PROTOCOL_VERSION,
    initialize_params,
    make_notification,
    make_request,
)
from serverless_mcp.config import SUPPORTED_PROTOCOL_VERSIONS, ServerConfig
from serverless_mcp.protocol import BatchRequest, BatchResponse, ErrorCode, MCPError, MessageCodec
from serverless_mcp.protocol.errors import DuplicateCapability
from serverless_mcp.protocol.messages import InvalidEntry
from serverless_mcp.protocol.server import MCPServer
from serverless_mcp.session import SessionState
from serverless_mcp.tools import register_demo_capabilities


async def call(server, session, method, params=None, request_id=1):
    return await server.handle_message(make_request(method, params, request_id), session)


class TestInitialize:
    """Test the initialize handshake."""

    @pytest.mark.asyncio
    async def test_initialize(self, server, session):
        response = await call(server, session, "initialize", initialize_params())

        assert response.error is None
        result = response.result
        assert result["protocolVersion"] == PROTOCOL_VERSION
        assert result["serverInfo"] == {"name": "Serverless MCP Server", "version": "1.0.0"}
        assert set(result["capabilities"]) == {"tools", "resources", "logging"}
        assert "instructions" in result

        assert session.state is SessionState.INITIALIZED
        assert session.client_info.name == CLIENT_INFO["name"]
        assert session.protocol_version == PROTOCOL_VERSION

    @pytest.mark.asyncio
    async def test_prompts_not_offered(self, server, session):
        response = await call(server, session, "initialize", initialize_params())

        assert "prompts" not in response.result["capabilities"]
        assert server.capabilities.prompts is None

    @pytest.mark.asyncio
    async def test_negotiated_capabilities(self, server, session):
        await call(server, session, "initialize", initialize_params(capabilities={"tools": {}, "sampling": {}}))

        assert session.negotiated_capabilities == {"tools"}

    @pytest.mark.asyncio
    async def test_no_overlap_gets_everything_offered(self, server, session):
        await call(server, session, "initialize", initialize_params(capabilities={}))

        assert session.negotiated_capabilities == {"tools", "resources", "logging"}

    @pytest.mark.asyncio
    async def test_every_supported_version_accepted(self, server):
        for version in SUPPORTED_PROTOCOL_VERSIONS:
            session = server.open_session()
            response = await call(server, session, "initialize", initialize_params(version))
            assert response.result["protocolVersion"] == version

    @pytest.mark.asyncio
    async def test_unsupported_version(self, server, session):
        response = await call(server, session, "initialize", initialize_params("1999-01-01"))

        assert response.error.code == ErrorCode.INVALID_PARAMS
        assert response.error.data == {
            "requested": "1999-01-01",
            "supported": SUPPORTED_PROTOCOL_VERSIONS,
        }
        assert session.state is SessionState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_missing_client_info(self, server, session):
        response = await call(server, session, "initialize", {"protocolVersion": PROTOCOL_VERSION})

        assert response.error.code == ErrorCode.INVALID_PARAMS
        assert any("clientInfo" in error["loc"] for error in response.error.data["errors"])

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, server, session):
        first = await call(server, session, "initialize", initialize_params("2025-03-26"))
        second = await call(server, session, "initialize", initialize_params("2024-11-05"), request_id=2)

        assert second.id == 2
        assert second.result == first.result
        assert session.protocol_version == "2025-03-26"

    @pytest.mark.asyncio
    async def test_initialized_notification(self, server, session):
        await call(server, session, "initialize", initialize_params())

        reply = await server.handle_message(make_notification("notifications/initialized"), session)

        assert reply is None
        assert session.state is SessionState.INITIALIZED


class TestSessionState:
    """Test the per-session state machine."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["ping", "tools/list", "tools/call", "resources/list", "resources/read"])
    async def test_methods_require_initialize(self, server, session, method):
        response = await call(server, session, method, {})

        assert response.error.code == ErrorCode.INVALID_REQUEST
        assert "not initialized" in response.error.message

    @pytest.mark.asyncio
    async def test_unknown_method(self, server, session):
        response = await call(server, session, "prompts/list")

        assert response.error.code == ErrorCode.METHOD_NOT_FOUND
        assert "prompts/list" in response.error.message

    @pytest.mark.asyncio
    async def test_ping(self, server, ready_session):
        response = await call(server, ready_session, "ping", request_id="p-1")

        assert response.id == "p-1"
        assert response.result == {}

    @pytest.mark.asyncio
    async def test_closed_session_rejects_requests(self, server, ready_session):
        server.close_session(ready_session.id)

        response = await call(server, ready_session, "ping")

        assert response.error.code == ErrorCode.INVALID_REQUEST
        assert response.error.message == "Session is closed"

    @pytest.mark.asyncio
    async def test_close_session_twice(self, server, session):
        assert server.close_session(session.id) is True
        assert server.close_session(session.id) is False

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, server, ready_session):
        other = server.open_session()

        response = await call(server, other, "tools/list")

        assert response.error.code == ErrorCode.INVALID_REQUEST
        assert ready_session.initialized

    @pytest.mark.asyncio
    async def test_unknown_notification_is_dropped(self, server, ready_session):
        reply = await server.handle_message(make_notification("notifications/unknown"), ready_session)

        assert reply is None

    @pytest.mark.asyncio
    async def test_unexpected_handler_failure(self, server, ready_session):
        async def explode(session, params):
            raise KeyError("secret internals")

        server.protocol_handler.register_request_handler("debug/explode", explode)

        response = await call(server, ready_session, "debug/explode", request_id=9)

        assert response.id == 9
        assert response.error.code == ErrorCode.INTERNAL_ERROR
        assert response.error.message == "Internal error"
        assert response.error.data is None


class TestTools:
    """Test tools/list and tools/call."""

    @pytest.mark.asyncio
    async def test_list(self, server, ready_session):
        response = await call(server, ready_session, "tools/list")

        tools = response.result["tools"]
        assert [tool["name"] for tool in tools] == ["calculator", "process_text", "get_weather"]
        assert tools[0]["inputSchema"]["required"] == ["operation", "a", "b"]
        assert "nextCursor" not in response.result

    @pytest.mark.asyncio
    async def test_list_pages(self, server, ready_session):
        names = []
        params = {"limit": 1}
        for request_id in range(1, 10):
            result = (await call(server, ready_session, "tools/list", params, request_id)).result
            names.extend(tool["name"] for tool in result["tools"])
            if "nextCursor" not in result:
                break
            params = {"limit": 1, "cursor": result["nextCursor"]}

        assert names == ["calculator", "process_text", "get_weather"]

    @pytest.mark.asyncio
    async def test_list_invalid_cursor(self, server, ready_session):
        response = await call(server, ready_session, "tools/list", {"cursor": "bogus"})

        assert response.error.code == ErrorCode.INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_call(self, server, ready_session):
        response = await call(server, ready_session, "tools/call", {
            "name": "calculator",
            "arguments": {"operation": "add", "a": 5, "b": 3},
        }, request_id=42)

        assert response.id == 42
        result = response.result
        assert result["isError"] is False
        assert result["structuredContent"]["result"] == 8
        assert json.loads(result["content"][0]["text"])["result"] == 8

    @pytest.mark.asyncio
    async def test_overflowing_result_stays_strict_json(self, server, ready_session):
        response = await call(server, ready_session, "tools/call", {
            "name": "calculator",
            "arguments": {"operation": "multiply", "a": 1e308, "b": 10},
        })

        assert response.result["isError"] is True
        body = MessageCodec().serialize(response).decode("utf-8")
        assert "Infinity" not in body
        json.loads(body, parse_constant=lambda name: pytest.fail(f"{name} in response"))

    @pytest.mark.asyncio
    async def test_enum_violation(self, server, ready_session):
        response = await call(server, ready_session, "tools/call", {
            "name": "calculator",
            "arguments": {"operation": "modulo", "a": 5, "b": 3},
        })

        assert response.error.code == ErrorCode.INVALID_PARAMS
        assert response.error.data["violations"][0]["path"] == "$.operation"

    @pytest.mark.asyncio
    async def test_domain_failure_is_in_band(self, server, ready_session):
        response = await call(server, ready_session, "tools/call", {
            "name": "calculator",
            "arguments": {"operation": "divide", "a": 1, "b": 0},
        })

        assert response.error is None
        assert response.result["isError"] is True
        assert "Division by zero" in response.result["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_invalid_arguments_never_reach_handler(self, server, ready_session):
        calls = []
        server.register_tool(
            "record",
            "Records calls",
            {"type": "object", "properties": {"n": {"type": "integer"}}, "required": ["n"]},
            calls.append,
        )

        response = await call(server, ready_session, "tools/call", {"name": "record", "arguments": {"n": "x"}})

        assert response.error.code == ErrorCode.INVALID_PARAMS
        assert response.error.data == {
            "violations": [{"path": "$.n", "expected": "integer", "actual": "string"}]
        }
        assert calls == []

    @pytest.mark.asyncio
    async def test_missing_arguments_reported(self, server, ready_session):
        response = await call(server, ready_session, "tools/call", {"name": "calculator"})

        violations = response.error.data["violations"]
        assert {violation["path"] for violation in violations} == {"$.operation", "$.a", "$.b"}
        assert all(violation["actual"] == "missing" for violation in violations)

    @pytest.mark.asyncio
    async def test_defaults_reach_handler(self, server, ready_session):
        response = await call(server, ready_session, "tools/call", {
            "name": "get_weather",
            "arguments": {"location": "Oslo"},
        })

        assert response.result["structuredContent"]["units"] == "celsius"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, server, ready_session):
        response = await call(server, ready_session, "tools/call", {"name": "nope", "arguments": {}})

        assert response.error.code == ErrorCode.NOT_FOUND
        assert response.error.message == "Unknown tool: nope"

    @pytest.mark.asyncio
    async def test_missing_name(self, server, ready_session):
        response = await call(server, ready_session, "tools/call", {"arguments": {}})

        assert response.error.code == ErrorCode.INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_handler_crash_is_in_band(self, server, ready_session):
        def crash(arguments):
            raise RuntimeError("backend unavailable")

        server.register_tool("crash", "Crashes", {}, crash)

        response = await call(server, ready_session, "tools/call", {"name": "crash"})

        assert response.error is None
        assert response.result["isError"] is True
        assert "backend unavailable" in response.result["content"][0]["text"]

    @pytest.mark.asyncio
    async def test_timeout(self):
        server = MCPServer(ServerConfig(tool_timeout=0.05))

        async def slow(arguments):
            await asyncio.sleep(1)

        server.register_tool("slow", "Slow", {}, slow)
        session = server.open_session()
        await call(server, session, "initialize", initialize_params())

        response = await call(server, session, "tools/call", {"name": "slow"})

        assert response.result["isError"] is True
        assert "timed out" in response.result["content"][0]["text"]

    def test_duplicate_registration(self, server):
        with pytest.raises(DuplicateCapability):
            server.register_tool("calculator", "Again", {}, lambda arguments: None)


class TestResources:
    """Test resources/list and resources/read."""

    @pytest.mark.asyncio
    async def test_list(self, server, ready_session):
        response = await call(server, ready_session, "resources/list")

        assert response.result["resources"] == [{
            "uri": "system://status",
            "name": "system_status",
            "description": "Current system status and runtime information",
            "mimeType": "application/json",
        }]

    @pytest.mark.asyncio
    async def test_read(self, server, ready_session):
        response = await call(server, ready_session, "resources/read", {"uri": "system://status"})

        content = response.result["contents"][0]
        assert content["uri"] == "system://status"
        assert content["mimeType"] == "application/json"
        status = json.loads(content["text"])
        assert status["status"] == "healthy"
        assert status["registered_tools"] == 3

    @pytest.mark.asyncio
    async def test_status_available_once_registered(self):
        server = MCPServer(ServerConfig())
        session = server.open_session()
        await call(server, session, "initialize", initialize_params())

        before = await call(server, session, "resources/read", {"uri": "system://status"})
        assert before.error.code == ErrorCode.NOT_FOUND

        register_demo_capabilities(server)
        after = await call(server, session, "resources/read", {"uri": "system://status"})
        assert after.result["contents"][0]["mimeType"] == "application/json"

    @pytest.mark.asyncio
    async def test_read_unknown(self, server, ready_session):
        response = await call(server, ready_session, "resources/read", {"uri": "system://nothing"})

        assert response.error.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_read_failure_is_in_band(self, server, ready_session):
        def broken(uri):
            raise OSError("unreadable")

        server.register_resource("file:///broken", "broken", "", "text/plain", broken)

        response = await call(server, ready_session, "resources/read", {"uri": "file:///broken"})

        assert response.error is None
        assert response.result["isError"] is True


class TestLogging:
    """Test logging/setLevel."""

    @pytest.mark.asyncio
    async def test_set_level(self, server, ready_session):
        response = await call(server, ready_session, "logging/setLevel", {"level": "DEBUG"})

        assert response.result == {}
        assert ready_session.log_level == "debug"

    @pytest.mark.asyncio
    async def test_invalid_level(self, server, ready_session):
        response = await call(server, ready_session, "logging/setLevel", {"level": "verbose"})

        assert response.error.code == ErrorCode.INVALID_PARAMS
        assert ready_session.log_level is None

    @pytest.mark.asyncio
    async def test_level_filters_session_logs(self, server, ready_session, captured_logs):
        await call(server, ready_session, "ping")
        assert "Request received" in [entry["event"] for entry in captured_logs.entries]

        await call(server, ready_session, "logging/setLevel", {"level": "warning"})
        captured_logs.entries.clear()
        await call(server, ready_session, "ping")
        await call(server, ready_session, "no/such/method")

        events = [entry["event"] for entry in captured_logs.entries]
        assert "Request received" not in events
        assert "Request failed" in events

    @pytest.mark.asyncio
    async def test_level_is_per_session(self, server, ready_session, captured_logs):
        other = server.open_session()
        await call(server, ready_session, "logging/setLevel", {"level": "error"})
        captured_logs.entries.clear()

        await call(server, other, "initialize", initialize_params())

        assert any(
            entry["event"] == "Request received" and entry["session_id"] == other.id
            for entry in captured_logs.entries
        )


class TestBatch:
    """Test batch dispatch."""

    @pytest.mark.asyncio
    async def test_initialize_then_list_in_one_batch(self, server, session):
        batch = BatchRequest(entries=[
            make_request("initialize", initialize_params(), 1),
            make_notification("notifications/initialized"),
            make_request("tools/list", None, 2),
        ])

        reply = await server.handle_message(batch, session)

        assert isinstance(reply, BatchResponse)
        assert [response.id for response in reply.responses] == [1, 2]
        assert all(response.error is None for response in reply.responses)
        assert len(reply.responses[1].result["tools"]) == 3

    @pytest.mark.asyncio
    async def test_errors_do_not_abort_siblings(self, server, ready_session):
        batch = BatchRequest(entries=[
            make_request("tools/call", {"name": "nope"}, "a"),
            InvalidEntry(id="b", error=MCPError(code=ErrorCode.INVALID_REQUEST, message="bad")),
            make_request("ping", None, "c"),
        ])

        reply = await server.handle_message(batch, ready_session)

        assert [response.id for response in reply.responses] == ["a", "b", "c"]
        assert reply.responses[0].error.code == ErrorCode.NOT_FOUND
        assert reply.responses[1].error.code == ErrorCode.INVALID_REQUEST
        assert reply.responses[2].result == {}

    @pytest.mark.asyncio
    async def test_notifications_only(self, server, ready_session):
        batch = BatchRequest(entries=[make_notification("notifications/initialized")])

        reply = await server.handle_message(batch, ready_session)

        assert reply.responses == []
