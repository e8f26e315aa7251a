"""Shared fixtures for the MCP server tests."""

from typing import Any, Dict, Optional

import pytest
import pytest_asyncio
import structlog
from structlog.testing import LogCapture

from serverless_mcp.config import ServerConfig
from serverless_mcp.protocol.messages import MCPNotification, MCPRequest
from serverless_mcp.protocol.server import MCPServer
from serverless_mcp.session import filter_by_session_level
from serverless_mcp.tools import register_demo_capabilities


PROTOCOL_VERSION = "2025-03-26"

CLIENT_INFO = {"name": "test-client", "version": "0.1.0"}


def make_request(method: str, params: Optional[Dict[str, Any]] = None, request_id: Any = 1) -> MCPRequest:
    return MCPRequest(id=request_id, method=method, params=params)


def make_notification(method: str, params: Optional[Dict[str, Any]] = None) -> MCPNotification:
    return MCPNotification(method=method, params=params)


def initialize_params(protocol_version: str = PROTOCOL_VERSION, capabilities=None) -> Dict[str, Any]:
    return {
        "protocolVersion": protocol_version,
        "capabilities": capabilities if capabilities is not None else {"tools": {}},
        "clientInfo": dict(CLIENT_INFO),
    }


@pytest.fixture
def config():
    """Server configuration with a short tool timeout."""
    return ServerConfig(tool_timeout=1.0)


@pytest.fixture
def server(config):
    """Server with the demo capabilities registered."""
    server = MCPServer(config)
    register_demo_capabilities(server)
    return server


@pytest.fixture
def session(server):
    """A fresh, uninitialized session."""
    return server.open_session()


@pytest_asyncio.fixture
async def ready_session(server, session):
    """A session that has completed the initialize handshake."""
    response = await server.handle_message(make_request("initialize", initialize_params()), session)
    assert response.error is None
    await server.handle_message(make_notification("notifications/initialized"), session)
    return session


@pytest.fixture
def captured_logs():
    """Route structlog through the session level filter into a capture list."""
    capture = LogCapture()
    structlog.configure(
        processors=[structlog.contextvars.merge_contextvars, filter_by_session_level, capture]
    )
    yield capture
    structlog.reset_defaults()
