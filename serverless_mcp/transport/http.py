"""HTTP transport implementation for MCP."""

import asyncio
import json
import time
from typing import Any, Dict, Mapping, Optional
import prometheus_client
import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel, Field
from structlog.contextvars import bind_contextvars, clear_contextvars

from .base import ConnectionError, Transport
from ..protocol.codec import MessageCodec
from ..protocol.errors import InternalError, InvalidRequest, ProtocolError, SessionNotFound
from ..protocol.messages import BatchResponse, MCPResponse
from ..session import Session

logger = structlog.get_logger()

SESSION_HEADER = "Mcp-Session-Id"
ALLOWED_METHODS = "GET, POST, DELETE, OPTIONS"
ALLOWED_HEADERS = "Content-Type, Mcp-Session-Id, Last-Event-ID, Authorization"


class HttpResponse(BaseModel):
    """Framework-neutral HTTP response produced by the adapter."""
    status_code: int
    headers: Dict[str, str] = Field(default_factory=dict)
    body: bytes = b""

    def json(self) -> Any:
        return json.loads(self.body) if self.body else None


class HttpTransport(Transport):
    """HTTP transport: one JSON-RPC exchange per request.

    ``handle_request`` is usable on its own (e.g. from a serverless
    function); ``app`` wraps it in a FastAPI application served by uvicorn.
    """

    def __init__(self, server, config: Optional[Dict[str, Any]] = None):
        super().__init__(server, config)
        self.codec = MessageCodec()
        self.path = self.config.get("path", "/mcp")
        self.allow_origin = self.config.get("cors_allow_origin", "*")
        self.sweep_interval = server.config.session.sweep_interval
        self.adopt_unknown_ids = server.config.session.adopt_unknown_ids
        self._last_sweep = time.monotonic()
        self._app: Optional[FastAPI] = None
        self._uvicorn: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None

    # Framework-neutral entry point

    async def handle_request(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        body: Optional[bytes],
    ) -> HttpResponse:
        """Handle one HTTP request and return the response to send."""
        headers = {key.lower(): value for key, value in headers.items()}
        method = method.upper()
        bind_contextvars(http_method=method, path=path)

        try:
            self._maybe_sweep()

            if method == "OPTIONS":
                return self._response(204, extra={"Access-Control-Max-Age": "86400"})
            if method == "POST":
                return await self._handle_post(headers, body)
            if method == "GET":
                return self._handle_get(headers)
            if method == "DELETE":
                return self._handle_delete(headers)
            return self._response(
                405,
                {"error": "Method not allowed", "status": 405},
                extra={"Allow": ALLOWED_METHODS},
            )

        except Exception as e:
            logger.error("Request handling error", error=str(e), exc_info=True)
            return self._error_response(500, InternalError("Internal error"))

        finally:
            clear_contextvars()

    async def _handle_post(self, headers: Dict[str, str], body: Optional[bytes]) -> HttpResponse:
        if not body or not body.strip():
            return self._error_response(400, InvalidRequest("Request body is required"))

        try:
            message = self.codec.parse(body)
        except ProtocolError as e:
            logger.warning("Rejected request body", code=int(e.code), error=e.message)
            return self._error_response(400, e)

        try:
            session = self._resolve_session(headers)
        except SessionNotFound as e:
            logger.warning("Unknown session", session_id=e.session_id)
            return self._error_response(404, e)

        reply = await self.server.handle_message(message, session)
        session_headers = {SESSION_HEADER: session.id}

        if reply is None:
            return self._response(202, extra=session_headers)
        if isinstance(reply, BatchResponse) and not reply.responses:
            return self._response(204, extra=session_headers)
        return self._response(200, self.codec.serialize(reply), extra=session_headers)

    def _handle_get(self, headers: Dict[str, str]) -> HttpResponse:
        """Event-stream handshake; pushing server notifications is not supported yet."""
        try:
            session = self._resolve_session(headers)
        except SessionNotFound as e:
            return self._error_response(404, e)

        logger.info(
            "Event stream handshake",
            session_id=session.id,
            last_event_id=headers.get("last-event-id"),
        )
        event = {
            "type": "connection_established",
            "session_id": session.id,
            "message": "SSE connection established. Use POST for MCP requests.",
        }
        return self._response(
            200,
            f"data: {json.dumps(event)}\n\n".encode("utf-8"),
            content_type="text/event-stream",
            extra={
                SESSION_HEADER: session.id,
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )

    def _handle_delete(self, headers: Dict[str, str]) -> HttpResponse:
        session_id = headers.get(SESSION_HEADER.lower())
        if session_id:
            bind_contextvars(session_id=session_id)
            self.server.close_session(session_id)
        return self._response(204)

    def _resolve_session(self, headers: Dict[str, str]) -> Session:
        """Look up the caller's session, creating one on first contact."""
        session_id = headers.get(SESSION_HEADER.lower())
        if not session_id:
            session = self.server.open_session()
            logger.info("Session opened", session_id=session.id)
        else:
            try:
                session = self.server.sessions.touch(session_id)
            except SessionNotFound:
                if not self.adopt_unknown_ids:
                    raise
                session = self.server.open_session(session_id)
                logger.info("Session adopted", session_id=session.id)

        bind_contextvars(session_id=session.id)
        return session

    def _maybe_sweep(self) -> None:
        now = time.monotonic()
        if now - self._last_sweep < self.sweep_interval:
            return
        self._last_sweep = now
        self.server.sessions.sweep_expired()

    def _response(
        self,
        status_code: int,
        payload: Any = None,
        content_type: str = "application/json",
        extra: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        headers = {
            "Access-Control-Allow-Origin": self.allow_origin,
            "Access-Control-Allow-Methods": ALLOWED_METHODS,
            "Access-Control-Allow-Headers": ALLOWED_HEADERS,
            "Access-Control-Expose-Headers": SESSION_HEADER,
        }
        body = b""
        if payload is not None:
            body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = content_type
        headers.update(extra or {})
        return HttpResponse(status_code=status_code, headers=headers, body=body)

    def _error_response(self, status_code: int, error: ProtocolError) -> HttpResponse:
        envelope = MCPResponse(id=error.request_id, error=error.to_error())
        return self._response(status_code, self.codec.serialize(envelope))

    # FastAPI / uvicorn

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            self._app = create_app(self)
        return self._app

    async def start(self) -> None:
        """Start uvicorn in a background task."""
        if self._running:
            return

        config = uvicorn.Config(
            self.app,
            host=self.config.get("host", "127.0.0.1"),
            port=self.config.get("port", 8000),
            log_config=None,
        )
        self._uvicorn = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._uvicorn.serve())
        self._running = True
        logger.info("HTTP transport started", host=config.host, port=config.port, path=self.path)

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._uvicorn:
            self._uvicorn.should_exit = True
        if self._serve_task:
            await self._serve_task
            self._serve_task = None
        logger.info("HTTP transport stopped")

    async def serve(self) -> None:
        if not self._serve_task:
            raise ConnectionError("HTTP transport not started")
        await self._serve_task


def create_app(transport: HttpTransport) -> FastAPI:
    """Build the FastAPI application exposing the MCP endpoint."""
    server = transport.server
    app = FastAPI(title=server.config.server_name, version=server.config.server_version)

    @app.api_route(transport.path, methods=["GET", "POST", "DELETE", "OPTIONS", "PUT", "PATCH"])
    async def mcp_endpoint(request: Request) -> Response:
        body = await request.body()
        result = await transport.handle_request(
            request.method, request.url.path, dict(request.headers), body
        )
        return Response(content=result.body, status_code=result.status_code, headers=result.headers)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "sessions": len(server.sessions)}

    if server.config.metrics_enabled:
        @app.get("/metrics", response_class=PlainTextResponse)
        def metrics():
            return prometheus_client.generate_latest()

    return app
