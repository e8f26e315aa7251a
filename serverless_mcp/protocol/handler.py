"""Protocol handler for MCP message processing."""

import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union
import structlog
from prometheus_client import Counter, Histogram
from structlog.contextvars import bound_contextvars

from .errors import InternalError, InvalidRequest, MethodNotFound, ProtocolError
from .messages import (
    BatchRequest,
    BatchResponse,
    InvalidEntry,
    MCPMethods,
    MCPNotification,
    MCPRequest,
    MCPResponse,
    Message,
)
from ..session import Session, SessionState

logger = structlog.get_logger()

RequestHandler = Callable[[Session, Dict[str, Any]], Awaitable[Dict[str, Any]]]
NotificationHandler = Callable[[Session, Dict[str, Any]], Awaitable[None]]

# Metrics
request_count = Counter('mcp_requests_total', 'Total MCP requests', ['method', 'status'])
request_duration = Histogram('mcp_request_duration_seconds', 'Request duration', ['method'])


class ProtocolHandler:
    """Routes parsed messages to method handlers for a session.

    The method table is built once at startup. Every handler shares the
    signature ``(session, params) -> result``; protocol failures are raised
    as ``ProtocolError`` and turned into error envelopes here.
    """

    def __init__(self):
        self._request_handlers: Dict[str, RequestHandler] = {}
        self._notification_handlers: Dict[str, NotificationHandler] = {}
        self._pre_init_methods: Set[str] = set()

    def register_request_handler(
        self, method: str, handler: RequestHandler, allow_uninitialized: bool = False
    ) -> None:
        """Register a handler for request messages."""
        self._request_handlers[method] = handler
        if allow_uninitialized:
            self._pre_init_methods.add(method)
        logger.debug("Registered request handler", method=method)

    def register_notification_handler(self, method: str, handler: NotificationHandler) -> None:
        """Register a handler for notification messages."""
        self._notification_handlers[method] = handler
        logger.debug("Registered notification handler", method=method)

    async def handle_message(
        self, message: Message, session: Session
    ) -> Optional[Union[MCPResponse, BatchResponse]]:
        """Process a parsed message.

        Returns an ``MCPResponse`` for a request, ``None`` for a single
        notification and a (possibly empty) ``BatchResponse`` for a batch.
        """
        with bound_contextvars(session_id=session.id, session_log_level=session.log_level):
            if isinstance(message, BatchRequest):
                return await self._handle_batch(message, session)
            if isinstance(message, MCPRequest):
                return await self._handle_request(message, session)
            await self._handle_notification(message, session)
            return None

    async def _handle_batch(self, batch: BatchRequest, session: Session) -> BatchResponse:
        """Dispatch batch entries one after another, preserving order."""
        logger.debug("Batch received", size=len(batch.entries), session_id=session.id)

        responses = []
        for entry in batch.entries:
            if isinstance(entry, InvalidEntry):
                responses.append(MCPResponse(id=entry.id, error=entry.error))
            elif isinstance(entry, MCPRequest):
                responses.append(await self._handle_request(entry, session))
            else:
                await self._handle_notification(entry, session)
        return BatchResponse(responses=responses)

    async def _handle_request(self, request: MCPRequest, session: Session) -> MCPResponse:
        """Handle a request, always producing exactly one response."""
        handler = self._request_handlers.get(request.method)
        metric_method = request.method if handler else "unknown"
        start = time.perf_counter()

        logger.debug(
            "Request received",
            method=request.method,
            request_id=request.id,
            session_id=session.id,
        )

        try:
            if handler is None:
                raise MethodNotFound(request.method)
            self._check_state(request.method, session)

            result = await handler(session, request.params or {})
            request_count.labels(method=metric_method, status='success').inc()
            return MCPResponse(id=request.id, result=result)

        except ProtocolError as e:
            request_count.labels(method=metric_method, status='error').inc()
            logger.warning(
                "Request failed",
                method=request.method,
                request_id=request.id,
                code=int(e.code),
                error=e.message,
            )
            return MCPResponse(id=request.id, error=e.to_error())

        except Exception as e:
            request_count.labels(method=metric_method, status='error').inc()
            logger.error(
                "Request handler failed",
                method=request.method,
                request_id=request.id,
                error=str(e),
                exc_info=True,
            )
            return MCPResponse(id=request.id, error=InternalError("Internal error").to_error())

        finally:
            request_duration.labels(method=metric_method).observe(time.perf_counter() - start)

    async def _handle_notification(self, notification: MCPNotification, session: Session) -> None:
        """Handle a notification; failures are logged, never answered."""
        logger.debug(
            "Notification received",
            method=notification.method,
            session_id=session.id,
        )

        handler = self._notification_handlers.get(notification.method)
        if not handler:
            logger.warning("No handler for notification", method=notification.method)
            return

        try:
            self._check_state(notification.method, session)
            await handler(session, notification.params or {})
        except ProtocolError as e:
            logger.warning("Notification rejected", method=notification.method, error=e.message)
        except Exception as e:
            logger.error(
                "Notification handler failed",
                method=notification.method,
                error=str(e),
                exc_info=True,
            )

    def _check_state(self, method: str, session: Session) -> None:
        if session.state is SessionState.CLOSED:
            raise InvalidRequest("Session is closed")
        if method in self._pre_init_methods:
            return
        if session.state is not SessionState.INITIALIZED:
            raise InvalidRequest(
                f"Session not initialized: call '{MCPMethods.INITIALIZE}' before '{method}'"
            )
