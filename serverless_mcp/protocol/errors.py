"""Exception taxonomy for the protocol engine."""

from typing import Any, Dict, List, Optional

from .messages import ErrorCode, MCPError, RequestId


class ProtocolError(Exception):
    """Base exception for failures reported as JSON-RPC error envelopes."""

    code: int = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        data: Optional[Any] = None,
        request_id: Optional[RequestId] = None,
    ):
        super().__init__(message)
        self.message = message
        self.data = data
        self.request_id = request_id

    def to_error(self) -> MCPError:
        return MCPError(code=self.code, message=self.message, data=self.data)


class ParseError(ProtocolError):
    """Raised when the transport body is not valid JSON."""
    code = ErrorCode.PARSE_ERROR


class InvalidRequest(ProtocolError):
    """Raised for JSON-RPC envelope or session state violations."""
    code = ErrorCode.INVALID_REQUEST


class MethodNotFound(ProtocolError):
    """Raised when no handler is registered for a method."""
    code = ErrorCode.METHOD_NOT_FOUND

    def __init__(self, method: str, request_id: Optional[RequestId] = None):
        super().__init__(f"Method '{method}' not found", request_id=request_id)
        self.method = method


class InvalidParams(ProtocolError):
    """Raised when request parameters fail validation."""
    code = ErrorCode.INVALID_PARAMS

    def __init__(
        self,
        message: str,
        violations: Optional[List[Dict[str, Any]]] = None,
        data: Optional[Any] = None,
    ):
        if violations is not None:
            data = {"violations": violations}
        super().__init__(message, data=data)
        self.violations = violations or []


class NotFound(ProtocolError):
    """Raised when a tool name or resource uri is not registered."""
    code = ErrorCode.NOT_FOUND


class UnsupportedProtocolVersion(ProtocolError):
    """Raised when initialize requests a protocol version we do not speak."""
    code = ErrorCode.INVALID_PARAMS

    def __init__(self, requested: str, supported: List[str]):
        super().__init__(
            f"Unsupported protocol version: {requested}",
            data={"requested": requested, "supported": list(supported)},
        )
        self.requested = requested
        self.supported = list(supported)


class SessionNotFound(ProtocolError):
    """Raised when a session id is unknown to the store."""
    code = ErrorCode.SESSION_NOT_FOUND

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class DuplicateSession(ProtocolError):
    """Raised when creating a session under an id that already exists."""
    code = ErrorCode.DUPLICATE_SESSION

    def __init__(self, session_id: str):
        super().__init__(f"Session already exists: {session_id}")
        self.session_id = session_id


class DuplicateCapability(ProtocolError):
    """Raised when a tool name or resource uri is registered twice."""
    code = ErrorCode.DUPLICATE_CAPABILITY

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind.capitalize()} already registered: {key}")
        self.kind = kind
        self.key = key


class InternalError(ProtocolError):
    """Raised (or synthesized) for anything unanticipated."""
    code = ErrorCode.INTERNAL_ERROR


class DomainError(Exception):
    """Failure raised by a tool or resource handler's own logic.

    Never surfaces as a JSON-RPC error: it is reported inside the result
    with ``isError: true``.
    """

    def __init__(self, message: str, code: int = ErrorCode.DOMAIN_ERROR):
        super().__init__(message)
        self.code = code
        self.message = message


class ToolTimeout(DomainError):
    """Raised when a handler does not finish within the invocation timeout."""

    def __init__(self, timeout: float):
        super().__init__(f"Tool execution timed out after {timeout}s", ErrorCode.TIMEOUT_ERROR)
        self.timeout = timeout
