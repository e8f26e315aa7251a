"""JSON-RPC 2.0 protocol implementation for MCP."""

from .codec import MessageCodec
from .errors import (
    DomainError,
    DuplicateCapability,
    DuplicateSession,
    InternalError,
    InvalidParams,
    InvalidRequest,
    MethodNotFound,
    NotFound,
    ParseError,
    ProtocolError,
    SessionNotFound,
    ToolTimeout,
    UnsupportedProtocolVersion,
)
from .messages import (
    BatchRequest,
    BatchResponse,
    ErrorCode,
    MCPError,
    MCPMessage,
    MCPNotification,
    MCPRequest,
    MCPResponse,
)

__all__ = [
    "MessageCodec",
    "MCPMessage",
    "MCPRequest",
    "MCPResponse",
    "MCPNotification",
    "MCPError",
    "BatchRequest",
    "BatchResponse",
    "ErrorCode",
    "ProtocolError",
    "ParseError",
    "InvalidRequest",
    "MethodNotFound",
    "InvalidParams",
    "NotFound",
    "DuplicateCapability",
    "DuplicateSession",
    "SessionNotFound",
    "UnsupportedProtocolVersion",
    "InternalError",
    "DomainError",
    "ToolTimeout",
]
