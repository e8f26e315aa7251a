"""Transport layer for serving MCP to clients."""

from .base import Transport, TransportError
from .http import HttpTransport, HttpResponse, create_app
from .stdio import StdioTransport

__all__ = [
    "Transport",
    "TransportError",
    "HttpTransport",
    "HttpResponse",
    "StdioTransport",
    "create_app",
]
