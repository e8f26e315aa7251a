"""Base transport interface for MCP communication."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Optional
import structlog

if TYPE_CHECKING:
    from ..protocol.server import MCPServer

logger = structlog.get_logger()


class TransportError(Exception):
    """Base exception for transport-related errors."""
    pass


class ConnectionError(TransportError):
    """Raised when the transport cannot be started."""
    pass


class Transport(ABC):
    """Abstract base class for server-side MCP transports.

    A transport receives raw messages from clients, resolves the session
    they belong to and hands them to the server's protocol engine.
    """

    def __init__(self, server: "MCPServer", config: Optional[Dict[str, Any]] = None):
        self.server = server
        self.config = config or {}
        self._running = False

    @property
    def running(self) -> bool:
        """Check if transport is serving."""
        return self._running

    @abstractmethod
    async def start(self) -> None:
        """Start accepting messages."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop accepting messages and release resources."""
        pass

    @abstractmethod
    async def serve(self) -> None:
        """Serve until the transport is stopped or its input ends."""
        pass

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()
