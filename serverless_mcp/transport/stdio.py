"""Standard I/O transport implementation for MCP."""

import asyncio
import sys
from typing import Any, Dict, Optional
import structlog

from .base import ConnectionError, Transport
from ..protocol.codec import MessageCodec
from ..protocol.errors import ProtocolError
from ..protocol.messages import BatchResponse, MCPResponse
from ..session import Session

logger = structlog.get_logger()


class StdioTransport(Transport):
    """Line-delimited JSON-RPC over stdin/stdout.

    The whole stream belongs to a single session, opened on start and
    closed on stop.
    """

    def __init__(self, server, config: Optional[Dict[str, Any]] = None):
        super().__init__(server, config)
        self.codec = MessageCodec()
        self.session: Optional[Session] = None
        self._stdin_reader: Optional[asyncio.StreamReader] = None
        self._stdout_writer: Optional[asyncio.StreamWriter] = None

    async def start(self) -> None:
        """Initialize stdio streams."""
        if self._running:
            return

        try:
            # Create async streams for stdin/stdout
            self._stdin_reader = asyncio.StreamReader()
            protocol = asyncio.StreamReaderProtocol(self._stdin_reader)

            # Connect to stdin
            loop = asyncio.get_running_loop()
            await loop.connect_read_pipe(lambda: protocol, sys.stdin)

            # Create stdout writer
            transport, protocol = await loop.connect_write_pipe(
                asyncio.streams.FlowControlMixin, sys.stdout
            )
            self._stdout_writer = asyncio.StreamWriter(transport, protocol, None, loop)

        except Exception as e:
            logger.error("Failed to initialize stdio transport", error=str(e))
            raise ConnectionError(f"Failed to initialize stdio: {e}")

        self.session = self.server.open_session()
        self._running = True
        logger.info("Stdio transport initialized", session_id=self.session.id)

    async def stop(self) -> None:
        """Close stdio transport."""
        if not self._running:
            return

        self._running = False
        if self.session:
            self.server.close_session(self.session.id)

        if self._stdout_writer:
            self._stdout_writer.close()
            try:
                await self._stdout_writer.wait_closed()
            except (BrokenPipeError, ConnectionResetError) as e:
                logger.debug("Stdout already closed", error=str(e))

        logger.info("Stdio transport closed")

    async def serve(self) -> None:
        """Answer messages from stdin until EOF."""
        if not self._running or not self._stdin_reader or not self._stdout_writer:
            raise ConnectionError("Not connected")

        while self._running:
            line = await self._stdin_reader.readline()
            if not line:
                break

            reply = await self.process_line(line)
            if reply is None:
                continue

            self._stdout_writer.write(reply + b"\n")
            await self._stdout_writer.drain()

    async def process_line(self, line: bytes) -> Optional[bytes]:
        """Turn one input line into the serialized reply, if any."""
        if not line.strip():
            return None
        if self.session is None:
            raise ConnectionError("Not connected")

        try:
            message = self.codec.parse(line)
        except ProtocolError as e:
            logger.warning("Invalid message received", code=int(e.code), error=e.message)
            return self.codec.serialize(MCPResponse(id=e.request_id, error=e.to_error()))

        self.server.sessions.touch(self.session.id)
        reply = await self.server.handle_message(message, self.session)
        if reply is None or (isinstance(reply, BatchResponse) and not reply.responses):
            return None

        data = self.codec.serialize(reply)
        logger.debug("Message sent", size=len(data))
        return data
