"""MCP server implementation."""

import time
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union
import structlog
from prometheus_client import Counter, Histogram
from pydantic import BaseModel, ValidationError

from .errors import InvalidParams, UnsupportedProtocolVersion
from .handler import ProtocolHandler
from .messages import (
    BatchResponse,
    InitializeParams,
    InitializeResult,
    MCPMethods,
    MCPResponse,
    Message,
    PaginatedParams,
    ResourceReadParams,
    ServerCapabilities,
    SetLevelParams,
    ToolCallParams,
)
from ..config import ServerConfig
from ..session import LOG_LEVELS, Session, SessionState, SessionStore
from ..tools.base import CapabilityRegistry, Resource, Tool
from ..tools.schema import SchemaValidator

logger = structlog.get_logger()

P = TypeVar("P", bound=BaseModel)

# Metrics
tool_calls = Counter('mcp_tool_calls_total', 'Total tool calls', ['tool', 'status'])
tool_duration = Histogram('mcp_tool_duration_seconds', 'Tool execution duration', ['tool'])


class MCPServer:
    """Protocol engine: sessions, capabilities and the MCP method table."""

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        registry: Optional[CapabilityRegistry] = None,
        sessions: Optional[SessionStore] = None,
        validator: Optional[SchemaValidator] = None,
    ):
        self.config = config or ServerConfig()
        self.registry = registry or CapabilityRegistry(
            default_page_size=self.config.pagination.default_page_size,
            max_page_size=self.config.pagination.max_page_size,
        )
        self.sessions = sessions or SessionStore(ttl=self.config.session.ttl)
        self.validator = validator or SchemaValidator()
        self.protocol_handler = ProtocolHandler()
        self._server_info = {
            "name": self.config.server_name,
            "version": self.config.server_version,
        }
        self._capabilities = ServerCapabilities(
            tools={"listChanged": False},
            resources={"subscribe": False, "listChanged": False},
            logging={},
        )

        # Setup request handlers
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Setup protocol message handlers."""
        # Core MCP methods
        self.protocol_handler.register_request_handler(
            MCPMethods.INITIALIZE, self._handle_initialize, allow_uninitialized=True
        )
        self.protocol_handler.register_notification_handler(
            MCPMethods.INITIALIZED, self._handle_initialized
        )
        self.protocol_handler.register_request_handler(
            MCPMethods.PING, self._handle_ping
        )

        # Tool methods
        self.protocol_handler.register_request_handler(
            MCPMethods.TOOLS_LIST, self._handle_tools_list
        )
        self.protocol_handler.register_request_handler(
            MCPMethods.TOOLS_CALL, self._handle_tools_call
        )

        # Resource methods
        self.protocol_handler.register_request_handler(
            MCPMethods.RESOURCES_LIST, self._handle_resources_list
        )
        self.protocol_handler.register_request_handler(
            MCPMethods.RESOURCES_READ, self._handle_resources_read
        )

        # Logging
        self.protocol_handler.register_request_handler(
            MCPMethods.LOGGING_SET_LEVEL, self._handle_set_log_level
        )

    @property
    def server_info(self) -> Dict[str, str]:
        return dict(self._server_info)

    @property
    def capabilities(self) -> ServerCapabilities:
        return self._capabilities

    # Registration interface

    def register_tool(
        self,
        name: str,
        description: str,
        input_schema: Dict[str, Any],
        handler: Callable[[Dict[str, Any]], Any],
        manual: bool = True,
    ) -> Tool:
        """Expose a callable as a tool."""
        return self.registry.register_tool_function(name, description, input_schema, handler, manual)

    def register_resource(
        self,
        uri: str,
        name: str,
        description: str,
        mime_type: str,
        handler: Callable[[str], Any],
        manual: bool = True,
    ) -> Resource:
        """Expose a callable as a readable resource."""
        return self.registry.register_resource_function(uri, name, description, mime_type, handler, manual)

    # Session lifecycle

    def open_session(self, session_id: Optional[str] = None) -> Session:
        return self.sessions.create(session_id)

    def close_session(self, session_id: str) -> bool:
        """Tear a session down. Safe to call repeatedly."""
        return self.sessions.delete(session_id)

    async def handle_message(
        self, message: Message, session: Session
    ) -> Optional[Union[MCPResponse, BatchResponse]]:
        """Dispatch a parsed message on behalf of ``session``."""
        return await self.protocol_handler.handle_message(message, session)

    # Method handlers

    @staticmethod
    def _parse_params(model: Type[P], params: Dict[str, Any]) -> P:
        try:
            return model.model_validate(params)
        except ValidationError as e:
            raise InvalidParams(
                "Invalid params",
                data={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
            )

    def _negotiate(self, requested: Dict[str, Any]) -> List[str]:
        offered = self._capabilities.enabled()
        wanted = [kind for kind in offered if kind in requested]
        return wanted or offered

    async def _handle_initialize(self, session: Session, params: Dict[str, Any]) -> Dict[str, Any]:
        """Handle initialize request."""
        init_params = self._parse_params(InitializeParams, params)
        supported = self.config.protocol_versions
        if init_params.protocol_version not in supported:
            raise UnsupportedProtocolVersion(init_params.protocol_version, supported)

        with session.lock:
            if session.state is SessionState.INITIALIZED and session.initialize_result:
                logger.debug("Session already initialized", session_id=session.id)
                return dict(session.initialize_result)

            result = InitializeResult(
                protocol_version=init_params.protocol_version,
                capabilities=self._capabilities,
                server_info=self._server_info,
                instructions=self.config.instructions,
            ).to_dict()

            session.client_info = init_params.client_info
            session.protocol_version = init_params.protocol_version
            session.negotiated_capabilities = set(self._negotiate(init_params.capabilities))
            session.initialize_result = result
            session.state = SessionState.INITIALIZED

        logger.info(
            "Client initialized",
            session_id=session.id,
            protocol_version=init_params.protocol_version,
            client_info=init_params.client_info.model_dump(),
            capabilities=sorted(session.negotiated_capabilities),
        )
        return dict(result)

    async def _handle_initialized(self, session: Session, params: Dict[str, Any]) -> None:
        """Handle initialized notification."""
        logger.info("Client initialization complete", session_id=session.id)

    async def _handle_ping(self, session: Session, params: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    async def _handle_tools_list(self, session: Session, params: Dict[str, Any]) -> Dict[str, Any]:
        """Handle tools list request."""
        list_params = self._parse_params(PaginatedParams, params)
        page = self.registry.list_tools(list_params.cursor, list_params.limit)

        logger.debug("Tools list requested", tool_count=len(page.items))

        result: Dict[str, Any] = {"tools": [tool.model_dump(by_alias=True) for tool in page.items]}
        if page.next_cursor:
            result["nextCursor"] = page.next_cursor
        return result

    async def _handle_tools_call(self, session: Session, params: Dict[str, Any]) -> Dict[str, Any]:
        """Handle tool call request."""
        call_params = self._parse_params(ToolCallParams, params)
        tool_name = call_params.name
        tool = self.registry.get_tool(tool_name)

        validation = self.validator.validate(tool.input_schema, call_params.arguments or {})
        if not validation.valid:
            tool_calls.labels(tool=tool_name, status='invalid').inc()
            raise InvalidParams(
                f"Invalid arguments for tool '{tool_name}'",
                violations=validation.violations(),
            )

        logger.info("Tool call requested", tool=tool_name, session_id=session.id)

        start_time = time.perf_counter()
        with tool_duration.labels(tool=tool_name).time():
            result = await tool.call(validation.value, timeout=self.config.tool_timeout)

        tool_calls.labels(tool=tool_name, status='error' if result.is_error else 'success').inc()
        logger.info(
            "Tool call completed",
            tool=tool_name,
            is_error=result.is_error,
            duration=time.perf_counter() - start_time,
        )
        return result.to_dict()

    async def _handle_resources_list(self, session: Session, params: Dict[str, Any]) -> Dict[str, Any]:
        """Handle resources list request."""
        list_params = self._parse_params(PaginatedParams, params)
        page = self.registry.list_resources(list_params.cursor, list_params.limit)

        result: Dict[str, Any] = {
            "resources": [
                resource.model_dump(by_alias=True, exclude_none=True) for resource in page.items
            ]
        }
        if page.next_cursor:
            result["nextCursor"] = page.next_cursor
        return result

    async def _handle_resources_read(self, session: Session, params: Dict[str, Any]) -> Dict[str, Any]:
        """Handle resource read request."""
        read_params = self._parse_params(ResourceReadParams, params)
        resource = self.registry.get_resource(read_params.uri)

        logger.info("Resource read requested", uri=read_params.uri, session_id=session.id)
        result = await resource.read(read_params.uri, timeout=self.config.tool_timeout)
        return result.to_dict()

    async def _handle_set_log_level(self, session: Session, params: Dict[str, Any]) -> Dict[str, Any]:
        """Handle log level change request."""
        level = self._parse_params(SetLevelParams, params).level.lower()
        if level not in LOG_LEVELS:
            raise InvalidParams(f"Invalid log level: {level}", data={"supported": list(LOG_LEVELS)})

        session.log_level = level
        logger.info("Log level changed", session_id=session.id, level=level)
        return {}
