"""Base capability interfaces and registry."""

import asyncio
import base64
import binascii
import inspect
import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar
import structlog
from pydantic import BaseModel

from ..protocol.errors import DomainError, DuplicateCapability, InvalidParams, NotFound, ToolTimeout
from ..protocol.messages import ResourceDefinition, ResourceReadResult, ToolCallResult, ToolDefinition

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


async def invoke_handler(handler: Callable[..., Any], argument: Any, timeout: Optional[float]) -> Any:
    """Run a sync or async handler, bounded by ``timeout`` seconds."""
    if inspect.iscoroutinefunction(handler):
        call = handler(argument)
    else:
        call = asyncio.to_thread(handler, argument)

    if not timeout or timeout <= 0:
        return await call
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError:
        raise ToolTimeout(timeout)


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    # NaN and infinities have no JSON form
    return json.dumps(value, indent=2, ensure_ascii=False, allow_nan=False, default=str)


class Capability(ABC):
    """Something a client can discover and invoke."""

    kind: str = "capability"

    def __init__(self, manual: bool = True):
        # True when registered explicitly rather than discovered
        self.manual = manual

    @property
    @abstractmethod
    def key(self) -> str:
        """Unique key within the capability kind."""


class Tool(Capability):
    """Abstract base class for MCP tools."""

    kind = "tool"

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Tool description."""
        pass

    @property
    @abstractmethod
    def input_schema(self) -> Dict[str, Any]:
        """JSON schema for tool input validation."""
        pass

    @abstractmethod
    async def execute(self, arguments: Dict[str, Any]) -> Any:
        """Execute the tool with already validated arguments."""
        pass

    @property
    def key(self) -> str:
        return self.name

    async def call(self, arguments: Dict[str, Any], timeout: Optional[float] = 30.0) -> ToolCallResult:
        """Call the tool, turning any handler failure into an error result.

        Arguments must already be validated; this is the invocation boundary
        where domain failures stop being exceptions.
        """
        try:
            if timeout and timeout > 0:
                try:
                    result = await asyncio.wait_for(self.execute(arguments), timeout=timeout)
                except asyncio.TimeoutError:
                    raise ToolTimeout(timeout)
            else:
                result = await self.execute(arguments)

        except ToolTimeout as e:
            logger.error("Tool timed out", tool=self.name, timeout=e.timeout)
            return self.error_result(e.message)

        except DomainError as e:
            logger.warning("Tool reported an error", tool=self.name, error=e.message)
            return self.error_result(e.message)

        except Exception as e:
            logger.error(
                "Tool execution failed",
                tool=self.name,
                error=str(e),
                exc_info=True,
            )
            return self.error_result(f"Tool {self.name} execution failed: {e}")

        try:
            outcome = self.success_result(result)
        except ValueError as e:
            logger.error("Tool result is not valid JSON", tool=self.name, error=str(e))
            return self.error_result(f"Tool {self.name} returned a value with no JSON form: {e}")

        logger.debug("Tool executed successfully", tool=self.name)
        return outcome

    @staticmethod
    def success_result(result: Any) -> ToolCallResult:
        if isinstance(result, ToolCallResult):
            return result
        return ToolCallResult(
            content=[{"type": "text", "text": _to_text(result)}],
            structured_content=result if isinstance(result, dict) else None,
            is_error=False,
        )

    @staticmethod
    def error_result(message: str) -> ToolCallResult:
        return ToolCallResult(
            content=[{"type": "text", "text": f"Tool error: {message}"}],
            is_error=True,
        )

    def get_definition(self) -> ToolDefinition:
        """Get tool definition for MCP."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
        )


class FunctionTool(Tool):
    """Tool backed by a plain (sync or async) callable."""

    def __init__(
        self,
        name: str,
        description: str,
        input_schema: Dict[str, Any],
        handler: Callable[[Dict[str, Any]], Any],
        manual: bool = True,
    ):
        super().__init__(manual=manual)
        self._name = name
        self._description = description
        self._input_schema = input_schema
        self.handler = handler

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def input_schema(self) -> Dict[str, Any]:
        return self._input_schema

    async def execute(self, arguments: Dict[str, Any]) -> Any:
        # timeout is enforced by call()
        return await invoke_handler(self.handler, arguments, None)


class Resource(Capability):
    """Abstract base class for URI-addressed readable resources."""

    kind = "resource"

    def __init__(
        self,
        uri: str,
        name: str,
        description: str = "",
        mime_type: str = "text/plain",
        manual: bool = True,
    ):
        super().__init__(manual=manual)
        self.uri = uri
        self.name = name
        self.description = description
        self.mime_type = mime_type

    @property
    def key(self) -> str:
        return self.uri

    @abstractmethod
    async def fetch(self, uri: str) -> Any:
        """Produce the resource contents."""
        pass

    async def read(self, uri: str, timeout: Optional[float] = 30.0) -> ResourceReadResult:
        """Read the resource, turning handler failures into an error result."""
        try:
            if timeout and timeout > 0:
                try:
                    value = await asyncio.wait_for(self.fetch(uri), timeout=timeout)
                except asyncio.TimeoutError:
                    raise ToolTimeout(timeout)
            else:
                value = await self.fetch(uri)
        except DomainError as e:
            logger.warning("Resource reported an error", uri=uri, error=e.message)
            return self._error_result(uri, e.message)
        except Exception as e:
            logger.error("Resource read failed", uri=uri, error=str(e), exc_info=True)
            return self._error_result(uri, f"Resource {uri} read failed: {e}")

        try:
            content = self._content(uri, value)
        except ValueError as e:
            logger.error("Resource contents are not valid JSON", uri=uri, error=str(e))
            return self._error_result(uri, f"Resource {uri} returned a value with no JSON form: {e}")
        return ResourceReadResult(contents=[content])

    def _content(self, uri: str, value: Any) -> Dict[str, Any]:
        content: Dict[str, Any] = {"uri": uri, "mimeType": self.mime_type}
        if isinstance(value, (bytes, bytearray)):
            content["blob"] = base64.b64encode(bytes(value)).decode("ascii")
        else:
            content["text"] = _to_text(value)
        return content

    @staticmethod
    def _error_result(uri: str, message: str) -> ResourceReadResult:
        return ResourceReadResult(
            contents=[{"uri": uri, "mimeType": "text/plain", "text": f"Resource error: {message}"}],
            is_error=True,
        )

    def get_definition(self) -> ResourceDefinition:
        return ResourceDefinition(
            uri=self.uri,
            name=self.name,
            description=self.description or None,
            mime_type=self.mime_type,
        )


class FunctionResource(Resource):
    """Resource backed by a plain (sync or async) callable taking the uri."""

    def __init__(
        self,
        uri: str,
        name: str,
        description: str,
        mime_type: str,
        handler: Callable[[str], Any],
        manual: bool = True,
    ):
        super().__init__(uri, name, description, mime_type, manual=manual)
        self.handler = handler

    async def fetch(self, uri: str) -> Any:
        return await invoke_handler(self.handler, uri, None)


class Page(BaseModel, Generic[T]):
    """One page of a listing."""
    items: List[T]
    next_cursor: Optional[str] = None


def encode_cursor(kind: str, offset: int) -> str:
    return base64.urlsafe_b64encode(f"{kind}:{offset}".encode()).decode("ascii")


def decode_cursor(kind: str, cursor: str) -> int:
    """Return the offset encoded in ``cursor`` for this listing kind."""
    try:
        decoded = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        cursor_kind, _, raw_offset = decoded.partition(":")
        offset = int(raw_offset)
    except (binascii.Error, UnicodeError, ValueError):
        raise InvalidParams(f"Invalid cursor: {cursor}")

    if cursor_kind != kind or offset < 0:
        raise InvalidParams(f"Invalid cursor: {cursor}")
    return offset


class CapabilityRegistry:
    """Registry for tools and resources.

    Populated at setup time; read-only while serving.
    """

    def __init__(self, default_page_size: int = DEFAULT_PAGE_SIZE, max_page_size: int = MAX_PAGE_SIZE):
        self.default_page_size = default_page_size
        self.max_page_size = max(max_page_size, default_page_size)
        self._tools: Dict[str, Tool] = {}
        self._resources: Dict[str, Resource] = {}

    def register_tool(self, tool: Tool) -> Tool:
        """Register a tool instance."""
        if tool.name in self._tools:
            raise DuplicateCapability("tool", tool.name)
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool=tool.name, manual=tool.manual)
        return tool

    def register_tool_function(
        self,
        name: str,
        description: str,
        input_schema: Dict[str, Any],
        handler: Callable[[Dict[str, Any]], Any],
        manual: bool = True,
    ) -> Tool:
        """Register a callable as a tool."""
        return self.register_tool(FunctionTool(name, description, input_schema, handler, manual=manual))

    def register_resource(self, resource: Resource) -> Resource:
        """Register a resource instance."""
        if resource.uri in self._resources:
            raise DuplicateCapability("resource", resource.uri)
        self._resources[resource.uri] = resource
        logger.debug("Resource registered", uri=resource.uri, manual=resource.manual)
        return resource

    def register_resource_function(
        self,
        uri: str,
        name: str,
        description: str,
        mime_type: str,
        handler: Callable[[str], Any],
        manual: bool = True,
    ) -> Resource:
        """Register a callable as a resource."""
        return self.register_resource(
            FunctionResource(uri, name, description, mime_type, handler, manual=manual)
        )

    def get_tool(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise NotFound(f"Unknown tool: {name}")
        return tool

    def get_resource(self, uri: str) -> Resource:
        resource = self._resources.get(uri)
        if resource is None:
            raise NotFound(f"Unknown resource: {uri}")
        return resource

    def list_tools(self, cursor: Optional[str] = None, limit: Optional[int] = None) -> Page[ToolDefinition]:
        """List a page of tool definitions in registration order."""
        return self._paginate(
            "tools", [tool.get_definition() for tool in list(self._tools.values())], cursor, limit
        )

    def list_resources(
        self, cursor: Optional[str] = None, limit: Optional[int] = None
    ) -> Page[ResourceDefinition]:
        """List a page of resource definitions in registration order."""
        return self._paginate(
            "resources",
            [resource.get_definition() for resource in list(self._resources.values())],
            cursor,
            limit,
        )

    def _paginate(self, kind: str, items: List[T], cursor: Optional[str], limit: Optional[int]) -> Page[T]:
        if limit is None:
            page_size = self.default_page_size
        elif limit <= 0:
            raise InvalidParams(f"Invalid limit: {limit}")
        else:
            page_size = min(limit, self.max_page_size)

        start = decode_cursor(kind, cursor) if cursor is not None else 0
        end = start + page_size
        next_cursor = encode_cursor(kind, end) if end < len(items) else None
        return Page(items=items[start:end], next_cursor=next_cursor)

    @property
    def tool_count(self) -> int:
        return len(self._tools)

    @property
    def resource_count(self) -> int:
        return len(self._resources)
