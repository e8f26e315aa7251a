"""MCP message types and JSON-RPC 2.0 protocol definitions."""

from enum import IntEnum
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


JSONRPC_VERSION = "2.0"

RequestId = Union[str, int]


class ErrorCode(IntEnum):
    """JSON-RPC 2.0 error codes."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    # Application range (-32099..-32000)
    DOMAIN_ERROR = -32000
    SESSION_NOT_FOUND = -32001
    NOT_FOUND = -32002
    TIMEOUT_ERROR = -32003
    DUPLICATE_CAPABILITY = -32004
    DUPLICATE_SESSION = -32005


class MCPError(BaseModel):
    """JSON-RPC 2.0 error object."""
    code: int
    message: str
    data: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": int(self.code), "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload


class MCPMessage(BaseModel):
    """Base MCP message."""
    jsonrpc: str = Field(default=JSONRPC_VERSION, pattern=r"^2\.0$")


class MCPRequest(MCPMessage):
    """JSON-RPC 2.0 request message."""
    id: RequestId
    method: str
    params: Optional[Dict[str, Any]] = None


class MCPNotification(MCPMessage):
    """JSON-RPC 2.0 notification message."""
    method: str
    params: Optional[Dict[str, Any]] = None


class InvalidEntry(BaseModel):
    """A batch element that failed envelope validation.

    Kept in place so the engine can answer it with an error response
    without aborting its siblings.
    """
    id: Optional[RequestId] = None
    error: MCPError


class BatchRequest(BaseModel):
    """Ordered sequence of requests and notifications sent together."""
    entries: List[Union[MCPRequest, MCPNotification, InvalidEntry]]

    @property
    def requests(self) -> List[MCPRequest]:
        return [entry for entry in self.entries if isinstance(entry, MCPRequest)]


class MCPResponse(MCPMessage):
    """JSON-RPC 2.0 response message."""
    id: Optional[RequestId] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[MCPError] = None

    def model_post_init(self, __context: Any) -> None:
        """Validate that either result or error is present, but not both."""
        if self.result is None and self.error is None:
            raise ValueError("Either 'result' or 'error' must be present")
        if self.result is not None and self.error is not None:
            raise ValueError("Both 'result' and 'error' cannot be present")

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        else:
            payload["result"] = self.result
        return payload


class BatchResponse(BaseModel):
    """Responses to a batch, one per request element, in request order."""
    responses: List[MCPResponse] = Field(default_factory=list)

    def to_list(self) -> List[Dict[str, Any]]:
        return [response.to_dict() for response in self.responses]


Message = Union[MCPRequest, MCPNotification, BatchRequest]


# MCP-specific method names
class MCPMethods:
    """Standard MCP method names."""
    # Server lifecycle
    INITIALIZE = "initialize"
    INITIALIZED = "notifications/initialized"
    PING = "ping"

    # Tools
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"

    # Resources
    RESOURCES_LIST = "resources/list"
    RESOURCES_READ = "resources/read"

    # Logging
    LOGGING_SET_LEVEL = "logging/setLevel"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Standard MCP schemas
class ToolDefinition(_CamelModel):
    """Tool definition schema."""
    name: str
    description: str
    input_schema: Dict[str, Any] = Field(alias="inputSchema")


class ResourceDefinition(_CamelModel):
    """Resource definition schema."""
    uri: str
    name: str
    description: Optional[str] = None
    mime_type: Optional[str] = Field(default=None, alias="mimeType")


class ServerCapabilities(BaseModel):
    """Server capabilities schema."""
    experimental: Optional[Dict[str, Any]] = None
    logging: Optional[Dict[str, Any]] = None
    prompts: Optional[Dict[str, Any]] = None
    resources: Optional[Dict[str, Any]] = None
    tools: Optional[Dict[str, Any]] = None

    def enabled(self) -> List[str]:
        """Names of the capability kinds this server offers."""
        return [
            kind for kind in ("tools", "resources", "prompts", "logging")
            if getattr(self, kind) is not None
        ]


class ClientInfo(BaseModel):
    """Implementation info sent by the client."""
    name: str
    version: str


class InitializeParams(_CamelModel):
    """Initialize request parameters."""
    protocol_version: str = Field(alias="protocolVersion")
    capabilities: Dict[str, Any] = Field(default_factory=dict)
    client_info: ClientInfo = Field(alias="clientInfo")


class InitializeResult(_CamelModel):
    """Initialize response result."""
    protocol_version: str = Field(alias="protocolVersion")
    capabilities: ServerCapabilities
    server_info: Dict[str, str] = Field(alias="serverInfo")
    instructions: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "protocolVersion": self.protocol_version,
            "capabilities": self.capabilities.model_dump(exclude_none=True),
            "serverInfo": dict(self.server_info),
        }
        if self.instructions:
            payload["instructions"] = self.instructions
        return payload


class PaginatedParams(BaseModel):
    """Parameters accepted by the list methods."""
    cursor: Optional[str] = None
    limit: Optional[int] = None


class ToolCallParams(BaseModel):
    """Tool call request parameters."""
    name: str
    arguments: Optional[Dict[str, Any]] = None


class ToolCallResult(_CamelModel):
    """Tool call response result."""
    content: List[Dict[str, Any]]
    is_error: bool = Field(default=False, alias="isError")
    structured_content: Optional[Dict[str, Any]] = Field(default=None, alias="structuredContent")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"content": self.content, "isError": self.is_error}
        if self.structured_content is not None:
            payload["structuredContent"] = self.structured_content
        return payload


class ResourceReadParams(BaseModel):
    """Resource read request parameters."""
    uri: str


class ResourceReadResult(_CamelModel):
    """Resource read response result."""
    contents: List[Dict[str, Any]]
    is_error: bool = Field(default=False, alias="isError")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"contents": self.contents}
        if self.is_error:
            payload["isError"] = True
        return payload


class SetLevelParams(BaseModel):
    """logging/setLevel parameters."""
    level: str
