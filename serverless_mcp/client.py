"""Minimal MCP client for the HTTP transport."""

import itertools
from typing import Any, Dict, List, Optional
import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .protocol.messages import MCPMethods

logger = structlog.get_logger()

SESSION_HEADER = "Mcp-Session-Id"


class MCPClientError(Exception):
    """Raised when the server answers with a JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"RPC Error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class MCPClient:
    """Talks JSON-RPC to an MCP server over HTTP, keeping the session id."""

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        client_info: Optional[Dict[str, str]] = None,
    ):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._ids = itertools.count(1)
        self.session_id: Optional[str] = None
        self.client_info = client_info or {"name": "serverless-mcp-client", "version": "1.0.0"}
        self.server_info: Optional[Dict[str, Any]] = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        return headers

    # Only failures before the request reached the server are retried
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
        reraise=True,
    )
    async def _post(self, payload: Any) -> httpx.Response:
        response = await self._client.post(self.url, json=payload, headers=self._headers())
        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            self.session_id = session_id
        return response

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a request and return its result."""
        request_id = next(self._ids)
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            payload["params"] = params

        response = await self._post(payload)
        body = response.json()
        if "error" in body:
            error = body["error"]
            logger.debug("Request failed", method=method, code=error.get("code"))
            raise MCPClientError(error.get("code"), error.get("message", ""), error.get("data"))
        return body["result"]

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> int:
        """Send a notification and return the HTTP status code."""
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            payload["params"] = params
        response = await self._post(payload)
        return response.status_code

    async def batch(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Send raw batch entries and return the raw responses."""
        response = await self._post(messages)
        if not response.content:
            return []
        return response.json()

    async def initialize(self, protocol_version: str = "2025-03-26") -> Dict[str, Any]:
        result = await self.request(MCPMethods.INITIALIZE, {
            "protocolVersion": protocol_version,
            "capabilities": {"tools": {}, "resources": {}, "logging": {}},
            "clientInfo": self.client_info,
        })
        self.server_info = result.get("serverInfo")
        await self.notify(MCPMethods.INITIALIZED)
        logger.info("Connected to MCP server", server_info=self.server_info, session_id=self.session_id)
        return result

    async def list_tools(self) -> List[Dict[str, Any]]:
        """Collect every page of tools/list."""
        return await self._collect(MCPMethods.TOOLS_LIST, "tools")

    async def list_resources(self) -> List[Dict[str, Any]]:
        """Collect every page of resources/list."""
        return await self._collect(MCPMethods.RESOURCES_LIST, "resources")

    async def _collect(self, method: str, key: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {}
        while True:
            result = await self.request(method, params)
            items.extend(result.get(key, []))
            cursor = result.get("nextCursor")
            if not cursor:
                return items
            params = {"cursor": cursor}

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request(MCPMethods.TOOLS_CALL, {"name": name, "arguments": arguments or {}})

    async def read_resource(self, uri: str) -> Dict[str, Any]:
        return await self.request(MCPMethods.RESOURCES_READ, {"uri": uri})

    async def close(self) -> None:
        """Delete the server-side session and release the HTTP client."""
        if self.session_id:
            await self._client.delete(self.url, headers={SESSION_HEADER: self.session_id})
            self.session_id = None
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
