"""JSON-RPC 2.0 wire codec."""

import json
import math
from typing import Any, Dict, Optional, Union
import structlog

from .errors import InternalError, InvalidRequest, ParseError
from .messages import (
    JSONRPC_VERSION,
    BatchRequest,
    BatchResponse,
    InvalidEntry,
    MCPNotification,
    MCPRequest,
    MCPResponse,
    Message,
    RequestId,
)

logger = structlog.get_logger()


def _is_valid_id(value: Any) -> bool:
    # bool is an int subclass but never a valid JSON-RPC id
    return isinstance(value, str) or (isinstance(value, int) and not isinstance(value, bool))


def _reject_constant(name: str) -> Any:
    raise ParseError(f"Parse error: {name} is not valid JSON")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ParseError(f"Parse error: number {text} is out of range")
    return value


class MessageCodec:
    """Parses raw bodies into typed messages and serializes responses."""

    def parse(self, raw: Union[bytes, str]) -> Message:
        """Parse a request body.

        Raises ``ParseError`` for malformed JSON and ``InvalidRequest`` for
        well-formed JSON that is not a JSON-RPC 2.0 request, notification or
        non-empty batch.
        """
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ParseError(f"Parse error: body is not valid UTF-8 ({e.reason})")

        try:
            payload = json.loads(raw, parse_constant=_reject_constant, parse_float=_finite_float)
        except json.JSONDecodeError as e:
            raise ParseError(f"Parse error: {e.msg}")
        except ValueError as e:
            # integer literals beyond the interpreter's digit limit
            raise ParseError(f"Parse error: {e}")

        if isinstance(payload, list):
            if not payload:
                raise InvalidRequest("Invalid request: empty batch")
            return BatchRequest(entries=[self._parse_entry(item) for item in payload])

        return self.parse_object(payload)

    def parse_object(self, payload: Any) -> Union[MCPRequest, MCPNotification]:
        """Validate a single decoded JSON value against the envelope."""
        if not isinstance(payload, dict):
            raise InvalidRequest("Invalid request: message must be a JSON object")

        request_id = self._extract_id(payload)
        has_id = "id" in payload

        if payload.get("jsonrpc") != JSONRPC_VERSION:
            raise InvalidRequest(
                "Invalid request: 'jsonrpc' must be \"2.0\"", request_id=request_id
            )

        method = payload.get("method")
        if not isinstance(method, str) or not method:
            raise InvalidRequest(
                "Invalid request: 'method' must be a non-empty string", request_id=request_id
            )

        if has_id and request_id is None:
            raise InvalidRequest("Invalid request: 'id' must be a string or integer")

        params = payload.get("params")
        if params is not None and not isinstance(params, dict):
            raise InvalidRequest(
                "Invalid request: 'params' must be an object", request_id=request_id
            )

        if has_id:
            return MCPRequest(id=request_id, method=method, params=params)
        return MCPNotification(method=method, params=params)

    def _parse_entry(self, item: Any) -> Union[MCPRequest, MCPNotification, InvalidEntry]:
        try:
            return self.parse_object(item)
        except InvalidRequest as e:
            logger.debug("Invalid batch entry", error=e.message)
            return InvalidEntry(id=e.request_id, error=e.to_error())

    @staticmethod
    def _extract_id(payload: Dict[str, Any]) -> Optional[RequestId]:
        value = payload.get("id")
        return value if _is_valid_id(value) else None

    def serialize(self, message: Union[MCPResponse, BatchResponse]) -> bytes:
        """Serialize a response or batch response to compact UTF-8 JSON.

        A response whose result holds NaN or an infinity is replaced by an
        internal error for the same id, so the body is always strict JSON.
        """
        if isinstance(message, BatchResponse):
            return b"[" + b",".join(self._encode(response) for response in message.responses) + b"]"
        return self._encode(message)

    def _encode(self, response: MCPResponse) -> bytes:
        try:
            return _dumps(response.to_dict())
        except ValueError as e:
            logger.error("Response is not valid JSON", request_id=response.id, error=str(e))
            fallback = MCPResponse(
                id=response.id,
                error=InternalError("Internal error: result is not representable as JSON").to_error(),
            )
            return _dumps(fallback.to_dict())


def _dumps(payload: Any) -> bytes:
    return json.dumps(
        payload, separators=(",", ":"), ensure_ascii=False, allow_nan=False, default=str
    ).encode("utf-8")
