"""Tests for the JSON-RPC message codec."""

import json

import pytest

from serverless_mcp.protocol import (
    BatchRequest,
    BatchResponse,
    ErrorCode,
    InvalidRequest,
    MCPError,
    MCPNotification,
    MCPRequest,
    MCPResponse,
    MessageCodec,
    ParseError,
)
from serverless_mcp.protocol.messages import InvalidEntry


@pytest.fixture
def codec():
    return MessageCodec()


def strict_loads(data):
    def reject(name):
        raise ValueError(f"non-standard JSON constant {name}")
    return json.loads(data, parse_constant=reject)


class TestParse:
    """Test decoding of request bodies."""

    def test_request(self, codec):
        message = codec.parse(b'{"jsonrpc":"2.0","id":1,"method":"tools/list","params":{"limit":5}}')

        assert isinstance(message, MCPRequest)
        assert message.id == 1
        assert message.method == "tools/list"
        assert message.params == {"limit": 5}

    def test_string_id_is_preserved(self, codec):
        message = codec.parse('{"jsonrpc":"2.0","id":"abc-1","method":"ping"}')

        assert message.id == "abc-1"

    def test_notification(self, codec):
        message = codec.parse(b'{"jsonrpc":"2.0","method":"notifications/initialized"}')

        assert isinstance(message, MCPNotification)
        assert message.params is None

    def test_malformed_json(self, codec):
        with pytest.raises(ParseError) as exc_info:
            codec.parse(b'{"jsonrpc": "2.0", "method": ')

        assert exc_info.value.code == ErrorCode.PARSE_ERROR
        assert exc_info.value.request_id is None

    def test_invalid_utf8(self, codec):
        with pytest.raises(ParseError):
            codec.parse(b'\xff\xfe{}')

    @pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_literals_are_rejected(self, codec, literal):
        body = '{"jsonrpc":"2.0","id":1,"method":"tools/call","params":{"a":' + literal + "}}"

        with pytest.raises(ParseError):
            codec.parse(body)

    def test_out_of_range_number_is_rejected(self, codec):
        with pytest.raises(ParseError, match="out of range"):
            codec.parse(b'{"jsonrpc":"2.0","id":1,"method":"ping","params":{"a":1e400}}')

    def test_empty_batch(self, codec):
        with pytest.raises(InvalidRequest, match="empty batch"):
            codec.parse(b"[]")

    @pytest.mark.parametrize("body", [
        b'42',
        b'"ping"',
        b'{"id": 1, "method": "ping"}',
        b'{"jsonrpc": "1.0", "id": 1, "method": "ping"}',
        b'{"jsonrpc": "2.0", "id": 1}',
        b'{"jsonrpc": "2.0", "id": 1, "method": ""}',
        b'{"jsonrpc": "2.0", "id": 1, "method": 7}',
        b'{"jsonrpc": "2.0", "id": 1, "method": "ping", "params": [1, 2]}',
    ])
    def test_invalid_envelope(self, codec, body):
        with pytest.raises(InvalidRequest) as exc_info:
            codec.parse(body)

        assert exc_info.value.code == ErrorCode.INVALID_REQUEST

    def test_invalid_envelope_keeps_id(self, codec):
        with pytest.raises(InvalidRequest) as exc_info:
            codec.parse(b'{"id": 7, "method": "ping"}')

        assert exc_info.value.request_id == 7

    @pytest.mark.parametrize("request_id", ["true", "null", "1.5", "[1]", "{}"])
    def test_invalid_id(self, codec, request_id):
        body = '{"jsonrpc": "2.0", "id": %s, "method": "ping"}' % request_id

        with pytest.raises(InvalidRequest, match="'id'") as exc_info:
            codec.parse(body)

        assert exc_info.value.request_id is None

    def test_batch_keeps_invalid_entries_in_place(self, codec):
        body = json.dumps([
            {"jsonrpc": "2.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "id": 2},
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            5,
        ])

        message = codec.parse(body)

        assert isinstance(message, BatchRequest)
        assert [type(entry) for entry in message.entries] == [
            MCPRequest, InvalidEntry, MCPNotification, InvalidEntry
        ]
        assert message.entries[1].id == 2
        assert message.entries[1].error.code == ErrorCode.INVALID_REQUEST
        assert message.entries[3].id is None
        assert [request.id for request in message.requests] == [1]


class TestSerialize:
    """Test encoding of responses."""

    def test_success(self, codec):
        data = codec.serialize(MCPResponse(id=1, result={}))

        assert data == b'{"jsonrpc":"2.0","id":1,"result":{}}'

    def test_error_without_data(self, codec):
        response = MCPResponse(id="x", error=MCPError(code=-32601, message="Method 'nope' not found"))

        payload = json.loads(codec.serialize(response))

        assert payload == {
            "jsonrpc": "2.0",
            "id": "x",
            "error": {"code": -32601, "message": "Method 'nope' not found"},
        }

    def test_error_with_null_id(self, codec):
        response = MCPResponse(error=MCPError(code=-32700, message="Parse error", data={"offset": 3}))

        payload = json.loads(codec.serialize(response))

        assert payload["id"] is None
        assert payload["error"]["data"] == {"offset": 3}

    def test_batch(self, codec):
        batch = BatchResponse(responses=[
            MCPResponse(id=1, result={"a": 1}),
            MCPResponse(id=2, error=MCPError(code=-32002, message="Unknown tool: x")),
        ])

        payload = json.loads(codec.serialize(batch))

        assert [entry["id"] for entry in payload] == [1, 2]
        assert "error" in payload[1]

    def test_non_ascii_is_kept(self, codec):
        data = codec.serialize(MCPResponse(id=1, result={"text": "héllo ✓"}))

        assert "héllo ✓".encode("utf-8") in data

    def test_response_needs_result_or_error(self):
        with pytest.raises(ValueError):
            MCPResponse(id=1)

    def test_non_finite_result_becomes_internal_error(self, codec):
        data = codec.serialize(MCPResponse(id=7, result={"value": float("inf")}))

        payload = strict_loads(data)
        assert payload["id"] == 7
        assert payload["error"]["code"] == ErrorCode.INTERNAL_ERROR
        assert "result" not in payload

    def test_batch_with_non_finite_entry(self, codec):
        batch = BatchResponse(responses=[
            MCPResponse(id=1, result={"value": float("nan")}),
            MCPResponse(id=2, result={"value": 2.5}),
        ])

        payload = strict_loads(codec.serialize(batch))

        assert payload[0]["error"]["code"] == ErrorCode.INTERNAL_ERROR
        assert payload[1]["result"] == {"value": 2.5}
