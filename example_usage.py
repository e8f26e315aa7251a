#!/usr/bin/env python3
"""Example usage of the Serverless MCP Server."""

import asyncio
import json
import sys

from serverless_mcp.client import MCPClient, MCPClientError


async def example_session(url: str):
    """Example: a full session against a running server."""
    print("🚀 Session Example")

    async with MCPClient(url) as client:
        result = await client.initialize()
        print(f"Connected to {result['serverInfo']['name']} "
              f"(protocol {result['protocolVersion']}, session {client.session_id})")

        tools = await client.list_tools()
        print(f"Available tools: {', '.join(tool['name'] for tool in tools)}")

        outcome = await client.call_tool("calculator", {"operation": "multiply", "a": 6, "b": 7})
        print(f"calculator(6 * 7): {outcome['structuredContent']['result']}")

        failure = await client.call_tool("calculator", {"operation": "divide", "a": 1, "b": 0})
        print(f"calculator(1 / 0): isError={failure['isError']}, {failure['content'][0]['text']}")

        status = await client.read_resource("system://status")
        print("System status:")
        print(json.dumps(json.loads(status["contents"][0]["text"]), indent=2))

        try:
            await client.call_tool("calculator", {"operation": "add", "a": "two", "b": 2})
        except MCPClientError as e:
            print(f"Rejected arguments ({e.code}): {json.dumps(e.data)}")
    print()


async def main():
    url = sys.argv[1] if len(sys.argv) > 1 else "http://127.0.0.1:8000/mcp"
    print("Serverless MCP Server - Usage Examples")
    print("=" * 50)
    print("Start the server first with: python main.py\n")
    await example_session(url)


if __name__ == "__main__":
    asyncio.run(main())
