"""Serverless MCP server: JSON-RPC protocol and session engine."""

__version__ = "1.0.0"
