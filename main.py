#!/usr/bin/env python3
"""Main entry point for the Serverless MCP Server."""

import asyncio
import argparse
import json
import logging
import sys
from typing import List, Optional
import structlog
from prometheus_client import start_http_server
from structlog.contextvars import clear_contextvars

from serverless_mcp.config import ServerConfig, load_config, create_sample_config
from serverless_mcp.protocol.server import MCPServer
from serverless_mcp.session import filter_by_session_level
from serverless_mcp.tools import register_demo_capabilities
from serverless_mcp.transport import HttpTransport, StdioTransport


def setup_logging(level: str = "info", debug: bool = False) -> None:
    """Setup structured logging."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        filter_by_session_level,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if debug:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Logs go to stderr so stdout stays clean for the stdio transport
    logging.basicConfig(level=log_level, format="%(message)s", stream=sys.stderr)


def create_server(config: ServerConfig) -> MCPServer:
    """Build the server and register the bundled capabilities."""
    server = MCPServer(config)
    register_demo_capabilities(server)
    return server


TRANSPORTS = {
    "http": HttpTransport,
    "stdio": StdioTransport,
}


def create_transport(server: MCPServer):
    """Instantiate the transport named by ``config.transport.type``."""
    settings = server.config.transport
    transport_class = TRANSPORTS.get(settings.type)
    if transport_class is None:
        raise ValueError(f"Unknown transport type: {settings.type}")
    return transport_class(server, settings.model_dump())


async def run_server(config: ServerConfig) -> None:
    """Serve until the transport stops or the process is interrupted."""
    logger = structlog.get_logger()
    server = create_server(config)
    transport = create_transport(server)
    logger.info(
        "Starting MCP server",
        server_name=config.server_name,
        version=config.server_version,
        transport_type=config.transport.type,
        tools=server.registry.tool_count,
        resources=server.registry.resource_count,
    )

    # The HTTP app serves /metrics itself
    if config.metrics_port and config.transport.type == "stdio":
        start_http_server(config.metrics_port)
        logger.info("Metrics endpoint started", port=config.metrics_port)

    try:
        async with transport:
            await transport.serve()
    except Exception as e:
        logger.error("Server error", error=str(e), exc_info=True)
        sys.exit(1)
    finally:
        clear_contextvars()
        logger.info("MCP server stopped")


EPILOG = """
Examples:
  # Run the HTTP transport (default) on 127.0.0.1:8000/mcp
  python main.py

  # Listen on all interfaces, port 9000
  python main.py --host 0.0.0.0 --port 9000

  # Run over stdin/stdout with a JSON config file
  python main.py --transport stdio --config config.json

  # Print a sample config, or check one without starting
  python main.py --sample-config
  python main.py --validate-config --config config.json

  # Shorter session TTL and smaller pages
  SESSION_TTL=600 PAGE_SIZE=10 python main.py
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Serverless MCP Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    parser.add_argument("--config", "-c", help="Configuration file path (JSON format)")
    parser.add_argument("--sample-config", action="store_true",
                        help="Print a sample configuration and exit")
    parser.add_argument("--validate-config", action="store_true",
                        help="Load and print the effective configuration, then exit")
    parser.add_argument("--transport", choices=["http", "stdio"],
                        help="Override the configured transport")
    parser.add_argument("--host", help="HTTP bind address")
    parser.add_argument("--port", type=int, help="HTTP port")
    parser.add_argument("--debug", action="store_true",
                        help="Debug logging with console output")
    return parser


def apply_cli_overrides(config: ServerConfig, args: argparse.Namespace) -> ServerConfig:
    """Command-line flags win over file and environment settings."""
    if args.transport:
        config.transport.type = args.transport
    if args.host:
        config.transport.host = args.host
    if args.port is not None:
        config.transport.port = args.port
    if args.debug:
        config.debug = True
        config.log_level = "debug"
    return config


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.sample_config:
        print(json.dumps(create_sample_config(), indent=2))
        return

    try:
        config = apply_cli_overrides(load_config(args.config), args)
    except (ValueError, OSError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.validate_config:
        print("Configuration is valid")
        print(json.dumps(config.to_dict(), indent=2))
        return

    setup_logging(config.log_level, config.debug)
    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
