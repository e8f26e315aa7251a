"""Configuration management for MCP server."""

import os
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
import json
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


SUPPORTED_PROTOCOL_VERSIONS = ["2025-06-18", "2025-03-26", "2024-11-05"]


class SessionConfig(BaseModel):
    """Session lifecycle configuration."""
    ttl: float = 3600.0
    sweep_interval: float = 60.0
    # Create a session under an unknown client-supplied id instead of 404
    adopt_unknown_ids: bool = False


class PaginationConfig(BaseModel):
    """Page sizes for tools/list and resources/list."""
    default_page_size: int = Field(default=50, gt=0)
    max_page_size: int = Field(default=100, gt=0)


class TransportConfig(BaseModel):
    """Transport configuration."""
    type: str = "http"  # http, stdio
    host: str = "127.0.0.1"
    port: int = 8000
    path: str = "/mcp"
    cors_allow_origin: str = "*"


class ServerConfig(BaseSettings):
    """Main server configuration."""

    # Server settings
    server_name: str = "Serverless MCP Server"
    server_version: str = "1.0.0"
    instructions: Optional[str] = "MCP server with calculator and utility tools"
    environment: str = "development"
    debug: bool = False
    log_level: str = "info"

    # Protocol settings
    protocol_versions: List[str] = Field(default_factory=lambda: list(SUPPORTED_PROTOCOL_VERSIONS))
    tool_timeout: Optional[float] = 30.0

    # Metrics
    metrics_enabled: bool = False
    metrics_port: Optional[int] = None

    session: SessionConfig = Field(default_factory=SessionConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)

    class Config:
        env_file = ".env"
        env_nested_delimiter = "__"
        case_sensitive = False

    @classmethod
    def from_file(cls, config_file: str) -> "ServerConfig":
        """Load configuration from JSON file."""
        with open(config_file, "r") as f:
            config_data = json.load(f)
        return cls(**config_data)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump()


def _flag(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


# Short variable name -> (section or None for top level, field, parser)
ENV_OVERRIDES: Dict[str, Tuple[Optional[str], str, Callable[[str], Any]]] = {
    "TRANSPORT_TYPE": ("transport", "type", str),
    "TRANSPORT_HOST": ("transport", "host", str),
    "TRANSPORT_PORT": ("transport", "port", int),
    "SESSION_TTL": ("session", "ttl", float),
    "PAGE_SIZE": ("pagination", "default_page_size", int),
    "TOOL_TIMEOUT": (None, "tool_timeout", float),
    "MCP_ENV": (None, "environment", str),
    "METRICS_ENABLED": (None, "metrics_enabled", _flag),
    "METRICS_PORT": (None, "metrics_port", int),
}


def apply_env_overrides(config: ServerConfig, environ: Optional[Mapping[str, str]] = None) -> ServerConfig:
    """Apply the short-name environment variables on top of ``config``."""
    environ = os.environ if environ is None else environ
    for name, (section, field, parse) in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if not raw:
            continue
        target = getattr(config, section) if section else config
        try:
            setattr(target, field, parse(raw))
        except ValueError as e:
            raise ValueError(f"Invalid value for {name}: {raw!r}") from e
    return config


def load_config(
    config_file: Optional[str] = None,
    use_env: bool = True
) -> ServerConfig:
    """Load configuration from a JSON file or the environment.

    A missing ``config_file`` falls back to the environment. With
    ``use_env`` the short-name overrides in ``ENV_OVERRIDES`` win over both.
    """
    if config_file and os.path.exists(config_file):
        config = ServerConfig.from_file(config_file)
    elif use_env:
        config = ServerConfig.from_env()
    else:
        config = ServerConfig.model_construct()

    if use_env:
        apply_env_overrides(config)
    return config


def create_sample_config() -> Dict[str, Any]:
    """Create a sample configuration for reference."""
    return {
        "server_name": "Serverless MCP Server",
        "server_version": "1.0.0",
        "instructions": "MCP server with calculator and utility tools",
        "environment": "development",
        "debug": False,
        "log_level": "info",
        "protocol_versions": list(SUPPORTED_PROTOCOL_VERSIONS),
        "tool_timeout": 30.0,
        "metrics_enabled": False,
        "metrics_port": None,
        "session": {
            "ttl": 3600.0,
            "sweep_interval": 60.0,
            "adopt_unknown_ids": False
        },
        "pagination": {
            "default_page_size": 50,
            "max_page_size": 100
        },
        "transport": {
            "type": "http",
            "host": "127.0.0.1",
            "port": 8000,
            "path": "/mcp",
            "cors_allow_origin": "*"
        }
    }
