"""Demo capabilities: calculator, text processing, simulated weather and status."""

import math
import platform
import random
import sys
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict

from ..protocol.errors import DomainError

if TYPE_CHECKING:
    from ..protocol.server import MCPServer


CALCULATOR_SCHEMA = {
    "type": "object",
    "properties": {
        "operation": {
            "type": "string",
            "enum": ["add", "subtract", "multiply", "divide", "power"],
            "description": "The mathematical operation to perform",
        },
        "a": {"type": "number", "description": "First operand"},
        "b": {"type": "number", "description": "Second operand"},
    },
    "required": ["operation", "a", "b"],
}

PROCESS_TEXT_SCHEMA = {
    "type": "object",
    "properties": {
        "text": {"type": "string", "description": "Text to process"},
        "operation": {
            "type": "string",
            "enum": ["uppercase", "lowercase", "reverse", "word_count", "character_count"],
            "description": "Text processing operation",
        },
    },
    "required": ["text", "operation"],
}

WEATHER_SCHEMA = {
    "type": "object",
    "properties": {
        "location": {"type": "string", "description": "City or location name"},
        "units": {
            "type": "string",
            "enum": ["celsius", "fahrenheit"],
            "default": "celsius",
            "description": "Temperature units",
        },
    },
    "required": ["location"],
}

WEATHER_CONDITIONS = ["sunny", "cloudy", "rainy", "partly_cloudy"]

_STARTED_AT = time.time()


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _power(a: float, b: float) -> float:
    # float arithmetic, so a huge exponent overflows
    try:
        return math.pow(a, b)
    except OverflowError as e:
        raise DomainError(f"Cannot compute {a} ** {b}: {e}")
    except ValueError:
        if a == 0:
            raise DomainError(f"Cannot compute {a} ** {b}: zero to a negative power")
        raise DomainError(f"Result of {a} ** {b} is not a real number")


def calculator(arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Perform a basic arithmetic operation on two numbers."""
    operation = arguments["operation"]
    a = arguments["a"]
    b = arguments["b"]

    try:
        if operation == "add":
            result = a + b
        elif operation == "subtract":
            result = a - b
        elif operation == "multiply":
            result = a * b
        elif operation == "divide":
            if b == 0:
                raise DomainError("Division by zero")
            result = a / b
        elif operation == "power":
            result = _power(a, b)
        else:
            raise DomainError(f"Unknown operation: {operation}")
    except OverflowError as e:
        raise DomainError(f"Cannot compute {operation} of {a} and {b}: {e}")

    if isinstance(result, float) and not math.isfinite(result):
        raise DomainError(f"Result of {operation} on {a} and {b} is out of range")

    return {
        "operation": operation,
        "operands": [a, b],
        "result": result,
        "timestamp": _timestamp(),
    }


def process_text(arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a simple transformation or count to a piece of text."""
    text = arguments["text"]
    operation = arguments["operation"]

    if operation == "uppercase":
        result: Any = text.upper()
    elif operation == "lowercase":
        result = text.lower()
    elif operation == "reverse":
        result = text[::-1]
    elif operation == "word_count":
        result = len(text.split())
    elif operation == "character_count":
        result = len(text)
    else:
        raise DomainError(f"Unknown operation: {operation}")

    return {
        "original_text": text,
        "operation": operation,
        "result": result,
        "processed_at": _timestamp(),
    }


def get_weather(arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Return simulated weather data for a location."""
    units = arguments.get("units", "celsius")
    temperature: float = random.randint(10, 30)
    if units == "fahrenheit":
        temperature = temperature * 9 / 5 + 32

    return {
        "location": arguments["location"],
        "temperature": temperature,
        "units": units,
        "condition": random.choice(WEATHER_CONDITIONS),
        "humidity": random.randint(40, 80),
        "wind_speed": random.randint(0, 20),
        "timestamp": _timestamp(),
        "note": "This is simulated weather data for demonstration purposes",
    }


def register_demo_capabilities(server: "MCPServer") -> None:
    """Register the demo tools and the system status resource on ``server``."""
    server.register_tool(
        "calculator", "Perform basic mathematical operations", CALCULATOR_SCHEMA, calculator
    )
    server.register_tool(
        "process_text", "Process and transform text", PROCESS_TEXT_SCHEMA, process_text
    )
    server.register_tool(
        "get_weather", "Get simulated weather information for a location", WEATHER_SCHEMA, get_weather
    )

    def system_status(uri: str) -> Dict[str, Any]:
        return {
            "server_time": _timestamp(),
            "uptime_seconds": round(time.time() - _STARTED_AT, 2),
            "python_version": platform.python_version(),
            "platform": sys.platform,
            "environment": server.config.environment,
            "active_sessions": len(server.sessions),
            "registered_tools": server.registry.tool_count,
            "status": "healthy",
        }

    server.register_resource(
        "system://status",
        "system_status",
        "Current system status and runtime information",
        "application/json",
        system_status,
    )
