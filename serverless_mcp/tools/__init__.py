"""Capability registry, schema validation and demo capabilities."""

from .base import (
    CapabilityRegistry,
    FunctionResource,
    FunctionTool,
    Page,
    Resource,
    Tool,
)
from .demo import register_demo_capabilities
from .schema import SchemaValidator, ValidationResult, Violation

__all__ = [
    "CapabilityRegistry",
    "Tool",
    "FunctionTool",
    "Resource",
    "FunctionResource",
    "Page",
    "SchemaValidator",
    "ValidationResult",
    "Violation",
    "register_demo_capabilities",
]
