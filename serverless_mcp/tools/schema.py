"""Validation of tool arguments against JSON-Schema-like input schemas."""

import copy
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class Violation(BaseModel):
    """A single schema violation."""
    path: str
    expected: str
    actual: str


class ValidationResult(BaseModel):
    """Outcome of validating arguments against a schema.

    ``value`` holds the arguments with defaults substituted and is only
    meaningful when ``valid`` is true.
    """
    valid: bool
    errors: List[Violation] = Field(default_factory=list)
    value: Any = None

    def violations(self) -> List[Dict[str, str]]:
        return [error.model_dump() for error in self.errors]


def json_type_name(value: Any) -> str:
    """Return the JSON type name of a Python value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def json_equal(left: Any, right: Any) -> bool:
    """Compare two decoded JSON values the way JSON Schema does.

    Booleans never equal numbers; integers and floats with the same
    mathematical value are equal.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(json_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(json_equal(left[key], right[key]) for key in left)
    if json_type_name(left) in ("integer", "number") and json_type_name(right) in ("integer", "number"):
        return left == right
    return json_type_name(left) == json_type_name(right) and left == right


class SchemaValidator:
    """Validates values against a JSON Schema subset.

    Supported keywords: ``type``, ``enum``, ``required``, ``default``,
    ``properties``, ``items`` and ``additionalProperties: false``. Unknown
    keywords are ignored, so richer schemas still validate on the subset.
    """

    def validate(self, schema: Optional[Dict[str, Any]], value: Any) -> ValidationResult:
        errors: List[Violation] = []
        result = self._validate(schema or {}, value, "$", errors)
        if errors:
            return ValidationResult(valid=False, errors=errors)
        return ValidationResult(valid=True, value=result)

    def _validate(self, schema: Dict[str, Any], value: Any, path: str, errors: List[Violation]) -> Any:
        expected_type = schema.get("type")
        if expected_type is not None and not self._check_type(value, expected_type):
            errors.append(Violation(
                path=path,
                expected=self._describe_type(expected_type),
                actual=json_type_name(value),
            ))
            return value

        if "enum" in schema and not any(json_equal(value, option) for option in schema["enum"]):
            errors.append(Violation(
                path=path,
                expected="one of " + ", ".join(repr(option) for option in schema["enum"]),
                actual=repr(value),
            ))
            return value

        if isinstance(value, dict) and (expected_type == "object" or "properties" in schema):
            return self._validate_object(schema, value, path, errors)

        if isinstance(value, list) and isinstance(schema.get("items"), dict):
            return [
                self._validate(schema["items"], item, f"{path}[{index}]", errors)
                for index, item in enumerate(value)
            ]

        return value

    def _validate_object(
        self, schema: Dict[str, Any], value: Dict[str, Any], path: str, errors: List[Violation]
    ) -> Dict[str, Any]:
        properties: Dict[str, Any] = schema.get("properties", {})
        required = schema.get("required", [])

        # Extras pass through untouched unless explicitly forbidden
        result = dict(value)

        for field in required:
            if field not in value:
                field_schema = properties.get(field, {})
                errors.append(Violation(
                    path=f"{path}.{field}",
                    expected=self._describe_type(field_schema.get("type", "any")),
                    actual="missing",
                ))

        for field, field_schema in properties.items():
            if field in value:
                result[field] = self._validate(field_schema, value[field], f"{path}.{field}", errors)
            elif "default" in field_schema and field not in required:
                result[field] = copy.deepcopy(field_schema["default"])

        if schema.get("additionalProperties") is False:
            for field in value:
                if field not in properties:
                    errors.append(Violation(
                        path=f"{path}.{field}",
                        expected="no additional properties",
                        actual=field,
                    ))

        return result

    def _check_type(self, value: Any, expected_type: Any) -> bool:
        """Check if value matches expected JSON schema type."""
        if isinstance(expected_type, list):
            return any(self._check_type(value, option) for option in expected_type)

        if expected_type == "integer":
            if isinstance(value, float):
                return value.is_integer()
            return isinstance(value, int) and not isinstance(value, bool)
        if expected_type == "number":
            return isinstance(value, (int, float)) and not isinstance(value, bool)

        type_mapping = {
            "string": str,
            "boolean": bool,
            "array": list,
            "object": dict,
            "null": type(None),
        }

        expected_python_type = type_mapping.get(expected_type)
        if expected_python_type is None:
            return True  # Unknown type, skip validation

        return isinstance(value, expected_python_type)

    @staticmethod
    def _describe_type(expected_type: Any) -> str:
        if isinstance(expected_type, list):
            return " | ".join(str(option) for option in expected_type)
        return str(expected_type)
