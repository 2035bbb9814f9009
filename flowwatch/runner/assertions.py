"""Response assertions for API steps."""

from __future__ import annotations

import json
from typing import Any

from flowwatch.runner.exceptions import StepAssertionError
from flowwatch.runner.templating import get_path


def type_name(value: Any) -> str:
    """JSON type name of a parsed value. Absent fields report as ``null``."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _matches(expected: str, actual: str) -> bool:
    if expected == "undefined":
        return actual == "null"
    return expected == actual


def assert_status(actual: int, expected: int, body: str, body_limit: int = 300) -> None:
    if actual != expected:
        raise StepAssertionError(
            f"HTTP {actual} (expected {expected}): {body[:body_limit]}",
            http_status=actual,
        )


def assert_schema(data: Any, schema: dict[str, str]) -> None:
    """Check each ``field → type`` pair against the parsed response body.

    Fields may be dotted paths into nested objects.

    Raises:
        StepAssertionError: on the first field whose type differs.
    """
    for field, expected in schema.items():
        value = get_path(data, field)
        actual = type_name(value)
        if not _matches(expected, actual):
            raise StepAssertionError(
                f'Schema: "{field}" expected {expected}, got {actual} '
                f"(value: {json.dumps(value, default=str)})"
            )
