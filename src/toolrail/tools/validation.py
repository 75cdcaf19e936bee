"""Argument parsing and JSON Schema validation for tool calls."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import jsonschema

from ..errors import ValidationError
from .types import Tool

__all__ = ["parse_tool_arguments", "validate_arguments"]

LOGGER = logging.getLogger(__name__)


def parse_tool_arguments(arguments: Any, *, tool_name: str = "", call_id: str | None = None) -> dict[str, Any]:
    """Normalize raw tool-call arguments into a dictionary.

    Args:
        arguments: Mapping, JSON string, or None as delivered by the provider.
        tool_name: Tool name for error attribution.
        call_id: Call id for error attribution.

    Returns:
        Parsed arguments dictionary.

    Raises:
        ValidationError: If arguments are not a JSON object.
    """
    if arguments is None:
        return {}
    if isinstance(arguments, Mapping):
        return dict(arguments)
    if isinstance(arguments, str):
        if not arguments.strip():
            return {}
        try:
            parsed = json.loads(arguments)
        except json.JSONDecodeError as exc:
            raise ValidationError(
                f"Invalid JSON in arguments for tool '{tool_name}': {exc}",
                tool_name=tool_name,
                call_id=call_id,
                errors=[str(exc)],
                arguments=arguments,
            ) from exc
        if isinstance(parsed, dict):
            return parsed
        arguments = parsed
    raise ValidationError(
        f"Arguments for tool '{tool_name}' must be a JSON object, got {type(arguments).__name__}",
        tool_name=tool_name,
        call_id=call_id,
        errors=[f"expected object, got {type(arguments).__name__}"],
        arguments=arguments,
    )


def validate_arguments(tool: Tool, arguments: Any, *, call_id: str | None = None) -> dict[str, Any]:
    """Parse and validate ``arguments`` against ``tool.schema``.

    Raises:
        ValidationError: With one message per schema violation, attributed to
            ``call_id``.
    """
    parsed = parse_tool_arguments(arguments, tool_name=tool.name, call_id=call_id)
    if not tool.schema:
        return parsed

    validator_cls = jsonschema.validators.validator_for(tool.schema)
    try:
        validator_cls.check_schema(tool.schema)
    except jsonschema.exceptions.SchemaError as exc:
        raise ValidationError(
            f"Tool '{tool.name}' has an invalid schema: {exc.message}",
            tool_name=tool.name,
            call_id=call_id,
            errors=[exc.message],
            arguments=parsed,
        ) from exc

    validator = validator_cls(tool.schema)
    problems = sorted(validator.iter_errors(parsed), key=lambda err: list(err.path))
    if problems:
        messages = [_format_error(err) for err in problems]
        LOGGER.debug("Arguments for %s (call_id=%s) failed validation: %s", tool.name, call_id, messages)
        raise ValidationError(
            f"Invalid arguments for tool '{tool.name}': {'; '.join(messages)}",
            tool_name=tool.name,
            call_id=call_id,
            errors=messages,
            arguments=parsed,
        )
    return parsed


def _format_error(error: jsonschema.exceptions.ValidationError) -> str:
    location = "/".join(str(part) for part in error.path)
    return f"{location}: {error.message}" if location else error.message
