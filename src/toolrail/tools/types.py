"""Tool descriptor types.

A tool is a named capability with a human-readable description, a JSON Schema
describing its arguments and a handler that runs with validated arguments and
a restricted :class:`~toolrail.context.ToolContext`.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Union

if TYPE_CHECKING:
    from ..context import ToolContext

__all__ = [
    "ToolHandler",
    "Tool",
    "tool",
]


# Handlers may be plain functions or coroutine functions.
ToolHandler = Callable[[Mapping[str, Any], "ToolContext"], Union[Any, Awaitable[Any]]]


@dataclass(slots=True, frozen=True)
class Tool:
    """Descriptor for a registered tool.

    Attributes:
        name: Unique identifier within a registry.
        description: Description surfaced to the model.
        schema: JSON Schema for the arguments, or None to accept any object.
        handler: Callable invoked with validated arguments and the tool context.

    Example:
        def get_weather(args, ctx):
            return {"tempC": 5}

        weather = Tool(
            name="getWeather",
            description="Current temperature for a city",
            schema={"type": "object", "properties": {"city": {"type": "string"}}},
            handler=get_weather,
        )
    """

    name: str
    description: str = ""
    schema: Mapping[str, Any] | None = None
    handler: ToolHandler | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.name or not isinstance(self.name, str):
            raise ValueError("Tool name must be a non-empty string")
        if self.handler is None or not callable(self.handler):
            raise TypeError(f"Tool '{self.name}' requires a callable handler")

    @property
    def parameters(self) -> dict[str, Any]:
        """JSON Schema handed to model providers."""
        if self.schema:
            return dict(self.schema)
        return {"type": "object", "properties": {}}

    def with_name(self, name: str) -> Tool:
        """Return a copy of the descriptor exposed under another name."""
        return replace(self, name=name)

    async def invoke(self, arguments: Mapping[str, Any], context: ToolContext) -> Any:
        """Run the handler, awaiting it when it is asynchronous."""
        result = self.handler(arguments, context)  # type: ignore[misc]
        if inspect.isawaitable(result):
            result = await result
        return result

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to OpenAI tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def tool(
    name: str | None = None,
    *,
    description: str | None = None,
    schema: Mapping[str, Any] | None = None,
) -> Callable[[ToolHandler], Tool]:
    """Decorator building a :class:`Tool` from a handler function.

    The function name and docstring are used when ``name`` or
    ``description`` are omitted.
    """

    def decorator(func: ToolHandler) -> Tool:
        doc = inspect.getdoc(func) or ""
        return Tool(
            name=name or func.__name__,
            description=description if description is not None else doc,
            schema=schema,
            handler=func,
        )

    return decorator
