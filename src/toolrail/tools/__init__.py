"""Tool descriptors, registry, aliases and argument validation.

Example:
    from toolrail.tools import Tool, ToolRegistry, tool

    @tool(
        description="Current temperature for a city",
        schema={"type": "object", "properties": {"city": {"type": "string"}}},
    )
    def getWeather(args, ctx):
        return {"tempC": 5}

    registry = ToolRegistry([getWeather])
"""

from .types import Tool, ToolHandler, tool

from .registry import ToolRegistry

from .aliases import ToolAliases

from .validation import parse_tool_arguments, validate_arguments

__all__ = [
    # types.py
    "Tool",
    "ToolHandler",
    "tool",
    # registry.py
    "ToolRegistry",
    # aliases.py
    "ToolAliases",
    # validation.py
    "parse_tool_arguments",
    "validate_arguments",
]
