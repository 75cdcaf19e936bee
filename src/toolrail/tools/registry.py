"""Tool registry.

Tools are registered once while the pipeline is assembled and read-only
afterwards, so a registry may be shared by concurrently running requests.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator

from ..errors import DuplicateToolError
from .types import Tool

__all__ = ["ToolRegistry"]

LOGGER = logging.getLogger(__name__)


class ToolRegistry:
    """Lookup from tool name to :class:`Tool`.

    Example:
        registry = ToolRegistry()
        registry.register(weather_tool)
        registry.get("getWeather")
    """

    def __init__(self, tools: Iterable[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for item in tools or ():
            self.register(item)

    def register(self, tool: Tool, *, overwrite: bool = False) -> Tool:
        """Register a tool.

        Raises:
            DuplicateToolError: If the name is taken and ``overwrite`` is False.
        """
        if tool.name in self._tools and not overwrite:
            raise DuplicateToolError(tool.name)
        self._tools[tool.name] = tool
        LOGGER.debug("Registered tool: %s", tool.name)
        return tool

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            LOGGER.debug("Unregistered tool: %s", name)
            return True
        return False

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def list(self) -> list[Tool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(list(self._tools.values()))
