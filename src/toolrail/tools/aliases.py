"""Alias mapping between canonical tool names and the names a model sees."""

from __future__ import annotations

from typing import Iterable, Iterator, Mapping

from .types import Tool

__all__ = ["ToolAliases"]


class ToolAliases:
    """Bidirectional canonical-name to alias mapping.

    Tools without an alias are exposed under their canonical name.
    """

    def __init__(self, aliases: Mapping[str, str] | None = None) -> None:
        self._forward: dict[str, str] = dict(aliases or {})
        self._reverse: dict[str, str] = {alias: name for name, alias in self._forward.items()}

    def alias_for(self, name: str) -> str:
        return self._forward.get(name, name)

    def apply(self, tools: Iterable[Tool]) -> list[Tool]:
        """Return descriptors renamed to their aliases, leaving originals untouched."""
        exposed: list[Tool] = []
        for item in tools:
            alias = self._forward.get(item.name)
            exposed.append(item.with_name(alias) if alias else item)
        return exposed

    def resolve(self, exposed_name: str, known: Iterable[str]) -> str | None:
        """Map a model-facing name back to a canonical tool name.

        Returns None when the name matches neither an alias nor an unaliased
        registered tool.
        """
        if exposed_name in self._reverse:
            return self._reverse[exposed_name]
        if exposed_name in self._forward:
            # Canonical names hidden behind an alias are not callable directly.
            return None
        return exposed_name if exposed_name in set(known) else None

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(self._forward.items())

    def __len__(self) -> int:
        return len(self._forward)

    def __bool__(self) -> bool:
        return bool(self._forward)
