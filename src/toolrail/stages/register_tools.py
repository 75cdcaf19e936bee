"""Stage that registers tools and their model-facing aliases."""

from __future__ import annotations

from typing import Mapping, Sequence

from ..context import ExecutionContext, StateKeys
from ..pipeline.compose import Next, Stage
from ..tools.aliases import ToolAliases
from ..tools.types import Tool

__all__ = ["register_tools"]


def _same_tool(left: Tool, right: Tool) -> bool:
    # Tool equality ignores the handler.
    return left == right and left.handler is right.handler


def register_tools(
    tools: Sequence[Tool],
    *,
    aliases: Mapping[str, str] | None = None,
    overwrite: bool = False,
) -> Stage:
    """Register ``tools`` into ``ctx.tools`` before continuing.

    A tool already registered with the same descriptor and handler is left
    alone, so one pipeline can serve many requests over a shared registry.
    Any other name collision raises unless ``overwrite`` is set.

    Args:
        tools: Tool descriptors to register.
        aliases: Optional canonical-name to alias mapping. The model sees the
            alias and requests are mapped back to the canonical tool.
        overwrite: Replace tools that are already registered.

    Example:
        register_tools(terminal_tools, aliases={"terminalRun": "bash"})
    """
    items = list(tools)
    alias_map = dict(aliases or {})

    async def register_tools_stage(ctx: ExecutionContext, next: Next) -> None:
        for item in items:
            existing = ctx.tools.get(item.name)
            if existing is not None and _same_tool(existing, item):
                continue
            ctx.log.debug("registering tool", tool=item.name)
            ctx.tools.register(item, overwrite=overwrite)
        if alias_map:
            for name, alias in alias_map.items():
                if name not in ctx.tools:
                    ctx.log.warning("alias references unknown tool", tool=name, alias=alias)
                else:
                    ctx.log.debug("tool alias", tool=name, alias=alias)
            ctx.state[StateKeys.TOOL_ALIASES] = ToolAliases(alias_map)
        await next()

    return register_tools_stage
