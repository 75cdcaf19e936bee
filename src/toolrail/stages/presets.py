"""Ready-made pipelines assembled from :class:`~toolrail.config.StageSettings`."""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from ..config import StageSettings
from ..pipeline.compose import Pipeline
from ..tools.types import Tool
from .context_compressor import context_compressor
from .conversation_buffer import conversation_buffer
from .error_boundary import ErrorHandler, error_boundary, neutral_reply
from .input import input_to_message
from .invariants import tool_call_invariant
from .register_tools import register_tools
from .tool_calling import iterative_tool_calling

__all__ = ["tool_calling_pipeline"]

LOGGER = logging.getLogger(__name__)


def tool_calling_pipeline(
    settings: StageSettings | None = None,
    *,
    tools: Sequence[Tool] = (),
    aliases: Mapping[str, str] | None = None,
    on_error: ErrorHandler | None = None,
) -> Pipeline:
    """Build the standard tool-calling pipeline.

    Stages, outermost first: error boundary, tool call invariant, tool
    registration (when ``tools`` are given), input, conversation buffer,
    context compressor and the iterative tool loop. Settings default to
    :meth:`StageSettings.from_env`.

    Example:
        pipeline = tool_calling_pipeline(tools=[weather], on_error=neutral_reply())
        await pipeline.run(create_context(model=model, input="Weather in Oslo?"))
    """
    resolved = settings if settings is not None else StageSettings.from_env()
    LOGGER.debug("Building tool-calling pipeline with %s", resolved)

    pipeline = Pipeline()
    pipeline.use(error_boundary(on_error or neutral_reply()))
    pipeline.use(tool_call_invariant(strict=resolved.strict))
    if tools or aliases:
        pipeline.use(register_tools(tools, aliases=aliases))
    pipeline.use(input_to_message())
    pipeline.use(conversation_buffer(window=resolved.window))
    pipeline.use(
        context_compressor(
            max_chars=resolved.max_chars,
            keep_recent=resolved.keep_recent,
            summary_max_chars=resolved.summary_max_chars,
            recent_clamp_chars=resolved.recent_clamp_chars,
        )
    )
    pipeline.use(iterative_tool_calling(max_iterations=resolved.max_iterations))
    return pipeline
