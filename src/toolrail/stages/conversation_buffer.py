"""Bounded conversation history.

The buffer keeps a fixed head (usually the system prompt) plus the most
recent ``window`` messages and drops everything in between. Content is never
rewritten; only whole messages are removed.
"""

from __future__ import annotations

import logging
from typing import Sequence

from ..context import ExecutionContext
from ..errors import ConfigurationError
from ..pipeline.compose import Next, Stage
from ..types import Message

__all__ = ["trim_history", "conversation_buffer"]

LOGGER = logging.getLogger(__name__)


def trim_history(messages: Sequence[Message], window: int, head: int = 1) -> list[Message]:
    """Return the first ``head`` messages followed by the last ``window`` ones.

    Sequences no longer than ``head + window`` are returned unchanged (as a
    new list).
    """
    if window < 0 or head < 0:
        raise ConfigurationError("window and head must be non-negative", key="window", value=window)
    items = list(messages)
    if len(items) <= head + window:
        return items
    tail = items[len(items) - window :] if window else []
    return items[:head] + tail


def conversation_buffer(window: int = 12, *, head: int = 1) -> Stage:
    """Trim the transcript to ``head`` + the last ``window`` messages on entry.

    Example:
        Pipeline().use(input_to_message()).use(conversation_buffer(window=3))
    """
    if window < 0 or head < 0:
        raise ConfigurationError("window and head must be non-negative", key="window", value=window)

    async def conversation_buffer_stage(ctx: ExecutionContext, next: Next) -> None:
        before = len(ctx.messages)
        if before > head + window:
            ctx.messages[:] = trim_history(ctx.messages, window, head)
            ctx.log.debug("trimmed conversation", before=before, after=len(ctx.messages))
        await next()

    return conversation_buffer_stage
