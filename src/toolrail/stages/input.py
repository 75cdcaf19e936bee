"""Stage that turns the request input into a user message."""

from __future__ import annotations

from ..context import ExecutionContext
from ..pipeline.compose import Next, Stage
from ..types import Message

__all__ = ["input_to_message"]


def input_to_message() -> Stage:
    """Append ``ctx.input`` as a user message when it is non-empty, then continue."""

    async def input_to_message_stage(ctx: ExecutionContext, next: Next) -> None:
        if ctx.input:
            ctx.messages.append(Message.user(ctx.input))
        await next()

    return input_to_message_stage
