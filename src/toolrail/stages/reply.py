"""Plain model reply stage for pipelines that do not call tools."""

from __future__ import annotations

from typing import AsyncIterator

from ..context import ExecutionContext
from ..errors import PipelineError, UpstreamModelError
from ..pipeline.compose import Next, Stage
from ..types import (
    AssistantMessageEvent,
    GenerateOptions,
    Message,
    ModelEvent,
    ModelResponse,
    TokenEvent,
)

__all__ = ["generate_reply"]


async def _consume_stream(ctx: ExecutionContext, events: AsyncIterator[ModelEvent]) -> Message:
    tokens: list[str] = []
    final: Message | None = None
    try:
        async for event in events:
            ctx.signal.raise_if_cancelled()
            if isinstance(event, TokenEvent):
                tokens.append(event.token)
                ctx.stream.write(event.token)
            elif isinstance(event, AssistantMessageEvent):
                final = event.message
    finally:
        ctx.stream.end()
    if final is not None and final.content:
        return final
    return Message.assistant("".join(tokens))


def generate_reply(*, stream: bool = False) -> Stage:
    """Ask the model for one reply after downstream stages run.

    With ``stream=True`` tokens are written to ``ctx.stream`` as they arrive
    and the assembled message is appended once the stream ends.
    """

    async def generate_reply_stage(ctx: ExecutionContext, next: Next) -> None:
        await next()
        ctx.signal.raise_if_cancelled()
        model_name = getattr(ctx.model, "name", None)
        options = GenerateOptions(tool_choice="none", signal=ctx.signal, stream=stream)
        with ctx.log.span("model.generate", model=model_name, stream=stream):
            try:
                result = await ctx.model.generate(list(ctx.messages), options)
                if isinstance(result, ModelResponse):
                    message = result.message
                    if stream:
                        ctx.stream.write(message.content)
                        ctx.stream.end()
                else:
                    message = await _consume_stream(ctx, result)
            except PipelineError:
                raise
            except Exception as exc:
                raise UpstreamModelError(
                    f"Model call failed: {exc or type(exc).__name__}",
                    model_name=model_name,
                    cause=exc,
                ) from exc
        ctx.messages.append(message)

    return generate_reply_stage
