"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Sequence

from toolrail.context import ExecutionContext, create_context
from toolrail.tools import Tool
from toolrail.types import GenerateOptions, Message, ModelEvent, ModelResponse, TokenEvent, ToolCall, Usage, UsageEvent
from toolrail.utils.logging import TracingLogger


@dataclass
class RecordedCall:
    """Snapshot of one ``generate`` call made against :class:`ScriptedModel`."""

    messages: list[Message]
    options: GenerateOptions


@dataclass
class ScriptedModel:
    """Model stub replaying a fixed list of replies.

    Each entry may be a :class:`ModelResponse`, a :class:`Message`, an
    exception instance (raised), or a callable receiving the messages and
    options and returning one of those.

    Example:
        model = ScriptedModel([reply("Hi there")])
        ctx = make_context(model)
    """

    replies: list[Any] = field(default_factory=list)
    name: str = "scripted"
    calls: list[RecordedCall] = field(default_factory=list)
    repeat_last: bool = False

    async def generate(
        self,
        messages: Sequence[Message],
        options: GenerateOptions | None = None,
    ) -> ModelResponse | AsyncIterator[ModelEvent]:
        opts = options or GenerateOptions()
        self.calls.append(RecordedCall(messages=list(messages), options=opts))
        if not self.replies:
            raise AssertionError("ScriptedModel ran out of replies")
        entry = self.replies[0] if self.repeat_last and len(self.replies) == 1 else self.replies.pop(0)
        if callable(entry) and not isinstance(entry, (Message, ModelResponse)):
            entry = entry(list(messages), opts)
        if isinstance(entry, BaseException):
            raise entry
        if isinstance(entry, Message):
            return ModelResponse(message=entry)
        return entry


class StreamingModel:
    """Model stub that streams the given tokens when asked to."""

    def __init__(self, tokens: Sequence[str], *, usage: Usage | None = None) -> None:
        self.name = "streaming"
        self.tokens = list(tokens)
        self.usage = usage
        self.options: list[GenerateOptions] = []

    async def generate(self, messages: Sequence[Message], options: GenerateOptions | None = None):
        opts = options or GenerateOptions()
        self.options.append(opts)
        if not opts.stream:
            return ModelResponse(message=Message.assistant("".join(self.tokens)), usage=self.usage)
        return self._events()

    async def _events(self) -> AsyncIterator[ModelEvent]:
        for token in self.tokens:
            yield TokenEvent(token=token)
        if self.usage is not None:
            yield UsageEvent(usage=self.usage)


def reply(content: str = "", *, usage: Usage | None = None) -> ModelResponse:
    return ModelResponse(message=Message.assistant(content), usage=usage)


def tool_request(*calls: ToolCall, content: str = "", usage: Usage | None = None) -> ModelResponse:
    return ModelResponse(message=Message.assistant(content, tool_calls=list(calls)), usage=usage)


def make_tool(
    name: str,
    handler: Callable[..., Any] | None = None,
    *,
    schema: dict[str, Any] | None = None,
    description: str = "",
) -> Tool:
    return Tool(
        name=name,
        description=description or f"{name} tool",
        schema=schema,
        handler=handler or (lambda args, ctx: {"ok": True}),
    )


def make_context(
    model: Any | None = None,
    *,
    input: str | None = None,
    messages: Sequence[Message] | None = None,
    tools: Sequence[Tool] = (),
    system_prompt: str | None = None,
) -> ExecutionContext:
    ctx = create_context(
        model=model or ScriptedModel(),
        input=input,
        system_prompt=system_prompt,
        messages=messages,
        log=TracingLogger("toolrail.tests"),
    )
    for item in tools:
        ctx.tools.register(item)
    return ctx


def trace(ctx: ExecutionContext) -> TracingLogger:
    assert isinstance(ctx.log, TracingLogger)
    return ctx.log
