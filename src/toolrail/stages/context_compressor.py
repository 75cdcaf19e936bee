"""Context compression.

While downstream stages run, ``ctx.model`` is replaced with a wrapper that
shrinks oversized prompts before they reach the provider:

* when the prompt exceeds ``max_chars``, everything between the head message
  and the last ``keep_recent`` messages is collapsed into one summary message
  produced by a tool-less model call;
* recent tool outputs are clamped (``html`` fields dropped, long strings
  truncated, arrays capped) and other recent oversized messages truncated.

The transcript in ``ctx.messages`` is never modified; only the prompt handed to
the provider is.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Any, AsyncIterator, Sequence

from ..context import ExecutionContext, StateKeys
from ..errors import CancellationError
from ..pipeline.compose import Next, Stage
from ..types import GenerateOptions, Message, Model, ModelEvent, ModelResponse

__all__ = [
    "SUMMARY_PREFIX",
    "CompressingModel",
    "context_compressor",
    "approx_chars",
    "clamp_tool_content",
    "find_cut_index",
]

LOGGER = logging.getLogger(__name__)

SUMMARY_PREFIX = "[Summary of earlier turns]\n"
MAX_ARRAY_ITEMS = 50
# Messages beyond keep_recent that are still eligible for clamping.
_CLAMP_SLACK = 4

_COMPRESSION_PROMPT = (
    "You are a compression assistant. Summarize the following conversation and tool outputs "
    "into a compact bullet list of established facts and extracted citations (URLs). Keep it "
    "under the specified character budget. Do not invent facts."
)


def approx_chars(messages: Sequence[Message]) -> int:
    return sum(len(message.content or "") for message in messages)


def find_cut_index(messages: Sequence[Message], keep_recent: int) -> int:
    """Index where the verbatim tail starts, never separating a tool group."""
    cut = max(1, len(messages) - keep_recent)
    if cut < len(messages) and messages[cut].role == "tool":
        for index in range(cut - 1, -1, -1):
            candidate = messages[index]
            if candidate.role == "assistant" and candidate.has_tool_calls:
                return max(1, index)
        while cut < len(messages) and messages[cut].role == "tool":
            cut += 1
    return cut


def _clamp_deep(value: Any, limit: int) -> Any:
    if isinstance(value, list):
        return [_clamp_deep(item, limit) for item in value[:MAX_ARRAY_ITEMS]]
    if isinstance(value, dict):
        clamped: dict[str, Any] = {}
        for key, item in value.items():
            if key == "html":
                continue
            if isinstance(item, str):
                clamped[key] = item[:limit]
            else:
                clamped[key] = _clamp_deep(item, limit)
        return clamped
    return value


def clamp_tool_content(content: str, limit: int) -> str:
    """Clamp a tool message body, JSON-aware when the body parses as JSON."""
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError):
        parsed = None
    if isinstance(parsed, (dict, list)):
        clamped = _clamp_deep(parsed, limit)
        if clamped != parsed:
            return json.dumps(clamped, separators=(",", ":"), ensure_ascii=False)
    return content[:limit] if len(content) > limit else content


def _flatten(messages: Sequence[Message], max_chars: int) -> str:
    parts: list[str] = []
    total = 0
    for message in messages:
        part = f"--- {message.role} ---\n{message.content}"
        parts.append(part)
        total += len(part) + 1
        if total > max_chars:
            return "\n".join(parts)[:max_chars]
    return "\n".join(parts)


class CompressingModel:
    """Model wrapper that compresses prompts before delegating."""

    def __init__(
        self,
        inner: Model,
        ctx: ExecutionContext,
        *,
        max_chars: int,
        keep_recent: int,
        summary_max_chars: int,
        recent_clamp_chars: int,
    ) -> None:
        self.inner = inner
        self.name = getattr(inner, "name", "model")
        self._ctx = ctx
        self.max_chars = max_chars
        self.keep_recent = keep_recent
        self.summary_max_chars = summary_max_chars
        self.recent_clamp_chars = recent_clamp_chars

    async def generate(
        self,
        messages: Sequence[Message],
        options: GenerateOptions | None = None,
    ) -> ModelResponse | AsyncIterator[ModelEvent]:
        prompt = list(messages)
        try:
            prompt = await self._maybe_compress(prompt)
            prompt = self.clamp_recent(prompt)
        except CancellationError:
            raise
        except Exception as exc:
            LOGGER.warning("Context compression failed; proceeding uncompressed: %s", exc)
            self._ctx.log.warning("compression failed; proceeding uncompressed", error=exc)
            prompt = list(messages)
        return await self.inner.generate(prompt, options)

    async def _maybe_compress(self, messages: list[Message]) -> list[Message]:
        state = self._ctx.state
        if state.get(StateKeys.COMPRESSING) or approx_chars(messages) <= self.max_chars:
            return messages
        self._ctx.log.info("compressing conversation context", chars=approx_chars(messages))
        state[StateKeys.COMPRESSING] = True
        try:
            return await self.compress(messages)
        finally:
            state.pop(StateKeys.COMPRESSING, None)

    async def compress(self, messages: list[Message]) -> list[Message]:
        """Collapse the middle of ``messages`` into a single summary message."""
        if len(messages) <= self.keep_recent + 1:
            return messages
        cut = find_cut_index(messages, self.keep_recent)
        older, tail = messages[:cut], messages[cut:]
        prompt = [
            Message.system(_COMPRESSION_PROMPT),
            Message.user(
                f"Character budget: {self.summary_max_chars}. Include a section \"Citations:\" "
                f"listing unique URLs.\n\nConversation to compress:\n"
                f"{_flatten(older, self.summary_max_chars * 5)}"
            ),
        ]
        self._ctx.signal.raise_if_cancelled()
        with self._ctx.log.span("context.compress", messages=len(older)):
            response = await self.inner.generate(
                prompt, GenerateOptions(tool_choice="none", signal=self._ctx.signal)
            )
        if not isinstance(response, ModelResponse):
            raise TypeError(f"Expected a ModelResponse from summarization, got {type(response).__name__}")
        summary = (response.message.content or "")[: self.summary_max_chars]
        summary_message = Message.assistant(SUMMARY_PREFIX + summary)
        self._ctx.log.debug("compressed context", dropped=cut - 1, summary_chars=len(summary))
        return [messages[0], summary_message, *tail]

    def clamp_recent(self, messages: list[Message]) -> list[Message]:
        """Clamp oversized messages among the most recent ones."""
        limit = self.recent_clamp_chars
        start = max(0, len(messages) - (self.keep_recent + _CLAMP_SLACK))
        clamped = list(messages)
        for index in range(start, len(clamped)):
            message = clamped[index]
            content = message.content or ""
            if message.role == "tool":
                shortened = clamp_tool_content(content, limit)
            elif len(content) > limit * 2:
                shortened = content[: limit * 2]
            else:
                continue
            if shortened != content:
                clamped[index] = replace(message, content=shortened)
                self._ctx.log.debug(
                    "clamped recent message", index=index, before=len(content), after=len(shortened)
                )
        return clamped


def context_compressor(
    max_chars: int = 140_000,
    keep_recent: int = 8,
    summary_max_chars: int = 8_000,
    recent_clamp_chars: int = 8_000,
) -> Stage:
    """Compress prompts for every model call made by downstream stages."""

    async def context_compressor_stage(ctx: ExecutionContext, next: Next) -> None:
        original = ctx.model
        ctx.model = CompressingModel(
            original,
            ctx,
            max_chars=max_chars,
            keep_recent=keep_recent,
            summary_max_chars=summary_max_chars,
            recent_clamp_chars=recent_clamp_chars,
        )
        try:
            await next()
        finally:
            ctx.model = original

    return context_compressor_stage
