"""Tool call/result pairing checks on the transcript."""

from __future__ import annotations

from typing import Any, Sequence

from ..context import ExecutionContext
from ..errors import InvariantViolation
from ..pipeline.compose import Next, Stage
from ..types import Message

__all__ = ["find_unanswered_tool_calls", "tool_call_invariant"]


def find_unanswered_tool_calls(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """List tool calls that have no later tool message answering them.

    A call is answered by a later tool message with the same ``tool_call_id``;
    calls without an id are matched by tool ``name`` instead.

    Returns:
        One ``{"assistant_index", "tool_call_id", "name"}`` entry per
        unanswered call, in transcript order.
    """
    missing: list[dict[str, Any]] = []
    for index, message in enumerate(messages):
        if message.role != "assistant" or not message.tool_calls:
            continue
        later = [item for item in messages[index + 1 :] if item.role == "tool"]
        for call in message.tool_calls:
            if call.id:
                found = any(item.tool_call_id == call.id for item in later)
            else:
                found = any(item.name == call.name for item in later)
            if not found:
                missing.append(
                    {"assistant_index": index, "tool_call_id": call.id or None, "name": call.name}
                )
    return missing


def tool_call_invariant(strict: bool = False) -> Stage:
    """Verify, after downstream stages finish, that every tool call was answered.

    Warn mode logs the unanswered calls and continues; strict mode raises
    :class:`InvariantViolation`.
    """

    async def tool_call_invariant_stage(ctx: ExecutionContext, next: Next) -> None:
        await next()
        missing = find_unanswered_tool_calls(ctx.messages)
        if not missing:
            return
        if strict:
            raise InvariantViolation(missing)
        ctx.log.warning("Missing tool responses for tool_calls", missing=missing)

    return tool_call_invariant_stage
