"""Tests for tool call/result pairing checks."""

from __future__ import annotations

import pytest

from toolrail.errors import InvariantViolation
from toolrail.pipeline import compose
from toolrail.stages import find_unanswered_tool_calls, tool_call_invariant
from toolrail.types import Message, ToolCall

from helpers import make_context


def _broken_transcript() -> list[Message]:
    return [
        Message.system("sys"),
        Message.assistant("", tool_calls=[ToolCall(id="c1", name="a"), ToolCall(id="c2", name="b")]),
        Message.tool("ok", "c1"),
        Message.assistant("", tool_calls=[ToolCall(id="c3", name="c")]),
    ]


class TestFindUnanswered:
    def test_lists_every_missing_call_in_order(self) -> None:
        missing = find_unanswered_tool_calls(_broken_transcript())

        assert missing == [
            {"assistant_index": 1, "tool_call_id": "c2", "name": "b"},
            {"assistant_index": 3, "tool_call_id": "c3", "name": "c"},
        ]

    def test_answer_must_come_after_the_call(self) -> None:
        messages = [
            Message.tool("early", "c1"),
            Message.assistant("", tool_calls=[ToolCall(id="c1", name="a")]),
        ]
        assert [entry["tool_call_id"] for entry in find_unanswered_tool_calls(messages)] == ["c1"]

    def test_calls_without_id_match_by_name(self) -> None:
        messages = [
            Message.assistant("", tool_calls=[ToolCall(id="", name="lookup")]),
            Message(role="tool", content="{}", name="lookup"),
        ]
        assert find_unanswered_tool_calls(messages) == []

    def test_consistent_transcript_has_nothing_missing(self) -> None:
        messages = [
            Message.assistant("", tool_calls=[ToolCall(id="c1", name="a")]),
            Message.tool("ok", "c1"),
            Message.assistant("done"),
        ]
        assert find_unanswered_tool_calls(messages) == []


class TestToolCallInvariantStage:
    @pytest.mark.asyncio
    async def test_warn_mode_logs_missing_ids_and_continues(self) -> None:
        ctx = make_context(messages=_broken_transcript())
        after: list[str] = []

        async def outer(ctx, next):
            await next()
            after.append("continued")

        await compose([outer, tool_call_invariant()])(ctx)

        warnings = ctx.log.events("warning")
        assert len(warnings) == 1
        assert [entry["tool_call_id"] for entry in warnings[0].fields["missing"]] == ["c2", "c3"]
        assert after == ["continued"]

    @pytest.mark.asyncio
    async def test_strict_mode_raises_with_missing_ids(self) -> None:
        ctx = make_context(messages=_broken_transcript())

        with pytest.raises(InvariantViolation) as excinfo:
            await compose([tool_call_invariant(strict=True)])(ctx)

        assert excinfo.value.missing_ids == ["c2", "c3"]
        assert "c2" in str(excinfo.value) and "c3" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_checks_after_downstream_stages(self) -> None:
        """Messages added by later stages are part of the check."""
        ctx = make_context()

        async def add_orphan(ctx, next):
            ctx.messages.append(Message.assistant("", tool_calls=[ToolCall(id="z", name="t")]))
            await next()

        with pytest.raises(InvariantViolation):
            await compose([tool_call_invariant(strict=True), add_orphan])(ctx)

    @pytest.mark.asyncio
    async def test_clean_transcript_logs_nothing(self) -> None:
        ctx = make_context(messages=[Message.user("hi"), Message.assistant("hello")])

        await compose([tool_call_invariant()])(ctx)

        assert ctx.log.events("warning") == []
