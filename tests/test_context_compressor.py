"""Tests for context compression."""

from __future__ import annotations

import json

import pytest

from toolrail.context import StateKeys
from toolrail.errors import CancellationError
from toolrail.pipeline import compose
from toolrail.stages import context_compressor
from toolrail.stages.context_compressor import (
    SUMMARY_PREFIX,
    CompressingModel,
    clamp_tool_content,
    find_cut_index,
)
from toolrail.types import Message, ToolCall

from helpers import ScriptedModel, make_context, reply


def _big_transcript(count: int = 12, size: int = 50) -> list[Message]:
    messages = [Message.system("sys")]
    for index in range(count):
        role = "user" if index % 2 == 0 else "assistant"
        messages.append(Message(role=role, content=f"{index}:" + "x" * size))
    return messages


async def _call_model(ctx, messages):
    async def stage(ctx, next):
        await ctx.model.generate(messages)

    await compose([context_compressor(max_chars=200, keep_recent=3), stage])(ctx)


class TestCompression:
    @pytest.mark.asyncio
    async def test_oversized_prompt_is_summarized(self) -> None:
        """The middle of the prompt collapses into one summary message after the head."""
        model = ScriptedModel([reply("- fact one"), reply("answer")])
        ctx = make_context(model)
        transcript = _big_transcript()

        await _call_model(ctx, transcript)

        summary_call, real_call = model.calls
        assert summary_call.options.tool_choice == "none"
        assert summary_call.messages[0].role == "system"
        prompt = real_call.messages
        assert prompt[0] == transcript[0]
        assert prompt[1].role == "assistant"
        assert prompt[1].content == SUMMARY_PREFIX + "- fact one"
        assert prompt[2:] == transcript[-3:]

    @pytest.mark.asyncio
    async def test_transcript_itself_is_untouched(self) -> None:
        model = ScriptedModel([reply("summary"), reply("answer")])
        transcript = _big_transcript()
        ctx = make_context(model, messages=transcript)

        await _call_model(ctx, list(ctx.messages))

        assert ctx.messages == transcript

    @pytest.mark.asyncio
    async def test_small_prompt_passes_through(self) -> None:
        model = ScriptedModel([reply("answer")])
        ctx = make_context(model)
        transcript = [Message.system("sys"), Message.user("hi")]

        await _call_model(ctx, transcript)

        assert len(model.calls) == 1
        assert model.calls[0].messages == transcript

    @pytest.mark.asyncio
    async def test_summary_is_clamped(self) -> None:
        model = ScriptedModel([reply("s" * 500), reply("answer")])
        ctx = make_context(model)
        wrapper = CompressingModel(
            model, ctx, max_chars=100, keep_recent=2, summary_max_chars=40, recent_clamp_chars=8_000
        )

        await wrapper.generate(_big_transcript())

        summary = model.calls[1].messages[1].content
        assert summary == SUMMARY_PREFIX + "s" * 40

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_call_proceeds_uncompressed(self) -> None:
        model = ScriptedModel([RuntimeError("summarizer down"), reply("answer")])
        ctx = make_context(model)
        transcript = _big_transcript()

        await _call_model(ctx, transcript)

        assert model.calls[1].messages == transcript
        assert any("compression failed" in event.message for event in ctx.log.events("warning"))
        assert StateKeys.COMPRESSING not in ctx.state

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        model = ScriptedModel([reply("never")])
        ctx = make_context(model)
        ctx.signal.cancel("stop")

        with pytest.raises(CancellationError):
            await _call_model(ctx, _big_transcript())

    @pytest.mark.asyncio
    async def test_no_recursive_compression_while_summarizing(self) -> None:
        model = ScriptedModel([reply("answer")])
        ctx = make_context(model)
        ctx.state[StateKeys.COMPRESSING] = True
        transcript = _big_transcript()

        await _call_model(ctx, transcript)

        assert len(model.calls) == 1

    @pytest.mark.asyncio
    async def test_model_is_restored_after_pipeline(self) -> None:
        model = ScriptedModel([])
        ctx = make_context(model)
        seen = []

        async def capture(ctx, next):
            seen.append(ctx.model)
            await next()

        await compose([context_compressor(), capture])(ctx)

        assert isinstance(seen[0], CompressingModel)
        assert seen[0].name == model.name
        assert ctx.model is model


class TestCutIndex:
    def test_cut_never_splits_tool_group(self) -> None:
        """A tail starting with tool messages pulls in the assistant that requested them."""
        messages = [
            Message.system("sys"),
            Message.user("q"),
            Message.assistant("", tool_calls=[ToolCall(id="a", name="t"), ToolCall(id="b", name="t")]),
            Message.tool("1", "a"),
            Message.tool("2", "b"),
            Message.assistant("done"),
        ]

        cut = find_cut_index(messages, keep_recent=2)

        assert cut == 2
        assert messages[cut].has_tool_calls

    def test_plain_cut(self) -> None:
        assert find_cut_index(_big_transcript(6), keep_recent=3) == 4


class TestClamping:
    def test_tool_json_drops_html_and_truncates_strings(self) -> None:
        content = json.dumps({"html": "<p>big</p>", "text": "y" * 30, "items": list(range(80))})

        clamped = json.loads(clamp_tool_content(content, limit=10))

        assert "html" not in clamped
        assert clamped["text"] == "y" * 10
        assert len(clamped["items"]) == 50

    def test_plain_tool_text_is_truncated(self) -> None:
        assert clamp_tool_content("z" * 30, limit=10) == "z" * 10

    def test_small_json_is_left_alone(self) -> None:
        content = json.dumps({"a": 1}, indent=2)
        assert clamp_tool_content(content, limit=100) == content

    @pytest.mark.asyncio
    async def test_recent_messages_are_clamped_in_prompt_only(self) -> None:
        model = ScriptedModel([reply("answer")])
        ctx = make_context(model)
        wrapper = CompressingModel(
            model, ctx, max_chars=10_000_000, keep_recent=4, summary_max_chars=100, recent_clamp_chars=10
        )
        transcript = [
            Message.system("sys"),
            Message.user("u" * 25),
            Message.tool(json.dumps({"html": "<b>", "body": "b" * 30}), "c1"),
        ]

        await wrapper.generate(transcript)

        prompt = model.calls[0].messages
        assert prompt[1].content == "u" * 20
        assert json.loads(prompt[2].content) == {"body": "b" * 10}
        assert transcript[1].content == "u" * 25
