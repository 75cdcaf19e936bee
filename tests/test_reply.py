"""Tests for the plain reply stage and output sinks."""

from __future__ import annotations

import io

import pytest

from toolrail.errors import CancellationError, UpstreamModelError
from toolrail.pipeline import compose
from toolrail.stages import generate_reply, input_to_message
from toolrail.streams import BufferedStream, ConsoleStream, NullStream

from helpers import ScriptedModel, StreamingModel, make_context, reply


class TestGenerateReply:
    @pytest.mark.asyncio
    async def test_appends_reply_after_downstream(self) -> None:
        model = ScriptedModel([reply("Hi there")])
        ctx = make_context(model, input="Hello", system_prompt="sys")

        await compose([generate_reply(), input_to_message()])(ctx)

        assert [m.role for m in ctx.messages] == ["system", "user", "assistant"]
        assert ctx.messages[-1].content == "Hi there"
        assert model.calls[0].options.tool_choice == "none"

    @pytest.mark.asyncio
    async def test_streams_tokens_then_appends_whole_message(self) -> None:
        ctx = make_context(StreamingModel(["Hel", "lo"]))
        sink = BufferedStream()
        ctx.stream = sink

        await compose([generate_reply(stream=True)])(ctx)

        assert sink.tokens == ["Hel", "lo"]
        assert sink.closed
        assert ctx.messages[-1].content == "Hello"

    @pytest.mark.asyncio
    async def test_non_streaming_model_still_feeds_the_sink(self) -> None:
        ctx = make_context(ScriptedModel([reply("whole")]))
        sink = BufferedStream()
        ctx.stream = sink

        await compose([generate_reply(stream=True)])(ctx)

        assert sink.text == "whole"
        assert sink.closed

    @pytest.mark.asyncio
    async def test_model_failure_becomes_upstream_error(self) -> None:
        ctx = make_context(ScriptedModel([ConnectionError("reset")]))

        with pytest.raises(UpstreamModelError) as excinfo:
            await compose([generate_reply()])(ctx)

        assert excinfo.value.stage == "generate_reply_stage"
        assert isinstance(excinfo.value.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_cancelled_before_call(self) -> None:
        model = ScriptedModel([reply("never")])
        ctx = make_context(model)
        ctx.signal.cancel()

        with pytest.raises(CancellationError):
            await compose([generate_reply()])(ctx)

        assert model.calls == []


class TestStreams:
    def test_buffered_stream_rejects_writes_after_end(self) -> None:
        sink = BufferedStream()
        sink.write("a")
        sink.end()

        with pytest.raises(RuntimeError):
            sink.write("b")

    def test_console_stream_writes_and_terminates_line(self) -> None:
        target = io.StringIO()
        sink = ConsoleStream(target)

        sink.write("to")
        sink.write("ken")
        sink.end()

        assert target.getvalue() == "token\n"

    def test_null_stream_discards(self) -> None:
        sink = NullStream()
        sink.write("ignored")
        sink.end()
