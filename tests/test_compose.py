"""Tests for the composition engine and Pipeline builder."""

from __future__ import annotations

import pytest

from toolrail.errors import PipelineError, ReentrantDispatchError, error_stage, get_error_details
from toolrail.pipeline import Pipeline, compose

from helpers import make_context


def _recorder(name: str, log: list[str]):
    async def stage(ctx, next):
        log.append(f"{name}:before")
        await next()
        log.append(f"{name}:after")

    stage.__name__ = name
    return stage


# -----------------------------------------------------------------------------
# Ordering
# -----------------------------------------------------------------------------


class TestOrdering:
    @pytest.mark.asyncio
    async def test_stages_run_in_registration_order_with_onion_unwinding(self) -> None:
        """Each stage sees the downstream stages finish before its own after-phase."""
        log: list[str] = []
        runner = compose([_recorder("a", log), _recorder("b", log), _recorder("c", log)])

        await runner(make_context())

        assert log == ["a:before", "b:before", "c:before", "c:after", "b:after", "a:after"]

    @pytest.mark.asyncio
    async def test_outer_continuation_runs_after_last_stage(self) -> None:
        """The optional outer continuation is invoked by the innermost continuation."""
        log: list[str] = []

        async def outer() -> None:
            log.append("outer")

        await compose([_recorder("a", log)])(make_context(), outer)

        assert log == ["a:before", "outer", "a:after"]

    @pytest.mark.asyncio
    async def test_empty_pipeline_is_a_no_op(self) -> None:
        """Composing no stages yields a runner that does nothing."""
        ctx = make_context()
        await compose([])(ctx)
        assert ctx.messages == []

    @pytest.mark.asyncio
    async def test_stage_may_skip_continuation(self) -> None:
        """A stage that never calls next short-circuits the rest of the chain."""
        log: list[str] = []

        async def stop(ctx, next):
            log.append("stop")

        await compose([stop, _recorder("never", log)])(make_context())

        assert log == ["stop"]

    @pytest.mark.asyncio
    async def test_each_traversal_has_its_own_dispatch_index(self) -> None:
        """A composed runner can be reused for many requests."""
        log: list[str] = []
        runner = compose([_recorder("a", log)])

        await runner(make_context())
        await runner(make_context())

        assert log.count("a:before") == 2

    def test_non_callable_stage_rejected_at_compose_time(self) -> None:
        """Invalid entries fail fast instead of at dispatch."""
        with pytest.raises(TypeError):
            compose([object()])  # type: ignore[list-item]


# -----------------------------------------------------------------------------
# Re-entry guard
# -----------------------------------------------------------------------------


class TestReentryGuard:
    @pytest.mark.asyncio
    async def test_calling_next_twice_raises(self) -> None:
        """Re-invoking the continuation fails fast and does not re-run downstream stages."""
        log: list[str] = []

        async def twice(ctx, next):
            await next()
            await next()

        with pytest.raises(ReentrantDispatchError) as excinfo:
            await compose([twice, _recorder("b", log)])(make_context())

        assert "continuation invoked redundantly for dispatch index 1" in str(excinfo.value)
        assert log == ["b:before", "b:after"]

    @pytest.mark.asyncio
    async def test_last_stage_calling_next_twice_raises(self) -> None:
        """The guard also covers the continuation past the final stage."""

        async def twice(ctx, next):
            await next()
            await next()

        with pytest.raises(ReentrantDispatchError) as excinfo:
            await compose([twice])(make_context())

        assert excinfo.value.index == 1

    @pytest.mark.asyncio
    async def test_out_of_order_continuation_raises(self) -> None:
        """An outer stage calling next after an inner stage already dispatched is rejected."""
        saved = {}

        async def first(ctx, next):
            saved["next"] = next
            await next()

        async def second(ctx, next):
            await saved["next"]()

        with pytest.raises(ReentrantDispatchError):
            await compose([first, second])(make_context())


# -----------------------------------------------------------------------------
# Failure propagation
# -----------------------------------------------------------------------------


class TestFailurePropagation:
    @pytest.mark.asyncio
    async def test_exceptions_propagate_without_catching(self) -> None:
        """Plain exceptions reach the caller unchanged."""

        async def boom(ctx, next):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await compose([_recorder("a", []), boom])(make_context())

    @pytest.mark.asyncio
    async def test_pipeline_error_is_stamped_with_innermost_stage(self) -> None:
        """The stage a runtime error originated in is recorded on the error."""

        async def failing_stage(ctx, next):
            raise PipelineError("nope")

        with pytest.raises(PipelineError) as excinfo:
            await compose([_recorder("outer", []), failing_stage])(make_context())

        assert excinfo.value.stage == "failing_stage"

    @pytest.mark.asyncio
    async def test_plain_exceptions_record_innermost_stage(self) -> None:
        """Nested runners keep the name of the stage the failure escaped first."""

        async def exploding(ctx, next):
            raise RuntimeError("boom")

        inner = compose([exploding])

        async def wrapper(ctx, next):
            await inner(ctx)
            await next()

        with pytest.raises(RuntimeError) as excinfo:
            await compose([_recorder("outer", []), wrapper])(make_context())

        assert error_stage(excinfo.value) == "exploding"
        assert get_error_details(excinfo.value)["stage"] == "exploding"

    @pytest.mark.asyncio
    async def test_existing_stage_name_is_preserved(self) -> None:
        """Errors that already name a stage keep it."""

        async def raiser(ctx, next):
            raise PipelineError("nope", stage="custom")

        with pytest.raises(PipelineError) as excinfo:
            await compose([raiser])(make_context())

        assert excinfo.value.stage == "custom"


# -----------------------------------------------------------------------------
# Pipeline builder
# -----------------------------------------------------------------------------


class TestPipeline:
    @pytest.mark.asyncio
    async def test_use_is_chainable_and_run_returns_context(self) -> None:
        """Pipeline.use returns the pipeline and run returns the context it ran."""
        log: list[str] = []
        pipeline = Pipeline().use(_recorder("a", log)).use(_recorder("b", log))
        ctx = make_context()

        result = await pipeline.run(ctx)

        assert result is ctx
        assert len(pipeline) == 2
        assert log == ["a:before", "b:before", "b:after", "a:after"]

    def test_use_rejects_non_callables(self) -> None:
        with pytest.raises(TypeError):
            Pipeline().use("stage")  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_handler_composes_current_stages(self) -> None:
        """handler() snapshots the stages registered so far."""
        log: list[str] = []
        pipeline = Pipeline([_recorder("a", log)])
        runner = pipeline.handler()
        pipeline.use(_recorder("b", log))

        await runner(make_context())

        assert log == ["a:before", "a:after"]
