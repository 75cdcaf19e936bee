"""Composition engine: ordered stages with onion-style before/after access."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable, Sequence

from ..context import ExecutionContext
from ..errors import ReentrantDispatchError, record_stage

__all__ = ["Next", "Stage", "Runner", "compose", "stage_name", "Pipeline"]

LOGGER = logging.getLogger(__name__)

Next = Callable[[], Awaitable[None]]
Stage = Callable[[ExecutionContext, Next], Awaitable[None]]
Runner = Callable[..., Awaitable[None]]


def stage_name(stage: object) -> str:
    """Best-effort display name for a stage callable."""
    return getattr(stage, "__name__", None) or type(stage).__name__


def compose(stages: Iterable[Stage]) -> Runner:
    """Compose ``stages`` into a single runner.

    ``await runner(ctx, outer)`` invokes stage 0 with a continuation that
    invokes stage 1, and so on. The continuation handed to the last stage
    awaits ``outer()`` when given. Each traversal keeps its own dispatch
    index, so a continuation can run at most once and never out of order.
    Failures record the name of the innermost stage they escaped from.

    Raises:
        TypeError: If any entry is not callable.
    """
    chain: tuple[Stage, ...] = tuple(stages)
    for position, entry in enumerate(chain):
        if not callable(entry):
            raise TypeError(f"Pipeline stage at position {position} is not callable: {entry!r}")
    names = tuple(stage_name(entry) for entry in chain)

    async def runner(ctx: ExecutionContext, outer: Next | None = None) -> None:
        last_dispatched = -1

        async def dispatch(index: int) -> None:
            nonlocal last_dispatched
            if index <= last_dispatched:
                raise ReentrantDispatchError(index)
            last_dispatched = index
            if index == len(chain):
                if outer is not None:
                    await outer()
                return
            current = chain[index]
            try:
                await current(ctx, lambda: dispatch(index + 1))
            except Exception as exc:
                record_stage(exc, names[index])
                raise

        await dispatch(0)

    return runner


class Pipeline:
    """Chainable builder around :func:`compose`.

    Example:
        pipeline = (
            Pipeline()
            .use(error_boundary(neutral_reply()))
            .use(input_to_message())
            .use(iterative_tool_calling())
        )
        await pipeline.run(ctx)
    """

    def __init__(self, stages: Sequence[Stage] | None = None) -> None:
        self._stages: list[Stage] = list(stages or [])

    @property
    def stages(self) -> tuple[Stage, ...]:
        return tuple(self._stages)

    def use(self, stage: Stage) -> Pipeline:
        if not callable(stage):
            raise TypeError(f"Pipeline stage is not callable: {stage!r}")
        self._stages.append(stage)
        return self

    def handler(self) -> Runner:
        return compose(self._stages)

    async def run(self, ctx: ExecutionContext, outer: Next | None = None) -> ExecutionContext:
        """Run every stage against ``ctx`` and return it."""
        LOGGER.debug("Running pipeline with %d stage(s)", len(self._stages))
        await self.handler()(ctx, outer)
        return ctx

    def __len__(self) -> int:
        return len(self._stages)
