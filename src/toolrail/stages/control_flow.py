"""Control-flow combinators built from stages.

Each combinator runs its inner stages as a nested pipeline and then calls its
own continuation exactly once. Loops and graphs check the cancellation token
between iterations and raise :class:`~toolrail.errors.CancellationError`
instead of continuing.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Sequence, TypeVar, Union

from ..context import ExecutionContext
from ..errors import ConfigurationError, ErrorCode, PipelineError
from ..pipeline.compose import Next, Stage, compose

__all__ = [
    "Predicate",
    "Node",
    "Edge",
    "GRAPH_STEP_LIMIT",
    "sequence",
    "branch",
    "switch_case",
    "loop_while",
    "loop_until",
    "parallel",
    "graph",
]

LOGGER = logging.getLogger(__name__)

GRAPH_STEP_LIMIT = 128

T = TypeVar("T")
Predicate = Callable[[ExecutionContext], Union[bool, Awaitable[bool]]]
Selector = Callable[[ExecutionContext], Union[str, Awaitable[str]]]
Merge = Callable[[ExecutionContext, Sequence[ExecutionContext]], Union[None, Awaitable[None]]]


async def _resolve(value: T | Awaitable[T]) -> T:
    if inspect.isawaitable(value):
        return await value
    return value  # type: ignore[return-value]


async def _noop(ctx: ExecutionContext, next: Next) -> None:
    return None


def sequence(stages: Sequence[Stage]) -> Stage:
    """Run ``stages`` as a nested pipeline."""
    run = compose(stages)

    async def sequence_stage(ctx: ExecutionContext, next: Next) -> None:
        await run(ctx)
        await next()

    return sequence_stage


def branch(predicate: Predicate, on_true: Stage, on_false: Stage | None = None) -> Stage:
    run_true = compose([on_true])
    run_false = compose([on_false or _noop])

    async def branch_stage(ctx: ExecutionContext, next: Next) -> None:
        result = bool(await _resolve(predicate(ctx)))
        ctx.log.debug("branch predicate", result=result)
        await (run_true if result else run_false)(ctx)
        await next()

    return branch_stage


def switch_case(select: Selector, routes: Mapping[str, Stage], fallback: Stage | None = None) -> Stage:
    """Route to the stage registered under the selected key, else ``fallback``."""
    runners = {key: compose([stage]) for key, stage in routes.items()}
    run_fallback = compose([fallback or _noop])

    async def switch_case_stage(ctx: ExecutionContext, next: Next) -> None:
        key = await _resolve(select(ctx))
        ctx.log.debug("switch route", route=key, matched=key in runners)
        await runners.get(key, run_fallback)(ctx)
        await next()

    return switch_case_stage


def loop_while(predicate: Predicate, body: Stage, *, max_iterations: int = 8) -> Stage:
    """Run ``body`` while ``predicate`` holds, at most ``max_iterations`` times."""
    run_body = compose([body])

    async def loop_while_stage(ctx: ExecutionContext, next: Next) -> None:
        iteration = 0
        while await _resolve(predicate(ctx)):
            ctx.signal.raise_if_cancelled()
            ctx.log.debug("loop_while iteration", iteration=iteration)
            await run_body(ctx)
            ctx.signal.raise_if_cancelled()
            iteration += 1
            if iteration >= max_iterations:
                break
        await next()

    return loop_while_stage


def loop_until(done: Predicate, body: Stage, *, max_iterations: int = 8) -> Stage:
    """Run ``body`` at least once and until ``done`` holds, at most ``max_iterations`` times."""
    run_body = compose([body])

    async def loop_until_stage(ctx: ExecutionContext, next: Next) -> None:
        iteration = 0
        while True:
            ctx.signal.raise_if_cancelled()
            ctx.log.debug("loop_until iteration", iteration=iteration)
            await run_body(ctx)
            ctx.signal.raise_if_cancelled()
            iteration += 1
            if iteration >= max_iterations or await _resolve(done(ctx)):
                break
        await next()

    return loop_until_stage


def parallel(branches: Sequence[Stage], merge: Merge | None = None) -> Stage:
    """Run ``branches`` concurrently, each on its own forked context.

    Forks share capabilities but own copies of the transcript and state.
    ``merge(ctx, forks)`` folds results back into the parent context.
    """
    runners = [compose([stage]) for stage in branches]

    async def parallel_stage(ctx: ExecutionContext, next: Next) -> None:
        forks = [ctx.fork() for _ in runners]
        await asyncio.gather(*(run(fork) for run, fork in zip(runners, forks)))
        if merge is not None:
            await _resolve(merge(ctx, forks))
        await next()

    return parallel_stage


@dataclass(slots=True, frozen=True)
class Node:
    id: str
    run: Stage


@dataclass(slots=True, frozen=True)
class Edge:
    """Transition taken after ``source`` completes when ``when`` holds (or is absent)."""

    source: str
    target: str
    when: Predicate | None = None


def graph(nodes: Sequence[Node], edges: Sequence[Edge], start: str) -> Stage:
    """Walk a node graph from ``start`` following the first matching edge.

    Raises:
        ConfigurationError: When the walk reaches an undefined node.
        PipelineError: When more than ``GRAPH_STEP_LIMIT`` nodes run.
    """
    runners = {node.id: compose([node.run]) for node in nodes}
    outgoing: dict[str, list[Edge]] = {}
    for edge in edges:
        outgoing.setdefault(edge.source, []).append(edge)

    async def graph_stage(ctx: ExecutionContext, next: Next) -> None:
        current: str | None = start
        steps = 0
        while current is not None:
            steps += 1
            if steps > GRAPH_STEP_LIMIT:
                raise PipelineError(
                    f"graph step limit of {GRAPH_STEP_LIMIT} exceeded",
                    code=ErrorCode.GRAPH_STEP_LIMIT,
                    details={"node": current},
                )
            run = runners.get(current)
            if run is None:
                raise ConfigurationError(f"graph: missing node {current}", key="node", value=current)
            ctx.signal.raise_if_cancelled()
            ctx.log.debug("graph node", id=current)
            await run(ctx)
            ctx.signal.raise_if_cancelled()
            following: str | None = None
            for edge in outgoing.get(current, ()):
                if edge.when is None or await _resolve(edge.when(ctx)):
                    following = edge.target
                    break
            current = following
        await next()

    return graph_stage
