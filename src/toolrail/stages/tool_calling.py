"""Pipeline stage: tool calling.

Drives the model through tool-calling rounds. Each round asks the model for a
turn, appends the assistant message and, when tools were requested, executes
them sequentially and appends exactly one tool message per call in request
order before asking the model again.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence

from ..context import ExecutionContext, StateKeys
from ..errors import (
    CancellationError,
    ConfigurationError,
    MaxIterationsExceeded,
    PipelineError,
    ToolExecutionError,
    UnknownToolError,
    UpstreamModelError,
)
from ..pipeline.compose import Next, Stage
from ..tools.aliases import ToolAliases
from ..tools.types import Tool
from ..tools.validation import parse_tool_arguments, validate_arguments
from ..types import GenerateOptions, Message, ModelResponse, ToolCall, ToolChoice

__all__ = [
    "OrchestratorState",
    "ResolvedCall",
    "ToolCallingOrchestrator",
    "tool_calling",
    "iterative_tool_calling",
    "format_tool_result",
    "stable_arguments_key",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 12


class OrchestratorState(str, Enum):
    AWAITING_MODEL = "awaiting-model"
    INSPECTING_RESPONSE = "inspecting-response"
    EXECUTING_TOOLS = "executing-tools"
    FINALIZING = "finalizing"
    DONE = "done"


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def format_tool_result(result: Any) -> str:
    """Serialize a tool result as compact JSON for a tool message.

    Objects exposing ``to_dict()`` are serialized through it; anything else
    that JSON cannot represent falls back to ``str()``.
    """
    if hasattr(result, "to_dict") and callable(result.to_dict):
        result = result.to_dict()
    try:
        return json.dumps(result, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        return json.dumps(str(result), ensure_ascii=False)


def stable_arguments_key(name: str, arguments: Mapping[str, Any]) -> str:
    """Key identifying identical calls regardless of argument order."""
    try:
        encoded = json.dumps(arguments, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError):
        encoded = repr(sorted(arguments.items(), key=lambda item: item[0]))
    return f"{name}:{encoded}"


def _failure_content(error: ToolExecutionError) -> str:
    return json.dumps(
        {"error": error.code, "tool": error.tool_name, "message": error.message},
        separators=(",", ":"),
        ensure_ascii=False,
    )


def _resolve_aliases(state: Mapping[str, Any]) -> ToolAliases:
    aliases = state.get(StateKeys.TOOL_ALIASES)
    if isinstance(aliases, ToolAliases):
        return aliases
    if isinstance(aliases, Mapping):
        return ToolAliases(aliases)
    return ToolAliases()


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ResolvedCall:
    """A requested call matched to its registered tool.

    Attributes:
        call: The call as requested by the model (possibly under an alias).
        tool: The canonical registered tool.
        arguments: Parsed, not yet validated arguments.
    """

    call: ToolCall
    tool: Tool
    arguments: dict[str, Any]


class ToolCallingOrchestrator:
    """Runs the awaiting-model / executing-tools cycle against one context.

    Args:
        ctx: The request's execution context.
        max_iterations: Bound on tool-executing rounds.
        single_shot: Allow one tool round followed by a tool-less
            finalization call instead of the full loop.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        single_shot: bool = False,
    ) -> None:
        if max_iterations < 1:
            raise ConfigurationError("max_iterations must be at least 1", key="max_iterations", value=max_iterations)
        self._ctx = ctx
        self._max_iterations = max_iterations
        self._single_shot = single_shot
        self._aliases = _resolve_aliases(ctx.state)
        self._exposed_tools = self._aliases.apply(ctx.tools.list())
        self._state = OrchestratorState.AWAITING_MODEL
        self._iteration = 0

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def iteration(self) -> int:
        return self._iteration

    async def run(self) -> Message:
        """Drive the loop to ``done`` and return the final assistant message."""
        if self._single_shot:
            return await self._run_single_shot()
        return await self._run_iterative()

    async def _run_iterative(self) -> Message:
        for iteration in range(self._max_iterations):
            self._iteration = iteration
            message = await self._generate("auto", self._exposed_tools)
            if not self._inspect(message):
                return self._finish(message)
            await self.execute_round(message.tool_calls or ())
        self._transition(OrchestratorState.DONE)
        LOGGER.warning("Tool loop hit its bound of %d iteration(s)", self._max_iterations)
        raise MaxIterationsExceeded(self._max_iterations)

    async def _run_single_shot(self) -> Message:
        message = await self._generate("auto", self._exposed_tools)
        if not self._inspect(message):
            return self._finish(message)
        await self.execute_round(message.tool_calls or ())

        self._iteration = 1
        final = await self._generate("none", None, phase=OrchestratorState.FINALIZING)
        if final.has_tool_calls:
            raise UpstreamModelError(
                "Model requested tools during finalization with tool use disabled",
                model_name=getattr(self._ctx.model, "name", None),
            )
        self._ctx.messages.append(final)
        return self._finish(final)

    def _inspect(self, message: Message) -> bool:
        """Append ``message``; return True when it requests tools."""
        self._transition(OrchestratorState.INSPECTING_RESPONSE)
        self._ctx.messages.append(message)
        if not message.has_tool_calls:
            return False
        self._ctx.log.info(
            "model requested tools",
            calls=[
                {"id": call.id, "name": call.name, "has_args": call.arguments is not None}
                for call in message.tool_calls or ()
            ],
        )
        return True

    def _finish(self, message: Message) -> Message:
        self._transition(OrchestratorState.DONE)
        self._ctx.log.debug("tool loop finished", iterations=self._iteration + 1)
        return message

    def _transition(self, state: OrchestratorState) -> None:
        self._state = state
        self._ctx.state[StateKeys.TOOL_LOOP] = {
            "state": state.value,
            "iteration": self._iteration,
            "mode": "single-shot" if self._single_shot else "iterative",
        }

    async def _generate(
        self,
        tool_choice: ToolChoice,
        tools: Sequence[Tool] | None,
        *,
        phase: OrchestratorState = OrchestratorState.AWAITING_MODEL,
    ) -> Message:
        self._transition(phase)
        ctx = self._ctx
        ctx.signal.raise_if_cancelled()
        options = GenerateOptions(
            tool_choice=tool_choice,
            tools=list(tools) if tools else None,
            signal=ctx.signal,
            stream=False,
            parallel_tool_calls=False if tools else None,
        )
        model_name = getattr(ctx.model, "name", None)
        with ctx.log.span("model.generate", model=model_name, tool_choice=tool_choice, iteration=self._iteration):
            try:
                result = await ctx.model.generate(list(ctx.messages), options)
            except PipelineError:
                raise
            except Exception as exc:
                raise UpstreamModelError(
                    f"Model call failed: {exc or type(exc).__name__}",
                    model_name=model_name,
                    cause=exc,
                ) from exc
        if not isinstance(result, ModelResponse):
            raise UpstreamModelError(
                f"Model returned {type(result).__name__} instead of a message",
                model_name=model_name,
            )
        if result.message.role != "assistant":
            raise UpstreamModelError(
                f"Model returned a '{result.message.role}' message instead of an assistant message",
                model_name=model_name,
            )
        return result.message

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    def resolve_calls(self, calls: Sequence[ToolCall]) -> list[ResolvedCall]:
        """Match every requested call to a registered tool before any runs.

        Missing arguments reuse the last arguments seen for the same tool
        name in this round.

        Raises:
            UnknownToolError: For the first name that is not registered.
            ValidationError: When raw arguments are not a JSON object.
        """
        known = self._ctx.tools.names()
        last_arguments: dict[str, dict[str, Any]] = {}
        resolved: list[ResolvedCall] = []
        for call in calls:
            canonical = self._aliases.resolve(call.name, known)
            registered = self._ctx.tools.get(canonical) if canonical else None
            if registered is None:
                LOGGER.warning("Model requested unknown tool %s (call_id=%s)", call.name, call.id)
                raise UnknownToolError(call.name, call_id=call.id or None)
            if call.arguments is None and call.name in last_arguments:
                arguments = dict(last_arguments[call.name])
            else:
                arguments = parse_tool_arguments(call.arguments, tool_name=call.name, call_id=call.id or None)
            last_arguments[call.name] = arguments
            resolved.append(ResolvedCall(call=call, tool=registered, arguments=arguments))
        return resolved

    async def execute_round(self, calls: Sequence[ToolCall]) -> list[Message]:
        """Execute one round and append one tool message per call."""
        self._transition(OrchestratorState.EXECUTING_TOOLS)
        resolved = self.resolve_calls(calls)
        cache: dict[str, str] = {}
        appended: list[Message] = []
        for item in resolved:
            key = stable_arguments_key(item.tool.name, item.arguments)
            content = cache.get(key)
            if content is None:
                content = await self._invoke(item)
                cache[key] = content
            else:
                self._ctx.log.debug("reusing result for duplicate call", name=item.call.name, id=item.call.id)
            message = Message(
                role="tool",
                content=content,
                tool_call_id=item.call.id or None,
                name=item.call.name,
            )
            self._ctx.messages.append(message)
            appended.append(message)
        return appended

    async def _invoke(self, item: ResolvedCall) -> str:
        ctx = self._ctx
        ctx.signal.raise_if_cancelled()
        call_id = item.call.id or None
        arguments = validate_arguments(item.tool, item.arguments, call_id=call_id)
        started = time.perf_counter()
        with ctx.log.span("tool.invoke", tool=item.tool.name, alias=item.call.name, id=call_id):
            try:
                result = await item.tool.invoke(arguments, ctx.tool_context())
            except CancellationError:
                raise
            except Exception as exc:
                error = ToolExecutionError(
                    str(exc) or type(exc).__name__,
                    tool_name=item.tool.name,
                    call_id=call_id,
                    arguments=arguments,
                    cause=exc,
                )
                LOGGER.warning("Tool %s failed: %s", item.tool.name, error.message)
                ctx.log.warning("tool failed", tool=item.tool.name, id=call_id, error=error.message)
                return _failure_content(error)
        duration_ms = (time.perf_counter() - started) * 1000
        content = format_tool_result(result)
        ctx.log.debug(
            "tool result ready",
            tool=item.tool.name,
            id=call_id,
            content_chars=len(content),
            duration_ms=round(duration_ms, 1),
        )
        return content


# -----------------------------------------------------------------------------
# Stages
# -----------------------------------------------------------------------------


def tool_calling() -> Stage:
    """Single-shot variant: at most one tool round, then a tool-less finalization."""

    async def tool_calling_stage(ctx: ExecutionContext, next: Next) -> None:
        await next()
        await ToolCallingOrchestrator(ctx, max_iterations=1, single_shot=True).run()

    return tool_calling_stage


def iterative_tool_calling(max_iterations: int = DEFAULT_MAX_ITERATIONS) -> Stage:
    """Iterative variant: keep executing tools until the model stops asking.

    Raises:
        MaxIterationsExceeded: When the model still requests tools after
            ``max_iterations`` rounds.
    """
    if max_iterations < 1:
        raise ConfigurationError("max_iterations must be at least 1", key="max_iterations", value=max_iterations)

    async def iterative_tool_calling_stage(ctx: ExecutionContext, next: Next) -> None:
        await next()
        await ToolCallingOrchestrator(ctx, max_iterations=max_iterations).run()

    return iterative_tool_calling_stage
