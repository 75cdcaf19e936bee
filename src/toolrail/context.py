"""Per-request execution context threaded through every stage."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, MutableMapping, Sequence

from .cancellation import CancellationToken
from .memory import InMemoryStore
from .streams import NullStream
from .tools.registry import ToolRegistry
from .types import Memory, Message, Model, OutputSink
from .utils.logging import PipelineLogger

__all__ = [
    "StateKeys",
    "ExecutionContext",
    "ToolContext",
    "create_context",
]


class StateKeys:
    """Reserved keys in :attr:`ExecutionContext.state`."""

    # ErrorDescriptor recorded by the nearest error boundary.
    ERROR = "error"
    # ToolAliases installed by register_tools().
    TOOL_ALIASES = "tool_aliases"
    # Mapping handed to tool handlers as ToolContext.deps.
    TOOL_DEPS = "tool_deps"
    # Running token/cost totals kept by usage_tracker().
    USAGE = "usage"
    # Orchestrator progress: {"state": ..., "iteration": ...}.
    TOOL_LOOP = "tool_loop"
    # Set while the context compressor is summarizing.
    COMPRESSING = "compressing"


@dataclass(slots=True, eq=False)
class ExecutionContext:
    """Mutable state for one top-level request.

    Created at request entry, passed by reference through every stage and
    discarded when the request completes. Never share one instance between
    concurrent requests.
    """

    model: Model
    messages: list[Message] = field(default_factory=list)
    tools: ToolRegistry = field(default_factory=ToolRegistry)
    memory: Memory = field(default_factory=InMemoryStore)
    stream: OutputSink = field(default_factory=NullStream)
    state: dict[str, Any] = field(default_factory=dict)
    signal: CancellationToken = field(default_factory=CancellationToken)
    log: PipelineLogger = field(default_factory=PipelineLogger)
    input: str | None = None

    def tool_context(self) -> ToolContext:
        """Build the restricted view handed to tool handlers."""
        deps = self.state.get(StateKeys.TOOL_DEPS)
        return ToolContext(
            memory=self.memory,
            signal=self.signal,
            log=self.log,
            model=self.model,
            deps=dict(deps) if isinstance(deps, Mapping) else {},
        )

    def fork(self) -> ExecutionContext:
        """Copy with independent transcript, state and span stack; capabilities are shared."""
        return ExecutionContext(
            model=self.model,
            messages=list(self.messages),
            tools=self.tools,
            memory=self.memory,
            stream=self.stream,
            state=dict(self.state),
            signal=self.signal,
            log=self.log.child(),
            input=self.input,
        )


@dataclass(slots=True, frozen=True)
class ToolContext:
    """What a tool handler may touch.

    Tools can use the model, memory, logger and cancellation token, but cannot
    reach the transcript, the registry, the output stream or stage state.
    """

    memory: Memory
    signal: CancellationToken
    log: PipelineLogger
    model: Model
    deps: Mapping[str, Any] = field(default_factory=dict)


def create_context(
    *,
    model: Model,
    input: str | None = None,
    system_prompt: str | None = None,
    messages: Sequence[Message] | None = None,
    tools: ToolRegistry | None = None,
    memory: Memory | None = None,
    stream: OutputSink | None = None,
    state: MutableMapping[str, Any] | None = None,
    signal: CancellationToken | None = None,
    log: PipelineLogger | None = None,
) -> ExecutionContext:
    """Create an execution context with sensible defaults.

    A ``system_prompt`` seeds the transcript with a leading system message.
    """
    transcript: list[Message] = []
    if system_prompt:
        transcript.append(Message.system(system_prompt))
    if messages:
        transcript.extend(messages)
    return ExecutionContext(
        model=model,
        messages=transcript,
        tools=tools if tools is not None else ToolRegistry(),
        memory=memory if memory is not None else InMemoryStore(),
        stream=stream if stream is not None else NullStream(),
        state=dict(state) if state else {},
        signal=signal if signal is not None else CancellationToken(),
        log=log if log is not None else PipelineLogger("toolrail.request"),
        input=input,
    )
