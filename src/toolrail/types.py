"""Core type definitions for the pipeline runtime.

Messages and tool calls are immutable dataclasses; the transcript itself is a
plain list owned by the execution context so stages can append and trim it.
The model, memory and output sink are described as protocols so the
orchestration core never depends on a concrete provider.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Literal,
    Mapping,
    Protocol,
    Sequence,
    Union,
    runtime_checkable,
)

from openai.types.chat import ChatCompletionMessageParam

if TYPE_CHECKING:
    from .cancellation import CancellationToken
    from .tools.types import Tool

__all__ = [
    "MessageRole",
    "ToolChoice",
    "ToolCall",
    "Message",
    "Usage",
    "ModelResponse",
    "GenerateOptions",
    "TokenEvent",
    "ToolCallEvent",
    "AssistantMessageEvent",
    "UsageEvent",
    "ModelEvent",
    "Model",
    "Memory",
    "OutputSink",
]


MessageRole = Literal["system", "user", "assistant", "tool"]

# "auto" lets the model decide, "none" forbids tools, "required" forces at
# least one call, {"name": ...} forces a specific tool.
ToolChoice = Union[Literal["auto", "none", "required"], Mapping[str, str]]


# -----------------------------------------------------------------------------
# Messages
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A tool invocation requested by the model.

    Attributes:
        id: Provider tool call id (or a synthesized one).
        name: Name of the requested tool, possibly an alias.
        arguments: Parsed arguments, a raw JSON string, or None when omitted.
    """

    id: str
    name: str
    arguments: Any = None

    def arguments_json(self) -> str:
        """Return the arguments as a JSON string for provider payloads."""
        if self.arguments is None:
            return "{}"
        if isinstance(self.arguments, str):
            return self.arguments
        return json.dumps(self.arguments, ensure_ascii=False)

    def to_chat_param(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_json()},
        }


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message.

    Attributes:
        role: The role of the message sender.
        content: Text content; may be empty when only tool calls are present.
        name: Optional tool name echoed on tool messages.
        tool_call_id: ID linking a tool result to its call.
        tool_calls: Tool calls requested by an assistant message.
        metadata: Additional metadata (not sent to the model).
    """

    role: MessageRole
    content: str = ""
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name is not None and self.role != "assistant":
            payload["name"] = self.name
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            payload["tool_calls"] = [call.to_chat_param() for call in self.tool_calls]
        return payload  # type: ignore[return-value]

    @classmethod
    def system(cls, content: str, **metadata: Any) -> Message:
        return cls(role="system", content=content, metadata=metadata)

    @classmethod
    def user(cls, content: str, **metadata: Any) -> Message:
        return cls(role="user", content=content, metadata=metadata)

    @classmethod
    def assistant(
        cls,
        content: str = "",
        tool_calls: Sequence[ToolCall] | None = None,
        **metadata: Any,
    ) -> Message:
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
            metadata=metadata,
        )

    @classmethod
    def tool(
        cls,
        content: str,
        tool_call_id: str,
        name: str | None = None,
        **metadata: Any,
    ) -> Message:
        return cls(
            role="tool",
            content=content,
            tool_call_id=tool_call_id,
            name=name,
            metadata=metadata,
        )


# -----------------------------------------------------------------------------
# Model interaction
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Usage:
    """Token usage reported by a model call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int | None = None

    @property
    def total(self) -> int:
        if self.total_tokens is not None:
            return self.total_tokens
        return self.prompt_tokens + self.completion_tokens


@dataclass(slots=True, frozen=True)
class ModelResponse:
    """Non-streaming model result: an assistant message plus optional usage."""

    message: Message
    usage: Usage | None = None

    @property
    def has_tool_calls(self) -> bool:
        return self.message.has_tool_calls


@dataclass(slots=True)
class GenerateOptions:
    """Options for a single model call.

    Attributes:
        tool_choice: Tool-use policy for this call.
        tools: Tool descriptors surfaced to the provider.
        signal: Cancellation token the provider should observe.
        stream: Request a lazy sequence of events instead of a single message.
        temperature: Sampling temperature.
        max_tokens: Completion token cap.
        parallel_tool_calls: Hint for providers that support parallel calls.
    """

    tool_choice: ToolChoice = "auto"
    tools: Sequence["Tool"] | None = None
    signal: "CancellationToken | None" = None
    stream: bool = False
    temperature: float | None = None
    max_tokens: int | None = None
    parallel_tool_calls: bool | None = None


@dataclass(slots=True, frozen=True)
class TokenEvent:
    token: str
    type: Literal["token"] = "token"


@dataclass(slots=True, frozen=True)
class ToolCallEvent:
    call: ToolCall
    type: Literal["tool_call"] = "tool_call"


@dataclass(slots=True, frozen=True)
class AssistantMessageEvent:
    message: Message
    type: Literal["assistant_message"] = "assistant_message"


@dataclass(slots=True, frozen=True)
class UsageEvent:
    usage: Usage
    type: Literal["usage"] = "usage"


ModelEvent = Union[TokenEvent, ToolCallEvent, AssistantMessageEvent, UsageEvent]


# -----------------------------------------------------------------------------
# Capabilities
# -----------------------------------------------------------------------------


@runtime_checkable
class Model(Protocol):
    """Protocol for model capabilities.

    ``generate`` returns a :class:`ModelResponse` when ``options.stream`` is
    false and an async iterator of :data:`ModelEvent` otherwise.
    """

    name: str

    async def generate(
        self,
        messages: Sequence[Message],
        options: GenerateOptions | None = None,
    ) -> ModelResponse | AsyncIterator[ModelEvent]:
        ...


@runtime_checkable
class Memory(Protocol):
    """Opaque key-value store; never interpreted by the core."""

    async def get(self, key: str) -> Any:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...


@runtime_checkable
class OutputSink(Protocol):
    """Receives incremental output chunks for display."""

    def write(self, token: str) -> None:
        ...

    def end(self) -> None:
        ...
