"""Request-pipeline runtime for tool-calling conversational models."""

from .cancellation import CancellationToken
from .config import OpenAISettings, StageSettings
from .context import ExecutionContext, StateKeys, ToolContext, create_context
from .errors import (
    CancellationError,
    ConfigurationError,
    DuplicateToolError,
    InvariantViolation,
    MaxIterationsExceeded,
    PipelineError,
    ReentrantDispatchError,
    ToolExecutionError,
    UnknownToolError,
    UpstreamModelError,
    ValidationError,
)
from .memory import InMemoryStore
from .pipeline import Pipeline, compose
from .stages import tool_calling_pipeline
from .streams import BufferedStream, ConsoleStream, NullStream
from .tools import Tool, ToolAliases, ToolRegistry, tool
from .types import GenerateOptions, Message, ModelResponse, ToolCall, Usage

__version__ = "0.1.0"

__all__ = [
    "CancellationToken",
    "OpenAISettings",
    "StageSettings",
    "ExecutionContext",
    "StateKeys",
    "ToolContext",
    "create_context",
    "CancellationError",
    "ConfigurationError",
    "DuplicateToolError",
    "InvariantViolation",
    "MaxIterationsExceeded",
    "PipelineError",
    "ReentrantDispatchError",
    "ToolExecutionError",
    "UnknownToolError",
    "UpstreamModelError",
    "ValidationError",
    "InMemoryStore",
    "Pipeline",
    "compose",
    "tool_calling_pipeline",
    "BufferedStream",
    "ConsoleStream",
    "NullStream",
    "Tool",
    "ToolAliases",
    "ToolRegistry",
    "tool",
    "GenerateOptions",
    "Message",
    "ModelResponse",
    "ToolCall",
    "Usage",
]
