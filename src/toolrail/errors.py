"""Error taxonomy for the pipeline runtime.

Every failure raised by the runtime derives from :class:`PipelineError`, which
carries a machine-readable ``code``, structured ``details`` and, once the error
has crossed the composition engine, the name of the stage it originated in.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

__all__ = [
    "ErrorCode",
    "PipelineError",
    "ValidationError",
    "UnknownToolError",
    "ToolExecutionError",
    "InvariantViolation",
    "UpstreamModelError",
    "CancellationError",
    "ReentrantDispatchError",
    "MaxIterationsExceeded",
    "DuplicateToolError",
    "ConfigurationError",
    "get_error_details",
    "record_stage",
    "error_stage",
]


class ErrorCode:
    """Constants for error codes carried by :class:`PipelineError`."""

    PIPELINE_ERROR = "pipeline_error"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_TOOL = "unknown_tool"
    TOOL_EXECUTION_ERROR = "tool_execution_error"
    INVARIANT_VIOLATION = "invariant_violation"
    UPSTREAM_MODEL_ERROR = "upstream_model_error"
    CANCELLED = "cancelled"
    REENTRANT_DISPATCH = "reentrant_dispatch"
    MAX_ITERATIONS_EXCEEDED = "max_iterations_exceeded"
    DUPLICATE_TOOL = "duplicate_tool"
    CONFIGURATION_ERROR = "configuration_error"
    GRAPH_STEP_LIMIT = "graph_step_limit"


class PipelineError(Exception):
    """Base class for all runtime errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error identifier.
        details: Additional structured error information.
        stage: Name of the stage the error originated in, when known.
    """

    default_code = ErrorCode.PIPELINE_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Mapping[str, Any] | None = None,
        stage: str | None = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details: dict[str, Any] = dict(details or {})
        self.stage = stage
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for logs and tool responses."""
        payload: dict[str, Any] = {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = dict(self.details)
        if self.stage:
            payload["stage"] = self.stage
        return payload


class ValidationError(PipelineError):
    """Raised when tool arguments do not satisfy the tool's schema."""

    default_code = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        *,
        tool_name: str = "",
        call_id: str | None = None,
        errors: Sequence[str] = (),
        arguments: Any = None,
    ) -> None:
        self.tool_name = tool_name
        self.call_id = call_id
        self.errors = tuple(errors)
        self.arguments = arguments
        super().__init__(
            message,
            details={"tool": tool_name, "call_id": call_id, "errors": list(self.errors)},
        )


class UnknownToolError(PipelineError):
    """Raised when the model requests a tool that is not registered."""

    default_code = ErrorCode.UNKNOWN_TOOL

    def __init__(self, name: str, *, call_id: str | None = None) -> None:
        self.name = name
        self.call_id = call_id
        super().__init__(
            f"Unknown tool: {name}",
            details={"tool": name, "call_id": call_id},
        )


class ToolExecutionError(PipelineError):
    """Raised when a tool handler fails."""

    default_code = ErrorCode.TOOL_EXECUTION_ERROR

    def __init__(
        self,
        message: str,
        *,
        tool_name: str = "",
        call_id: str | None = None,
        arguments: Any = None,
        cause: BaseException | None = None,
    ) -> None:
        self.tool_name = tool_name
        self.call_id = call_id
        self.arguments = arguments
        self.cause = cause
        super().__init__(message, details={"tool": tool_name, "call_id": call_id})


class InvariantViolation(PipelineError):
    """Raised in strict mode when tool calls lack matching tool results."""

    default_code = ErrorCode.INVARIANT_VIOLATION

    def __init__(self, missing: Sequence[Mapping[str, Any]]) -> None:
        self.missing = [dict(entry) for entry in missing]
        ids = [entry.get("tool_call_id") or entry.get("name") for entry in self.missing]
        super().__init__(
            f"Missing tool responses for tool_calls: {', '.join(str(i) for i in ids)}",
            details={"missing": self.missing},
        )

    @property
    def missing_ids(self) -> list[str | None]:
        return [entry.get("tool_call_id") for entry in self.missing]


class UpstreamModelError(PipelineError):
    """Raised when the model capability fails or returns malformed output."""

    default_code = ErrorCode.UPSTREAM_MODEL_ERROR

    def __init__(
        self,
        message: str,
        *,
        model_name: str | None = None,
        provider: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.model_name = model_name
        self.provider = provider
        self.cause = cause
        super().__init__(message, details={"model": model_name, "provider": provider})


class CancellationError(PipelineError):
    """Raised when an operation observes a cancelled token."""

    default_code = ErrorCode.CANCELLED

    def __init__(self, message: str = "Operation was cancelled", *, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(message, details={"reason": reason} if reason else None)


class ReentrantDispatchError(PipelineError):
    """Raised when a stage invokes its continuation more than once or out of order."""

    default_code = ErrorCode.REENTRANT_DISPATCH

    def __init__(self, index: int) -> None:
        self.index = index
        super().__init__(
            f"continuation invoked redundantly for dispatch index {index}",
            details={"index": index},
        )


class MaxIterationsExceeded(PipelineError):
    """Raised when the tool loop is still requesting tools at its bound."""

    default_code = ErrorCode.MAX_ITERATIONS_EXCEEDED

    def __init__(self, max_iterations: int) -> None:
        self.max_iterations = max_iterations
        super().__init__(
            f"Tool loop exceeded {max_iterations} iteration(s) without a final answer",
            details={"max_iterations": max_iterations},
        )


class DuplicateToolError(PipelineError):
    """Raised when registering a tool whose name already exists."""

    default_code = ErrorCode.DUPLICATE_TOOL

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered", details={"tool": name})


class ConfigurationError(PipelineError):
    """Raised when stage or client configuration is invalid."""

    default_code = ErrorCode.CONFIGURATION_ERROR

    def __init__(self, message: str, *, key: str | None = None, value: Any = None) -> None:
        self.key = key
        self.value = value
        super().__init__(message, details={"key": key} if key else None)


# Attribute carrying the originating stage on exceptions outside the taxonomy.
_STAGE_ATTR = "__pipeline_stage__"


def get_error_details(error: BaseException | object) -> dict[str, Any]:
    """Return a loggable mapping describing ``error``."""

    if isinstance(error, PipelineError):
        return error.to_dict()
    if isinstance(error, BaseException):
        details = {"name": type(error).__name__, "message": str(error) or type(error).__name__}
        stage = getattr(error, _STAGE_ATTR, None)
        if stage:
            details["stage"] = stage
        return details
    return {"name": "UnknownError", "message": str(error)}


def record_stage(error: BaseException, stage: str) -> None:
    """Remember ``stage`` as the origin of ``error`` unless one is already known."""

    if isinstance(error, PipelineError):
        if error.stage is None:
            error.stage = stage
    elif getattr(error, _STAGE_ATTR, None) is None:
        setattr(error, _STAGE_ATTR, stage)


def error_stage(error: BaseException) -> str | None:
    """Return the stage ``error`` originated in, when the engine recorded it."""

    if isinstance(error, PipelineError):
        return error.stage
    return getattr(error, _STAGE_ATTR, None)
