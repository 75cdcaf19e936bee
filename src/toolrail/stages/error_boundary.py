"""Error boundary stage.

Wraps the rest of the pipeline. Downstream failures are recorded in
``ctx.state["error"]`` and handed to a recovery handler instead of
propagating.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

from ..context import ExecutionContext, StateKeys
from ..errors import PipelineError, error_stage
from ..pipeline.compose import Next, Stage
from ..types import Message

__all__ = [
    "ErrorDescriptor",
    "ErrorHandler",
    "error_boundary",
    "neutral_reply",
    "DEFAULT_NEUTRAL_REPLY",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_NEUTRAL_REPLY = "Sorry, something went wrong while handling your request."

ErrorHandler = Callable[[Exception, ExecutionContext], Union[Awaitable[None], None]]


@dataclass(slots=True, frozen=True)
class ErrorDescriptor:
    """Structured description of a caught failure.

    Attributes:
        kind: Exception class name.
        message: Human-readable message.
        stage: Originating stage, when the engine could determine it.
        code: Machine-readable code for runtime errors.
        details: Extra structured information.
    """

    kind: str
    message: str
    stage: str | None = None
    code: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, error: BaseException) -> ErrorDescriptor:
        if isinstance(error, PipelineError):
            return cls(
                kind=type(error).__name__,
                message=error.message,
                stage=error.stage,
                code=error.code,
                details=dict(error.details),
            )
        return cls(
            kind=type(error).__name__,
            message=str(error) or type(error).__name__,
            stage=error_stage(error),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "stage": self.stage,
            "code": self.code,
            "details": dict(self.details),
        }


def error_boundary(on_error: ErrorHandler) -> Stage:
    """Catch downstream failures and delegate recovery to ``on_error``.

    The failure is not re-raised unless ``on_error`` raises. Nested
    boundaries are allowed; the innermost one catches first.
    """

    async def error_boundary_stage(ctx: ExecutionContext, next: Next) -> None:
        try:
            await next()
        except Exception as exc:
            descriptor = ErrorDescriptor.from_exception(exc)
            ctx.state[StateKeys.ERROR] = descriptor
            LOGGER.debug("Error boundary caught %s", descriptor.kind, exc_info=exc)
            ctx.log.error("pipeline failed", error=descriptor.to_dict())
            outcome = on_error(exc, ctx)
            if inspect.isawaitable(outcome):
                await outcome

    return error_boundary_stage


def neutral_reply(text: str = DEFAULT_NEUTRAL_REPLY) -> ErrorHandler:
    """Recovery handler that appends a neutral assistant message."""

    def handle(error: Exception, ctx: ExecutionContext) -> None:
        ctx.messages.append(Message.assistant(text))

    return handle
