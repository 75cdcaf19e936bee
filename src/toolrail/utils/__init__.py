"""Shared utilities."""

from .logging import PipelineLogger, TracingLogger, redact, setup_logging

__all__ = ["PipelineLogger", "TracingLogger", "redact", "setup_logging"]
