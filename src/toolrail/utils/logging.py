"""Structured logging helpers for the toolrail runtime."""

from __future__ import annotations

import copy
import logging
import logging.handlers
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

from ..errors import ConfigurationError

__all__ = [
    "setup_logging",
    "get_log_path",
    "PipelineLogger",
    "TracingLogger",
    "TraceEvent",
    "redact",
    "DEFAULT_SENSITIVE_KEYS",
]

LOGGER = logging.getLogger(__name__)

_DEFAULT_LOG_DIR = Path.home() / ".toolrail" / "logs"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_CONFIGURED = False
_LOG_PATH: Path | None = None
_PACKAGE_LOGGER = "toolrail"
_REQUEST_LOGGER = "toolrail.request"

DEFAULT_SENSITIVE_KEYS: tuple[str, ...] = (
    "api_key",
    "apikey",
    "authorization",
    "auth",
    "token",
    "access_token",
    "refresh_token",
    "password",
    "passwd",
    "secret",
    "x-api-key",
    "openai_api_key",
)
_REDACTED = "***REDACTED***"


def setup_logging(
    level: int | str | None = None,
    *,
    request_level: int | str | None = None,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Route toolrail loggers to a rotating file and, optionally, the console.

    ``level`` applies to the ``toolrail`` logger tree and falls back to
    ``TOOLRAIL_LOG_LEVEL``. Per-request context loggers (``toolrail.request``)
    can be tuned separately through ``request_level`` or
    ``TOOLRAIL_REQUEST_LOG_LEVEL``; they default to ``level``. Third-party
    HTTP and SDK loggers are held at WARNING or above.

    Raises:
        ConfigurationError: If a level name is not recognized.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    package_level = _resolve_level(level, "TOOLRAIL_LOG_LEVEL", logging.INFO)
    context_level = _resolve_level(request_level, "TOOLRAIL_REQUEST_LOG_LEVEL", package_level)
    handler_level = min(package_level, context_level)

    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / "toolrail.log"

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handlers.append(file_handler)
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(handler_level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=handler_level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    logging.getLogger(_PACKAGE_LOGGER).setLevel(package_level)
    logging.getLogger(_REQUEST_LOGGER).setLevel(context_level)
    _tune_external_loggers(package_level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    LOGGER.debug(
        "Logging configured at %s (request logs at %s) -> %s",
        logging.getLevelName(package_level),
        logging.getLevelName(context_level),
        log_path,
    )
    return log_path


def get_log_path() -> Path | None:
    """Return the currently configured log file if available."""

    return _LOG_PATH


def _resolve_level(value: int | str | None, env_name: str, default: int) -> int:
    raw: int | str | None = value if value is not None else os.environ.get(env_name) or None
    if raw is None:
        return default
    if isinstance(raw, int):
        return raw
    text = raw.strip()
    if text.isdigit():
        return int(text)
    resolved = logging.getLevelName(text.upper())
    if not isinstance(resolved, int):
        raise ConfigurationError(f"Unknown log level {raw!r}", key=env_name, value=raw)
    return resolved


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    env_override = os.environ.get("TOOLRAIL_LOG_DIR")
    return Path(log_dir or env_override or _DEFAULT_LOG_DIR).expanduser()


def _tune_external_loggers(package_level: int) -> None:
    quiet_level = max(logging.WARNING, package_level)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)


# -----------------------------------------------------------------------------
# Redaction
# -----------------------------------------------------------------------------


def _env_redact_keys() -> list[str]:
    raw = os.environ.get("TOOLRAIL_LOG_REDACT_KEYS", "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def redact(value: Any, keys: Iterable[str] = DEFAULT_SENSITIVE_KEYS, mask: str = _REDACTED) -> Any:
    """Return a copy of ``value`` with sensitive mapping keys masked (case-insensitive)."""

    lowered = {key.lower() for key in keys}
    return _redact(value, lowered, mask)


def _redact(value: Any, keys: set[str], mask: str) -> Any:
    if isinstance(value, BaseException):
        return {"name": type(value).__name__, "message": str(value)}
    if isinstance(value, Mapping):
        return {
            k: (mask if str(k).lower() in keys else _redact(v, keys, mask))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact(item, keys, mask) for item in value]
    return value


# -----------------------------------------------------------------------------
# Context logger
# -----------------------------------------------------------------------------


class PipelineLogger:
    """Leveled logger with structured fields and nested timing spans.

    Wraps a stdlib :class:`logging.Logger`. Structured fields are rendered as
    ``key=value`` after the message and sensitive keys are masked.

    Example:
        log = PipelineLogger("toolrail.request")
        with log.span("model.generate", model="gpt"):
            log.info("requested tools", count=2)
    """

    def __init__(
        self,
        name: str | logging.Logger = _REQUEST_LOGGER,
        *,
        redact_keys: Iterable[str] | None = None,
    ) -> None:
        self._logger = name if isinstance(name, logging.Logger) else logging.getLogger(name)
        keys = list(redact_keys) if redact_keys is not None else list(DEFAULT_SENSITIVE_KEYS)
        self._redact_keys = {key.lower() for key in [*keys, *_env_redact_keys()]}
        self._spans: list[str] = []

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def current_span(self) -> str | None:
        return "/".join(self._spans) if self._spans else None

    def child(self) -> PipelineLogger:
        """Return a logger sharing this one's output but with its own span stack.

        Spans opened on the child nest under the parent's current span and
        never appear on the parent's stack.
        """
        clone = copy.copy(self)
        clone._spans = list(self._spans)
        return clone

    def debug(self, message: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._emit(logging.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._emit(logging.WARNING, message, fields)

    warn = warning

    def error(self, message: str, **fields: Any) -> None:
        self._emit(logging.ERROR, message, fields)

    @contextmanager
    def span(self, name: str, **attrs: Any) -> Iterator[PipelineLogger]:
        """Time a scoped operation; the span closes on every exit path."""
        self._spans.append(name)
        path = self.current_span
        self._record_span("start", path, attrs)
        self._emit(logging.DEBUG, f"span start {path}", attrs)
        started = time.perf_counter()
        try:
            yield self
        except BaseException as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            self._record_span("error", path, {"duration_ms": duration_ms})
            self._emit(
                logging.DEBUG,
                f"span failed {path}",
                {"duration_ms": round(duration_ms, 1), "error": type(exc).__name__},
            )
            raise
        else:
            duration_ms = (time.perf_counter() - started) * 1000
            self._record_span("end", path, {"duration_ms": duration_ms})
            self._emit(logging.DEBUG, f"span end {path}", {"duration_ms": round(duration_ms, 1)})
        finally:
            self._spans.pop()

    def _emit(self, level: int, message: str, fields: Mapping[str, Any]) -> None:
        safe_fields = _redact(dict(fields), self._redact_keys, _REDACTED) if fields else {}
        self._record(level, message, safe_fields)
        if not self._logger.isEnabledFor(level):
            return
        if safe_fields:
            rendered = " ".join(f"{key}={value!r}" for key, value in safe_fields.items())
            self._logger.log(level, "%s | %s", message, rendered)
        else:
            self._logger.log(level, "%s", message)

    def _record(self, level: int, message: str, fields: Mapping[str, Any]) -> None:
        """Hook for subclasses that keep an in-memory trace."""

    def _record_span(self, phase: str, path: str | None, attrs: Mapping[str, Any]) -> None:
        """Hook for subclasses that keep an in-memory trace."""


@dataclass(slots=True)
class TraceEvent:
    """A single event captured by :class:`TracingLogger`."""

    level: str
    message: str
    fields: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class TracingLogger(PipelineLogger):
    """Logger that also keeps every event in memory for later inspection."""

    def __init__(
        self,
        name: str | logging.Logger = "toolrail.trace",
        *,
        redact_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(name, redact_keys=redact_keys)
        self._events: list[TraceEvent] = []

    def events(self, level: str | None = None) -> list[TraceEvent]:
        if level is None:
            return list(self._events)
        return [event for event in self._events if event.level == level]

    def reset(self) -> None:
        self._events.clear()

    def _record(self, level: int, message: str, fields: Mapping[str, Any]) -> None:
        if message.startswith("span "):
            return
        self._events.append(
            TraceEvent(level=logging.getLevelName(level).lower(), message=message, fields=dict(fields))
        )

    def _record_span(self, phase: str, path: str | None, attrs: Mapping[str, Any]) -> None:
        payload = _redact(dict(attrs), self._redact_keys, _REDACTED)
        self._events.append(
            TraceEvent(level="span", message=f"{phase} {path}", fields=payload)
        )
