"""Settings dataclasses with environment and mapping overrides."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping

from .errors import ConfigurationError

__all__ = ["StageSettings", "OpenAISettings"]

LOGGER = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

# camelCase spellings accepted by StageSettings.from_mapping().
_CAMEL_ALIASES: Mapping[str, str] = {
    "maxChars": "max_chars",
    "keepRecent": "keep_recent",
    "summaryMaxChars": "summary_max_chars",
    "recentClampChars": "recent_clamp_chars",
    "maxIterations": "max_iterations",
}
_STAGE_ENV_OVERRIDES: Mapping[str, str] = {
    "TOOLRAIL_WINDOW": "window",
    "TOOLRAIL_MAX_CHARS": "max_chars",
    "TOOLRAIL_KEEP_RECENT": "keep_recent",
    "TOOLRAIL_SUMMARY_MAX_CHARS": "summary_max_chars",
    "TOOLRAIL_RECENT_CLAMP_CHARS": "recent_clamp_chars",
    "TOOLRAIL_MAX_ITERATIONS": "max_iterations",
    "TOOLRAIL_STRICT_INVARIANTS": "strict",
}
_OPENAI_ENV_OVERRIDES: Mapping[str, str] = {
    "TOOLRAIL_API_KEY": "api_key",
    "TOOLRAIL_BASE_URL": "base_url",
    "TOOLRAIL_MODEL": "model",
    "TOOLRAIL_ORGANIZATION": "organization",
    "TOOLRAIL_REQUEST_TIMEOUT": "request_timeout",
    "TOOLRAIL_MAX_RETRIES": "max_retries",
}


def _coerce(name: str, raw: Any, target: Any) -> Any:
    """Coerce ``raw`` to the type of the current value ``target``."""
    if isinstance(target, bool):
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ConfigurationError(f"Expected a boolean for '{name}', got {raw!r}", key=name, value=raw)
    if isinstance(target, int):
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Expected an integer for '{name}', got {raw!r}", key=name, value=raw) from exc
    if isinstance(target, float) or target is None and name.endswith("timeout"):
        try:
            return float(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Expected a number for '{name}', got {raw!r}", key=name, value=raw) from exc
    return raw


@dataclass(slots=True, frozen=True)
class StageSettings:
    """Options recognized by the core stages.

    Attributes:
        window: Conversation buffer size (messages kept after the head).
        max_chars: Character threshold that triggers context compression.
        keep_recent: Messages kept verbatim by the compressor.
        summary_max_chars: Cap on the compressor's summary message.
        recent_clamp_chars: Cap applied to oversized recent messages.
        strict: Raise instead of warn on tool call/result mismatches.
        max_iterations: Bound on tool-calling rounds.
    """

    window: int = 12
    max_chars: int = 140_000
    keep_recent: int = 8
    summary_max_chars: int = 8_000
    recent_clamp_chars: int = 8_000
    strict: bool = False
    max_iterations: int = 12

    def __post_init__(self) -> None:
        for name in ("window", "keep_recent", "max_chars", "summary_max_chars", "recent_clamp_chars"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"'{name}' must be non-negative", key=name, value=getattr(self, name))
        if self.max_iterations < 1:
            raise ConfigurationError("'max_iterations' must be at least 1", key="max_iterations", value=self.max_iterations)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> StageSettings:
        """Build settings from snake_case or camelCase keys; unknown keys are ignored."""
        return cls().with_updates(**payload)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> StageSettings:
        env = os.environ if environ is None else environ
        overrides = {attr: env[name] for name, attr in _STAGE_ENV_OVERRIDES.items() if env.get(name)}
        if overrides:
            LOGGER.debug("Applying stage overrides from environment: %s", sorted(overrides))
        return cls().with_updates(**overrides)

    def with_updates(self, **changes: Any) -> StageSettings:
        known = {f.name for f in fields(self)}
        updates: dict[str, Any] = {}
        for key, value in changes.items():
            attr = _CAMEL_ALIASES.get(key, key)
            if attr not in known:
                LOGGER.debug("Ignoring unknown stage setting %s", key)
                continue
            updates[attr] = _coerce(attr, value, getattr(self, attr))
        return replace(self, **updates)


@dataclass(slots=True, frozen=True)
class OpenAISettings:
    """Subset of settings required to configure the OpenAI-compatible adapter."""

    model: str
    api_key: str = ""
    base_url: str | None = None
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    temperature: float | None = None
    default_headers: Mapping[str, str] | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **defaults: Any) -> OpenAISettings:
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {"model": "gpt-4o-mini", **defaults}
        for name, attr in _OPENAI_ENV_OVERRIDES.items():
            raw = env.get(name)
            if not raw:
                continue
            if attr == "max_retries":
                values[attr] = _coerce(attr, raw, 0)
            elif attr == "request_timeout":
                values[attr] = _coerce(attr, raw, 0.0)
            else:
                values[attr] = raw
        if not values.get("api_key"):
            values["api_key"] = env.get("OPENAI_API_KEY", "")
        if not values["model"]:
            raise ConfigurationError("A model name is required", key="model")
        return cls(**values)
