"""Tests for settings dataclasses."""

from __future__ import annotations

import pytest

from toolrail.config import OpenAISettings, StageSettings
from toolrail.errors import ConfigurationError


def test_stage_settings_defaults() -> None:
    settings = StageSettings()

    assert settings.window == 12
    assert settings.max_chars == 140_000
    assert settings.keep_recent == 8
    assert settings.summary_max_chars == 8_000
    assert settings.recent_clamp_chars == 8_000
    assert settings.strict is False
    assert settings.max_iterations == 12


def test_from_mapping_accepts_camel_case_and_ignores_unknown_keys() -> None:
    settings = StageSettings.from_mapping({"maxChars": "500", "keepRecent": 2, "window": 4, "colour": "blue"})

    assert settings.max_chars == 500
    assert settings.keep_recent == 2
    assert settings.window == 4


def test_from_env_reads_prefixed_variables() -> None:
    env = {"TOOLRAIL_WINDOW": "3", "TOOLRAIL_STRICT_INVARIANTS": "yes", "TOOLRAIL_MAX_ITERATIONS": "5"}

    settings = StageSettings.from_env(env)

    assert settings.window == 3
    assert settings.strict is True
    assert settings.max_iterations == 5


def test_from_env_uses_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOOLRAIL_KEEP_RECENT", "6")

    assert StageSettings.from_env().keep_recent == 6


@pytest.mark.parametrize(
    "changes",
    [{"window": -1}, {"max_iterations": 0}, {"window": "many"}, {"strict": "maybe"}],
)
def test_invalid_values_raise_configuration_error(changes) -> None:
    with pytest.raises(ConfigurationError):
        StageSettings().with_updates(**changes)


def test_openai_settings_from_env_prefers_prefixed_key() -> None:
    env = {
        "TOOLRAIL_API_KEY": "sk-prefixed",
        "OPENAI_API_KEY": "sk-fallback",
        "TOOLRAIL_MODEL": "gpt-4.1",
        "TOOLRAIL_REQUEST_TIMEOUT": "12.5",
        "TOOLRAIL_MAX_RETRIES": "1",
    }

    settings = OpenAISettings.from_env(env)

    assert settings.api_key == "sk-prefixed"
    assert settings.model == "gpt-4.1"
    assert settings.request_timeout == 12.5
    assert settings.max_retries == 1


def test_openai_settings_fall_back_to_openai_api_key() -> None:
    settings = OpenAISettings.from_env({"OPENAI_API_KEY": "sk-fallback"}, base_url="http://local")

    assert settings.api_key == "sk-fallback"
    assert settings.model == "gpt-4o-mini"
    assert settings.base_url == "http://local"


def test_openai_settings_require_a_model() -> None:
    with pytest.raises(ConfigurationError):
        OpenAISettings.from_env({}, model="")
