"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from toolrail.types import Message

from helpers import ScriptedModel, make_context


@pytest.fixture
def scripted_model() -> ScriptedModel:
    return ScriptedModel()


@pytest.fixture
def ctx(scripted_model: ScriptedModel):
    return make_context(scripted_model, system_prompt="sys")


@pytest.fixture
def weather_schema() -> dict:
    return {
        "type": "object",
        "properties": {"city": {"type": "string"}},
        "required": ["city"],
        "additionalProperties": False,
    }


@pytest.fixture
def long_transcript() -> list[Message]:
    messages = [Message.system("sys")]
    for index in range(5):
        role = "user" if index % 2 == 0 else "assistant"
        messages.append(Message(role=role, content=f"m{index}"))
    return messages
