"""Model adapter for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Mapping, Sequence

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError
from openai.types.chat import ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import OpenAISettings
from ..errors import UpstreamModelError
from ..types import (
    AssistantMessageEvent,
    GenerateOptions,
    Message,
    ModelEvent,
    ModelResponse,
    TokenEvent,
    ToolCall,
    ToolCallEvent,
    Usage,
    UsageEvent,
)

__all__ = ["OpenAIChatModel"]

LOGGER = logging.getLogger(__name__)

_PROVIDER = "openai"
_RETRYABLE_ERRORS = (
    APIError,
    APIStatusError,
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)


def _parse_arguments(raw: Any) -> Any:
    """Decode JSON argument strings; leave malformed ones for the validator."""
    if not isinstance(raw, str):
        return raw
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.debug("Tool call arguments are not valid JSON; passing raw string through")
        return raw


def _map_usage(raw: Any) -> Usage | None:
    if raw is None:
        return None
    return Usage(
        prompt_tokens=int(getattr(raw, "prompt_tokens", 0) or 0),
        completion_tokens=int(getattr(raw, "completion_tokens", 0) or 0),
        total_tokens=getattr(raw, "total_tokens", None),
    )


def _tool_choice_param(choice: Any) -> Any:
    if isinstance(choice, Mapping):
        return {"type": "function", "function": {"name": choice["name"]}}
    return choice


class OpenAIChatModel:
    """Async chat model backed by ``openai.AsyncOpenAI`` with retry semantics.

    Example:
        model = OpenAIChatModel(OpenAISettings.from_env())
        ctx = create_context(model=model, input="Hello")
    """

    def __init__(self, settings: OpenAISettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self.name = settings.model

    @property
    def settings(self) -> OpenAISettings:
        return self._settings

    async def generate(
        self,
        messages: Sequence[Message],
        options: GenerateOptions | None = None,
    ) -> ModelResponse | AsyncIterator[ModelEvent]:
        opts = options or GenerateOptions()
        if opts.signal is not None:
            opts.signal.raise_if_cancelled()
        payload = self._build_chat_payload(messages, opts)
        LOGGER.debug(
            "Requesting chat completion via %s with %s message(s)",
            self._settings.model,
            len(payload["messages"]),
        )
        if opts.stream:
            return self._stream(payload, opts)
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.chat.completions.create(**payload)
        except Exception as exc:
            raise self._wrap_error(exc) from exc
        return self._parse_response(response)

    def _build_client(self, settings: OpenAISettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
        )

    def _build_chat_payload(self, messages: Sequence[Message], options: GenerateOptions) -> Dict[str, Any]:
        chat_messages: List[ChatCompletionMessageParam] = [message.to_chat_param() for message in messages]
        if not chat_messages:
            raise ValueError("At least one message is required to start a chat")
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": chat_messages,
        }
        if options.tools:
            payload["tools"] = [item.to_openai_tool() for item in options.tools]
            payload["tool_choice"] = _tool_choice_param(options.tool_choice)
            if options.parallel_tool_calls is not None:
                payload["parallel_tool_calls"] = options.parallel_tool_calls
        temperature = options.temperature if options.temperature is not None else self._settings.temperature
        if temperature is not None:
            payload["temperature"] = temperature
        if options.max_tokens is not None:
            payload["max_tokens"] = options.max_tokens
        if options.stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return payload

    def _parse_response(self, response: Any) -> ModelResponse:
        choices = getattr(response, "choices", None) or []
        if not choices:
            raise UpstreamModelError(
                "Chat completion returned no choices",
                model_name=self._settings.model,
                provider=_PROVIDER,
            )
        raw = choices[0].message
        calls = [
            ToolCall(
                id=getattr(item, "id", None) or f"call_{index}",
                name=item.function.name,
                arguments=_parse_arguments(item.function.arguments),
            )
            for index, item in enumerate(getattr(raw, "tool_calls", None) or [])
        ]
        message = Message.assistant(getattr(raw, "content", None) or "", tool_calls=calls)
        return ModelResponse(message=message, usage=_map_usage(getattr(response, "usage", None)))

    async def _stream(self, payload: Mapping[str, Any], options: GenerateOptions) -> AsyncIterator[ModelEvent]:
        try:
            async for attempt in self._retrying():
                with attempt:
                    stream = await self._client.chat.completions.create(**payload)
        except Exception as exc:
            raise self._wrap_error(exc) from exc

        text: list[str] = []
        pending: dict[int, dict[str, Any]] = {}
        usage: Usage | None = None
        try:
            async for chunk in stream:
                if options.signal is not None:
                    options.signal.raise_if_cancelled()
                if getattr(chunk, "usage", None) is not None:
                    usage = _map_usage(chunk.usage)
                for choice in getattr(chunk, "choices", None) or []:
                    delta = choice.delta
                    content = getattr(delta, "content", None)
                    if content:
                        text.append(content)
                        yield TokenEvent(token=content)
                    for item in getattr(delta, "tool_calls", None) or []:
                        entry = pending.setdefault(item.index, {"id": None, "name": "", "arguments": ""})
                        if getattr(item, "id", None):
                            entry["id"] = item.id
                        function = getattr(item, "function", None)
                        if function is not None:
                            entry["name"] += getattr(function, "name", None) or ""
                            entry["arguments"] += getattr(function, "arguments", None) or ""
        except (APIError, httpx.HTTPError) as exc:
            raise self._wrap_error(exc) from exc
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                result = close()
                if inspect.isawaitable(result):
                    await result

        calls = [
            ToolCall(id=entry["id"] or f"call_{index}", name=entry["name"], arguments=_parse_arguments(entry["arguments"]))
            for index, entry in sorted(pending.items())
        ]
        for call in calls:
            yield ToolCallEvent(call=call)
        yield AssistantMessageEvent(message=Message.assistant("".join(text), tool_calls=calls))
        if usage is not None:
            yield UsageEvent(usage=usage)

    def _wrap_error(self, exc: BaseException) -> UpstreamModelError:
        LOGGER.warning("Chat completion via %s failed: %s", self._settings.model, exc)
        return UpstreamModelError(
            f"OpenAI request failed: {exc}",
            model_name=self._settings.model,
            provider=_PROVIDER,
            cause=exc,
        )

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""
        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result
