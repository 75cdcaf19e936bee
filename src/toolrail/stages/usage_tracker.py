"""Token usage and cost accounting for model calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, Sequence

from ..context import ExecutionContext, StateKeys
from ..pipeline.compose import Next, Stage
from ..types import GenerateOptions, Message, Model, ModelEvent, ModelResponse, Usage, UsageEvent

__all__ = ["UsageTotals", "UsageTrackingModel", "usage_tracker", "estimate_cost"]

LOGGER = logging.getLogger(__name__)

PriceTable = Mapping[str, Mapping[str, float]]


def _per_1k(price: Mapping[str, float], kind: str) -> float:
    if f"{kind}_per_1k" in price:
        return float(price[f"{kind}_per_1k"])
    if f"{kind}_per_1m" in price:
        return float(price[f"{kind}_per_1m"]) / 1000
    return 0.0


def estimate_cost(usage: Usage, price: Mapping[str, float]) -> float:
    """Cost in USD of one call given ``input``/``output`` per-1K or per-1M prices."""
    cost = (usage.prompt_tokens / 1000) * _per_1k(price, "input")
    cost += (usage.completion_tokens / 1000) * _per_1k(price, "output")
    return cost


@dataclass(slots=True)
class UsageTotals:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0
    calls: int = 0

    @classmethod
    def from_state(cls, value: Any) -> UsageTotals:
        if isinstance(value, Mapping):
            return cls(
                prompt_tokens=int(value.get("prompt_tokens", 0)),
                completion_tokens=int(value.get("completion_tokens", 0)),
                total_tokens=int(value.get("total_tokens", 0)),
                cost_usd=float(value.get("cost_usd", 0.0)),
                calls=int(value.get("calls", 0)),
            )
        return cls()

    def add(self, usage: Usage, cost: float) -> None:
        self.prompt_tokens += usage.prompt_tokens
        self.completion_tokens += usage.completion_tokens
        self.total_tokens += usage.total
        self.cost_usd += cost
        self.calls += 1

    def to_dict(self, *, include_cost: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "calls": self.calls,
        }
        if include_cost:
            payload["cost_usd"] = round(self.cost_usd, 6)
        return payload


class UsageTrackingModel:
    """Model wrapper that accumulates usage from every call it forwards."""

    def __init__(
        self,
        inner: Model,
        ctx: ExecutionContext,
        totals: UsageTotals,
        price: Mapping[str, float] | None,
        *,
        log_per_call: bool = False,
    ) -> None:
        self.inner = inner
        self.name = getattr(inner, "name", "model")
        self._ctx = ctx
        self._totals = totals
        self._price = price
        self._log_per_call = log_per_call

    async def generate(
        self,
        messages: Sequence[Message],
        options: GenerateOptions | None = None,
    ) -> ModelResponse | AsyncIterator[ModelEvent]:
        result = await self.inner.generate(messages, options)
        if isinstance(result, ModelResponse):
            if result.usage is not None:
                self._apply(result.usage)
            return result
        return self._watch(result)

    async def _watch(self, events: AsyncIterator[ModelEvent]) -> AsyncIterator[ModelEvent]:
        usage: Usage | None = None
        async for event in events:
            if isinstance(event, UsageEvent):
                usage = event.usage
            yield event
        if usage is not None:
            self._apply(usage)

    def _apply(self, usage: Usage) -> None:
        cost = estimate_cost(usage, self._price) if self._price else 0.0
        self._totals.add(usage, cost)
        if self._log_per_call:
            self._ctx.log.info(
                "model usage",
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total,
                est_cost_usd=round(cost, 6) if self._price else None,
            )


def usage_tracker(prices: PriceTable | None = None, *, log_per_call: bool = False) -> Stage:
    """Track token usage of downstream model calls into ``ctx.state["usage"]``.

    ``prices`` maps model names (or ``"*"`` as a fallback) to
    ``input_per_1m``/``output_per_1m`` or ``input_per_1k``/``output_per_1k``
    prices in USD.
    """
    table = dict(prices or {})

    async def usage_tracker_stage(ctx: ExecutionContext, next: Next) -> None:
        original = ctx.model
        price = table.get(getattr(original, "name", ""), table.get("*"))
        totals = UsageTotals.from_state(ctx.state.get(StateKeys.USAGE))
        ctx.model = UsageTrackingModel(original, ctx, totals, price, log_per_call=log_per_call)
        try:
            await next()
        finally:
            ctx.model = original
            ctx.state[StateKeys.USAGE] = totals.to_dict(include_cost=price is not None)
            ctx.log.info("usage totals", **ctx.state[StateKeys.USAGE])

    return usage_tracker_stage
