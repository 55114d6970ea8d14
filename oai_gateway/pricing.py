"""Cost estimates for upstream calls from reported token usage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

TOKENS_PER_UNIT = 1_000_000


@dataclass(frozen=True)
class ModelPricing:
    """USD prices per pricing unit of tokens; ``image`` is per generated image."""

    input: float
    output: float
    cached: Optional[float] = None
    reasoning: Optional[float] = None
    image: Optional[float] = None


MODEL_PRICING: dict[str, ModelPricing] = {
    "gpt-4o": ModelPricing(input=0.0025, output=0.01, cached=0.00125),
    "gpt-4o-mini": ModelPricing(input=0.00015, output=0.0006, cached=0.000075),
    "o1": ModelPricing(input=0.015, output=0.06, cached=0.0075, reasoning=0.06),
    "o3-mini": ModelPricing(input=0.0011, output=0.0044, cached=0.00055, reasoning=0.0044),
    "gpt-5": ModelPricing(input=0.00125, output=0.01, cached=0.000625, reasoning=0.01),
    "gpt-image-1": ModelPricing(input=0.0025, output=0.01, image=0.04),
}


def get_model_pricing(model: str) -> Optional[ModelPricing]:
    return MODEL_PRICING.get(model)


def supported_models() -> list[str]:
    return list(MODEL_PRICING)


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def normalize_usage(usage: Optional[Mapping[str, Any]]) -> dict[str, int]:
    """Flatten a Responses or Chat Completions usage block.

    Returns only the counters present, under the keys ``input_tokens``,
    ``output_tokens``, ``cached_tokens``, ``reasoning_tokens`` and
    ``total_tokens``.
    """
    if not isinstance(usage, Mapping):
        return {}

    normalized: dict[str, int] = {}
    input_tokens = _int_or_none(usage.get("input_tokens"))
    if input_tokens is None:
        input_tokens = _int_or_none(usage.get("prompt_tokens"))
    output_tokens = _int_or_none(usage.get("output_tokens"))
    if output_tokens is None:
        output_tokens = _int_or_none(usage.get("completion_tokens"))
    if input_tokens is not None:
        normalized["input_tokens"] = input_tokens
    if output_tokens is not None:
        normalized["output_tokens"] = output_tokens

    input_details = usage.get("input_tokens_details") or usage.get("prompt_tokens_details") or {}
    output_details = usage.get("output_tokens_details") or usage.get("completion_tokens_details") or {}
    if isinstance(input_details, Mapping):
        cached = _int_or_none(input_details.get("cached_tokens"))
        if cached:
            normalized["cached_tokens"] = cached
    if isinstance(output_details, Mapping):
        reasoning = _int_or_none(output_details.get("reasoning_tokens"))
        if reasoning:
            normalized["reasoning_tokens"] = reasoning

    total = _int_or_none(usage.get("total_tokens"))
    if total is None and (input_tokens is not None or output_tokens is not None):
        total = (input_tokens or 0) + (output_tokens or 0)
    if total is not None:
        normalized["total_tokens"] = total
    return normalized


def calculate_cost(model: str, usage: Optional[Mapping[str, Any]]) -> float:
    """Estimated USD cost of one call; 0 for unknown models or missing usage."""
    pricing = get_model_pricing(model)
    if pricing is None or not usage:
        return 0.0

    counts = normalize_usage(usage)
    cost = 0.0
    if "input_tokens" in counts:
        cost += counts["input_tokens"] / TOKENS_PER_UNIT * pricing.input
    if counts.get("cached_tokens") and pricing.cached:
        cost += counts["cached_tokens"] / TOKENS_PER_UNIT * pricing.cached
    if "output_tokens" in counts:
        cost += counts["output_tokens"] / TOKENS_PER_UNIT * pricing.output
    if counts.get("reasoning_tokens") and pricing.reasoning:
        cost += counts["reasoning_tokens"] / TOKENS_PER_UNIT * pricing.reasoning
    return cost
