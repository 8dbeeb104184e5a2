"""Cost calculation helpers for model usage."""

from __future__ import annotations

from typing import Mapping

# USD per 1K tokens.
PRICING: Mapping[str, Mapping[str, float]] = {
    "gpt-4": {"input": 0.03, "output": 0.06},
    "gpt-4-turbo": {"input": 0.01, "output": 0.03},
    "gpt-4o": {"input": 0.005, "output": 0.015},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-3.5-turbo": {"input": 0.0015, "output": 0.002},
}

DEFAULT_PRICING_MODEL = "gpt-3.5-turbo"


def pricing_for(model: str) -> Mapping[str, float]:
    return PRICING.get(model, PRICING[DEFAULT_PRICING_MODEL])


def estimate_cost(tokens: int, model: str) -> float:
    """Return estimated USD cost of ``tokens`` billed at the model's input rate."""

    return (max(tokens, 0) * pricing_for(model)["input"]) / 1000

