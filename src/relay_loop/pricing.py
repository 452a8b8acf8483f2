"""Token pricing per model, in USD per million tokens.

Prices are approximate. Lookup order: exact model id, then the first
table key contained in the model id (versioned ids embed the family name),
then the default pricing.
"""

from __future__ import annotations

from types import MappingProxyType

_PRICING = MappingProxyType({
    # Anthropic
    "claude-sonnet-4-5-20250929": (3.0, 15.0),
    "claude-sonnet-4": (3.0, 15.0),
    "claude-opus-4": (15.0, 75.0),
    "claude-haiku-3-5": (0.25, 1.25),
    # OpenAI
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.0),
    "o3-mini": (1.10, 4.40),
    "o1": (15.0, 60.0),
    "o3": (10.0, 40.0),
    # OpenRouter
    "anthropic/claude-sonnet-4": (3.0, 15.0),
    "anthropic/claude-opus-4": (15.0, 75.0),
    "anthropic/claude-haiku-3-5": (0.25, 1.25),
    "openai/gpt-4o": (2.50, 10.0),
    "google/gemini-2.5-pro": (1.25, 10.0),
    "google/gemini-2.5-flash": (0.15, 0.60),
    "meta-llama/llama-4-scout": (0.15, 0.40),
    "meta-llama/llama-4-maverick": (0.30, 0.80),
    "deepseek/deepseek-r1": (0.55, 2.19),
    "mistralai/mistral-large": (2.0, 6.0),
})

DEFAULT_PRICING = (3.0, 15.0)


def get_pricing(model: str) -> tuple[float, float]:
    """Return (input, output) USD per million tokens for ``model``."""
    exact = _PRICING.get(model)
    if exact is not None:
        return exact
    for key, pricing in _PRICING.items():
        if key in model:
            return pricing
    return DEFAULT_PRICING


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    input_price, output_price = get_pricing(model)
    return (input_tokens * input_price + output_tokens * output_price) / 1_000_000
