"""LLM pricing (USD per 1M tokens).

Update this table when the provider publishes new rates. Unknown models are
priced at the default row so cost is never silently zero.
"""

from __future__ import annotations

PRICING_USD_PER_1M = {
    "claude-sonnet-4-5": {"input": 3.00, "output": 15.00},
    "claude-haiku-4-5": {"input": 1.00, "output": 5.00},
    "claude-opus-4-5": {"input": 5.00, "output": 25.00},
    # Legacy models (in case they appear in historical data)
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "default": {"input": 3.00, "output": 15.00},
}


def rates_for(model: str) -> dict:
    if model in PRICING_USD_PER_1M:
        return PRICING_USD_PER_1M[model]
    # Dated snapshots, e.g. "claude-sonnet-4-5-20250929"
    for name in sorted(PRICING_USD_PER_1M, key=len, reverse=True):
        if name != "default" and model.startswith(name):
            return PRICING_USD_PER_1M[name]
    return PRICING_USD_PER_1M["default"]


def estimate_cost_usd(model: str, input_tokens: int, output_tokens: int) -> float:
    """Estimated cost in USD, rounded to 6 decimal places."""
    rates = rates_for(model or "")
    cost = (
        (max(0, input_tokens) / 1_000_000) * rates["input"]
        + (max(0, output_tokens) / 1_000_000) * rates["output"]
    )
    return round(cost, 6)
