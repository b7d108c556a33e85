"""
Token estimation and truncation helpers for prompt assembly.

Estimates use ~4 characters per token after whitespace collapsing. Good
enough for budgeting; the provider's usage block is the billing truth.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "\n[Content truncated for brevity]"

# Fields of workout_logs.performance_data the coach may see.
ALLOWED_PERFORMANCE_FIELDS = frozenset({
    "sets",
    "reps",
    "weight",
    "weight_lbs",
    "weight_kg",
    "duration_min",
    "duration_sec",
    "distance",
    "distance_mi",
    "distance_miles",
    "distance_km",
    "avg_hr",
    "max_hr",
    "pace",
    "pace_per_mile",
    "pace_per_km",
    "rpe",
    "notes",
    "completed",
    "calories",
    "zone",
})


def estimate_tokens(text: Optional[str]) -> int:
    if not text:
        return 0
    return math.ceil(len(" ".join(text.split())) / CHARS_PER_TOKEN)


def truncate_to_chars(text: str, max_chars: int) -> str:
    """
    Cut `text` to at most `max_chars` characters including the marker,
    preferring a line or sentence boundary in the latter half.
    """
    if len(text) <= max_chars:
        return text
    room = max_chars - len(TRUNCATION_MARKER)
    if room <= 0:
        return ""
    head = text[:room]
    cut = max(head.rfind("\n"), head.rfind("."))
    if cut > room * 0.5:
        head = head[:cut + 1]
    return head + TRUNCATION_MARKER


def sanitize_performance_data(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        return {}
    return {k: v for k, v in data.items() if k.lower() in ALLOWED_PERFORMANCE_FIELDS}


def log_token_usage(component: str, tokens: int, limit: int) -> None:
    level = logging.WARNING if tokens > limit else logging.DEBUG
    logger.log(
        level,
        f"Token usage for {component}: {tokens}/{limit}",
        extra={"extra_fields": {"component": component, "tokens": tokens, "limit": limit}},
    )
