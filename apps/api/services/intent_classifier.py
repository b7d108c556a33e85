"""
Intent Classifier

Maps the latest user message (plus prior turns) to exactly one Intent.
Lexical only: keyword/phrase matching with a fixed priority order, no model
call. Identical input always yields the identical intent.

Priority:
  1. injury_report      pain, injury, illness, modification requests
  2. privacy_sensitive  sleep, HRV, heart rate, body weight and other biometrics
  3. history_question / plan_question, by keyword score (history wins ties)
  4. general

A short (< 20 chars) or continuation-phrased message that lands on general
inherits the most recent non-general intent from earlier user turns.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Iterable, List, Pattern, Sequence, Tuple

# Bump when the intent set or the tool mapping changes meaning.
INTENT_SET_VERSION = 1


class Intent(str, Enum):
    PLAN_QUESTION = "plan_question"
    HISTORY_QUESTION = "history_question"
    INJURY_REPORT = "injury_report"
    PRIVACY_SENSITIVE = "privacy_sensitive"
    GENERAL = "general"


INJURY_TERMS = (
    "hurt",
    "pain",
    "painful",
    "ache",
    "aching",
    "injury",
    "injured",
    "sore",
    "swollen",
    "swelling",
    "tweak",
    "tweaked",
    "snap",
    "popped",
    "pinch",
    "pinched",
    "strain",
    "sprain",
    "numb",
    "tingling",
    "dizzy",
    "faint",
    "sick",
    "ill",
    "fever",
    "substitute",
    "alternative",
    "instead of",
    "regression",
)

PRIVACY_SENSITIVE_TERMS = (
    "sleep",
    "slept",
    "hrv",
    "heart rate variability",
    "resting heart rate",
    "heart rate",
    "rhr",
    "biometric",
    "body weight",
    "bodyweight",
    "my weight",
    "weigh",
    "body fat",
    "readiness",
    "recovery score",
    "respiratory rate",
    "blood pressure",
)

HISTORY_TERMS = (
    "progress",
    "trend",
    "history",
    "log",
    "logged",
    "record",
    "personal record",
    "personal best",
    "stats",
    "data",
    "pr",
    "max",
    "1rm",
    "faster",
    "stronger",
    "last time",
    "last week",
    "compare",
    "analysis",
    "analyze",
    "improve",
    "improved",
    "compliance",
    "consistent",
    "did i",
    "have i",
)

PLAN_TERMS = (
    "today",
    "tomorrow",
    "schedule",
    "plan",
    "program",
    "phase",
    "routine",
    "what do i do",
    "warmup",
    "warm up",
    "workout",
    "superset",
    "reps",
    "sets",
    "rest day",
    "week",
    "session",
)

CONTINUATION_TERMS = (
    "more",
    "next",
    "why",
    "else",
    "option",
    "another",
    "explain",
    "tell me",
    "how come",
    "what about",
)

FOLLOW_UP_MAX_LENGTH = 20


def _compile(terms: Iterable[str]) -> Tuple[Pattern[str], ...]:
    # Whole words/phrases only, with an optional plural suffix.
    return tuple(
        re.compile(r"(?<![a-z0-9])" + re.escape(t) + r"(?:s|es)?(?![a-z0-9])")
        for t in terms
    )


_INJURY = _compile(INJURY_TERMS)
_PRIVACY = _compile(PRIVACY_SENSITIVE_TERMS)
_HISTORY = _compile(HISTORY_TERMS)
_PLAN = _compile(PLAN_TERMS)
_CONTINUATION = _compile(CONTINUATION_TERMS)


def _normalize(text: str) -> str:
    return " ".join((text or "").lower().split())


def _score(text: str, patterns: Sequence[Pattern[str]]) -> int:
    return sum(1 for p in patterns if p.search(text))


def classify_text(text: str) -> Intent:
    """Classify a single message with no conversational context."""
    t = _normalize(text)
    if not t:
        return Intent.GENERAL

    if _score(t, _INJURY):
        return Intent.INJURY_REPORT
    if _score(t, _PRIVACY):
        return Intent.PRIVACY_SENSITIVE

    history = _score(t, _HISTORY)
    plan = _score(t, _PLAN)
    if history and history >= plan:
        return Intent.HISTORY_QUESTION
    if plan:
        return Intent.PLAN_QUESTION
    return Intent.GENERAL


def _is_follow_up(text: str) -> bool:
    t = _normalize(text)
    return len(t) < FOLLOW_UP_MAX_LENGTH or bool(_score(t, _CONTINUATION))


def _role_and_content(turn: Any) -> Tuple[str, str]:
    if isinstance(turn, dict):
        return str(turn.get("role", "")), str(turn.get("content") or "")
    return str(getattr(turn, "role", "")), str(getattr(turn, "content", "") or "")


def prior_user_texts(history: Iterable[Any]) -> List[str]:
    texts = []
    for turn in history or ():
        role, content = _role_and_content(turn)
        if role == "user":
            texts.append(content)
    return texts


def detect_intent(latest_user_message: str, history: Sequence[Any] = ()) -> Intent:
    """
    Intent for the latest user message.

    `history` holds the earlier turns (dicts or objects with role/content),
    not including the latest message.
    """
    current = classify_text(latest_user_message)
    if current != Intent.GENERAL or not _is_follow_up(latest_user_message):
        return current

    for previous in reversed(prior_user_texts(history)):
        carried = classify_text(previous)
        if carried != Intent.GENERAL:
            return carried
    return current
