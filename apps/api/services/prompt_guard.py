"""
Inbound message guard for the coach chat.

Runs after schema validation and before any tool or model work: rejects
user turns that try to override the system prompt and strips markup and
control characters from what is forwarded to the model.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence
from uuid import UUID

from core.exceptions import InvalidContentError
from schemas import ChatMessage

logger = logging.getLogger(__name__)

INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(previous|all|your|the|my)\s+(instructions|rules|guidelines|directives|prompts?)", re.I),
    re.compile(r"disregard\s+(your|all|the|previous)\s+(training|instructions|rules)", re.I),
    re.compile(r"forget\s+(everything|all\s+(your\s+)?instructions|your\s+(instructions|training)|previous\s+instructions)", re.I),
    re.compile(r"you\s+are\s+now\s+(a|in|unlocked|jailbroken)\b", re.I),
    re.compile(r"pretend\s+(you\s+are|to\s+be)\s+(a|an)\b", re.I),
    re.compile(r"\[system\]", re.I),
    re.compile(r"###\s*(system|admin|override)\s*###", re.I),
    re.compile(r"<\s*/?\s*system\s*>", re.I),
    re.compile(r"system:\s*(override|admin|sudo)", re.I),
    re.compile(r"developer\s*mode", re.I),
    re.compile(r"jailbreak", re.I),
    # Uppercase only: "dan" is a common name.
    re.compile(r"\bDAN(\s+mode)?\b"),
    re.compile(r"reveal\s+(your|the)\s+(system|original|initial)\s+(prompt|instructions)", re.I),
]

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def detect_prompt_injection(content: Optional[str]) -> bool:
    if not content:
        return False
    return any(p.search(content) for p in INJECTION_PATTERNS)


def sanitize_content(content: str) -> str:
    return _CONTROL_RE.sub("", _TAG_RE.sub("", content)).strip()


def guard_messages(messages: Sequence[ChatMessage], user_id: Optional[UUID] = None) -> List[ChatMessage]:
    """
    Check every user turn, then return sanitized copies of all turns.

    Raises:
        InvalidContentError: a user turn matches an injection pattern
    """
    if any(m.role == "user" and detect_prompt_injection(m.content) for m in messages):
        logger.warning(
            "Potential prompt injection rejected",
            extra={"extra_fields": {"user_id": str(user_id) if user_id else None}},
        )
        raise InvalidContentError()
    return [ChatMessage(role=m.role, content=sanitize_content(m.content)) for m in messages]
