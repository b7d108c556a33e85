"""
Privacy Gate

Resolves whether the coach may read a user's history, and hands every data
tool the single capability check it must pass before touching stored data.

Stored preference (user_profiles.data_privacy):
  "Analysis"  -> OPEN        (tools may read history)
  "Private"   -> RESTRICTED  (tools refuse with REFUSAL_MESSAGE)

Anything else, a missing profile, or a failed read resolves to RESTRICTED.
The demo identity is always OPEN so the guided demo works.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import settings
from models import UserProfile
from services.tool_result import ToolResult

logger = logging.getLogger(__name__)

PRIVACY_OPEN_VALUE = "Analysis"
PRIVACY_RESTRICTED_VALUE = "Private"

# Stable, user-facing. Eval suites match on "cannot access" and "Privacy Mode".
REFUSAL_MESSAGE = (
    "I cannot access your training data while Privacy Mode is enabled. "
    "You can change this in Settings if you'd like me to analyze your history."
)


class PrivacyMode(str, Enum):
    OPEN = "open"
    RESTRICTED = "restricted"


def privacy_mode_from_setting(value: Optional[str]) -> PrivacyMode:
    if value is not None and value.strip() == PRIVACY_OPEN_VALUE:
        return PrivacyMode.OPEN
    return PrivacyMode.RESTRICTED


def resolve_privacy(db: Session, user_id: UUID) -> PrivacyMode:
    """Read the caller's stored preference, failing closed."""
    if str(user_id) == settings.DEMO_USER_ID:
        return PrivacyMode.OPEN

    try:
        row = db.query(UserProfile.data_privacy).filter(UserProfile.id == user_id).first()
    except SQLAlchemyError as e:
        logger.warning(f"Privacy preference unreadable for {user_id}: {e}")
        return PrivacyMode.RESTRICTED

    if row is None:
        return PrivacyMode.RESTRICTED
    return privacy_mode_from_setting(row[0])


class PrivacyGate:
    """Capability check consulted by the tool registry before every read."""

    def __init__(self, mode: PrivacyMode):
        self.mode = mode

    def __repr__(self) -> str:
        return f"PrivacyGate({self.mode.value})"

    def can_read_history(self) -> bool:
        return self.mode == PrivacyMode.OPEN

    def refusal(self, tool: str) -> ToolResult:
        return ToolResult.refused(tool, REFUSAL_MESSAGE)
