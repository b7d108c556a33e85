"""
Thumbs up/down feedback on coach responses.

At most one row per (user, message id): a repeat submission is a no-op that
returns the stored row.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import AiFeedback
from schemas import FEEDBACK_TEXT_MAX_LENGTH, FeedbackCreate

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 200


def _clip(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return text[:FEEDBACK_TEXT_MAX_LENGTH]


def _existing(db: Session, user_id: UUID, message_id: str) -> Optional[AiFeedback]:
    return (
        db.query(AiFeedback)
        .filter(AiFeedback.user_id == user_id, AiFeedback.message_id == message_id)
        .first()
    )


def submit_feedback(db: Session, user_id: UUID, payload: FeedbackCreate) -> Tuple[AiFeedback, bool]:
    """
    Persist feedback for one coach message.

    Returns:
        (row, created). `created` is False when the caller already rated
        this message; the stored row is returned unchanged.
    """
    existing = _existing(db, user_id, payload.message_id)
    if existing is not None:
        return existing, False

    row = AiFeedback(
        user_id=user_id,
        message_id=payload.message_id,
        rating=payload.rating,
        user_message=_clip(payload.user_message),
        ai_response=_clip(payload.ai_response),
        intent=payload.intent,
        tools_used=list(payload.tools_used),
        latency_ms=payload.latency_ms,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent submit for the same message won the race.
        db.rollback()
        existing = _existing(db, user_id, payload.message_id)
        if existing is None:
            raise
        return existing, False

    db.refresh(row)
    logger.info(
        "AI feedback recorded",
        extra={"extra_fields": {
            "user_id": str(user_id),
            "message_id": payload.message_id,
            "rating": payload.rating,
            "intent": payload.intent,
        }},
    )
    return row, True


def list_feedback(db: Session, user_id: UUID, limit: int = DEFAULT_LIST_LIMIT) -> List[AiFeedback]:
    limit = max(1, min(int(limit), MAX_LIST_LIMIT))
    return (
        db.query(AiFeedback)
        .filter(AiFeedback.user_id == user_id)
        .order_by(AiFeedback.created_at.desc())
        .limit(limit)
        .all()
    )
