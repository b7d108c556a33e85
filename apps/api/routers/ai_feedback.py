"""
AI Feedback API Router

Thumbs up/down on individual coach responses, scoped to the caller.
"""

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from core.auth import CallerIdentity, get_caller
from core.database import get_db
from core.rate_limit import RATE_LIMITS, enforce_rate_limit
from schemas import FeedbackCreate, FeedbackListResponse, FeedbackResponse, FeedbackSubmitResponse
from services.ai_feedback import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT, list_feedback, submit_feedback

router = APIRouter(prefix="/v1/ai", tags=["AI Feedback"])


def feedback_admission(request: Request, caller: CallerIdentity = Depends(get_caller)) -> CallerIdentity:
    enforce_rate_limit(request, f"user:{caller.user_id}", RATE_LIMITS["feedback"])
    return caller


@router.post("/feedback", response_model=FeedbackSubmitResponse, status_code=status.HTTP_201_CREATED)
def create_feedback(
    payload: FeedbackCreate,
    response: Response,
    caller: CallerIdentity = Depends(feedback_admission),
    db: Session = Depends(get_db),
):
    """Rate one coach message. A repeat rating returns the stored one with 200."""
    row, created = submit_feedback(db, caller.user_id, payload)
    if not created:
        response.status_code = status.HTTP_200_OK
    return FeedbackSubmitResponse(success=True, feedback=FeedbackResponse.model_validate(row))


@router.get("/feedback", response_model=FeedbackListResponse)
def get_feedback(
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    caller: CallerIdentity = Depends(get_caller),
    db: Session = Depends(get_db),
):
    rows = list_feedback(db, caller.user_id, limit)
    return FeedbackListResponse(feedback=[FeedbackResponse.model_validate(r) for r in rows])
