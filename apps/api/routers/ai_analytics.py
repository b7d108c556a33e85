"""
AI Analytics API Router

Admin-only view of coach traffic: satisfaction, tokens, cost, latency,
intent and tool mix, plus the in-process exercise query snapshot.
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from core.auth import CallerIdentity, require_admin
from core.database import get_db
from schemas import AnalyticsReport
from services.ai_analytics import DEFAULT_DAYS, MAX_DAYS, MIN_DAYS, build_report

router = APIRouter(prefix="/v1/ai", tags=["AI Analytics"])


@router.get("/analytics", response_model=AnalyticsReport)
def get_ai_analytics(
    request: Request,
    days: int = Query(DEFAULT_DAYS, ge=MIN_DAYS, le=MAX_DAYS),
    admin: CallerIdentity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return build_report(db, days=days, analytics=request.app.state.query_analytics)
