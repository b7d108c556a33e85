"""
Admin analytics over coach traffic.

Combines persisted feedback and request logs for a trailing window with the
process-local query analytics snapshot.
"""

from __future__ import annotations

import math
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from models import AiFeedback, AiLog
from schemas import (
    AnalyticsPeriod,
    AnalyticsReport,
    EngineeringMetrics,
    FeedbackSummary,
    IntentBreakdown,
    NegativeFeedbackItem,
    QueryAnalyticsSnapshot,
    ToolCount,
    UserUsage,
)
from services.ai_observability import STATUS_CANCELLED, STATUS_COMPLETED
from services.query_analytics import QueryAnalytics

MIN_DAYS = 1
MAX_DAYS = 90
DEFAULT_DAYS = 7
RECENT_NEGATIVE_LIMIT = 5
TOP_USERS_LIMIT = 10
TYPO_PATTERN_LIMIT = 10


def clamp_report_days(days: Optional[int]) -> int:
    if days is None:
        return DEFAULT_DAYS
    return max(MIN_DAYS, min(int(days), MAX_DAYS))


def percentile(values: Sequence[int], pct: float) -> Optional[int]:
    """Nearest-rank percentile; None for an empty sample."""
    if not values:
        return None
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100.0 * len(ordered)))
    return ordered[rank - 1]


def _as_aware(ts: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes.
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def summarize_feedback(rows: Sequence[AiFeedback]) -> FeedbackSummary:
    positive = sum(1 for r in rows if r.rating == "positive")
    negative = sum(1 for r in rows if r.rating == "negative")
    total = len(rows)
    recent = sorted(
        (r for r in rows if r.rating == "negative"),
        key=lambda r: _as_aware(r.created_at),
        reverse=True,
    )[:RECENT_NEGATIVE_LIMIT]
    return FeedbackSummary(
        total=total,
        positive=positive,
        negative=negative,
        satisfactionRate=round(positive / total * 100) if total else None,
        recentNegative=[
            NegativeFeedbackItem(
                intent=r.intent,
                tools=list(r.tools_used or []),
                latency=r.latency_ms,
                date=_as_aware(r.created_at),
                user_message=r.user_message,
                ai_response=r.ai_response,
            )
            for r in recent
        ],
    )


def summarize_intents(rows: Sequence[AiFeedback]) -> List[IntentBreakdown]:
    counts: Dict[str, Counter] = defaultdict(Counter)
    for r in rows:
        counts[r.intent or "unknown"][r.rating] += 1
    out = []
    for intent, c in counts.items():
        total = c["positive"] + c["negative"]
        out.append(IntentBreakdown(
            intent=intent,
            positive=c["positive"],
            negative=c["negative"],
            total=total,
            successRate=round(c["positive"] / total * 100) if total else 0,
        ))
    return sorted(out, key=lambda i: (-i.total, i.intent))


def summarize_tools(rows: Sequence[AiLog]) -> List[ToolCount]:
    counts: Counter = Counter()
    for r in rows:
        counts.update(set(r.tools_used or []))
    return [ToolCount(tool=t, count=n) for t, n in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))]


def summarize_engineering(rows: Sequence[AiLog]) -> EngineeringMetrics:
    latencies = [r.latency_ms for r in rows if r.latency_ms is not None]
    statuses = Counter(r.status for r in rows)
    requests = len(rows)
    failed = requests - statuses.get(STATUS_COMPLETED, 0) - statuses.get(STATUS_CANCELLED, 0)
    return EngineeringMetrics(
        requests=requests,
        inputTokens=sum(r.input_tokens or 0 for r in rows),
        outputTokens=sum(r.output_tokens or 0 for r in rows),
        totalCostUsd=round(sum(float(r.estimated_cost_usd or 0) for r in rows), 6),
        avgLatencyMs=round(sum(latencies) / len(latencies)) if latencies else None,
        p95LatencyMs=percentile(latencies, 95),
        errorRate=round(failed / requests, 4) if requests else 0.0,
        statusBreakdown=dict(statuses),
    )


def rank_users(rows: Sequence[AiLog], limit: int = TOP_USERS_LIMIT) -> List[UserUsage]:
    per_user: Dict = defaultdict(lambda: {"requests": 0, "tokens": 0, "cost": 0.0})
    for r in rows:
        u = per_user[r.user_id]
        u["requests"] += 1
        u["tokens"] += (r.input_tokens or 0) + (r.output_tokens or 0)
        u["cost"] += float(r.estimated_cost_usd or 0)
    ranked = sorted(per_user.items(), key=lambda kv: (-kv[1]["tokens"], -kv[1]["requests"], str(kv[0])))
    return [
        UserUsage(userId=user_id, requests=u["requests"], totalTokens=u["tokens"], costUsd=round(u["cost"], 6))
        for user_id, u in ranked[:limit]
    ]


def build_report(
    db: Session,
    days: Optional[int] = None,
    analytics: Optional[QueryAnalytics] = None,
    now: Optional[datetime] = None,
) -> AnalyticsReport:
    days = clamp_report_days(days)
    end = now or datetime.now(timezone.utc)
    start = end - timedelta(days=days)

    feedback = db.query(AiFeedback).filter(AiFeedback.created_at >= start).all()
    logs = db.query(AiLog).filter(AiLog.created_at >= start).all()

    summary = analytics.summary() if analytics is not None else {}
    typos = analytics.typo_patterns() if analytics is not None else []

    return AnalyticsReport(
        period=AnalyticsPeriod(days=days, start=start, end=end),
        feedback=summarize_feedback(feedback),
        engineering=summarize_engineering(logs),
        topUsers=rank_users(logs),
        intents=summarize_intents(feedback),
        tools=summarize_tools(logs),
        queryAnalytics=QueryAnalyticsSnapshot(
            totalQueries=summary.get("totalQueries", 0),
            topExercises=summary.get("topExercises", []),
            correctionRate=summary.get("correctionRate", 0.0),
            typoPatterns=typos[:TYPO_PATTERN_LIMIT],
        ),
    )
