"""
Coach Data Tools

Read-only lookups that give the coach structured, evidence-backed user data.
The coach should only cite metrics that come from these tools (or say the
metric is unavailable).

Every tool is `(db, user_id, **params) -> ToolResult` and resolves to one of
DATA / EMPTY / REFUSED / ERROR. DATA payloads look like:

  {
    "narrative": "<one-paragraph summary>",
    "data": {...},
    "evidence": [{"type": ..., "date": ..., "value": ...}]
  }

Tools are only ever invoked through ToolRegistry, which applies the privacy
gate before any read, gives each call its own session, and turns timeouts and
exceptions into ERROR results.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from statistics import mean
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from core.config import settings
from core.database import SessionLocal
from models import Biometric, ReadinessLog, UserProfile, WorkoutLog
from services.exercise_catalog import (
    ExerciseResolution,
    SEGMENT_TYPE_MAP,
    matching_aliases,
    resolve_exercise,
    unrecognized_message,
)
from services.privacy import PrivacyGate
from services.program_context import PROFILE_MAX_FIELDS, load_program, target_phase_for, find_week
from services.query_analytics import QueryAnalytics
from services.token_utils import sanitize_performance_data
from services.tool_result import ToolResult

logger = logging.getLogger(__name__)

MIN_DAYS = 1
MAX_DAYS = 30
DEFAULT_DAYS = 7
MAX_ROWS = 100


def clamp_days(days: Any, default: int = DEFAULT_DAYS) -> int:
    try:
        value = int(days)
    except (TypeError, ValueError):
        value = default
    return max(MIN_DAYS, min(value, MAX_DAYS))


def _cutoff(days: int) -> date:
    return date.today() - timedelta(days=days)


def _num(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _top_weight(perf: Optional[Dict[str, Any]]) -> Optional[float]:
    """Heaviest weight in a strength performance_data blob."""
    if not isinstance(perf, dict):
        return None
    weights = [_num(perf.get(k)) for k in ("weight", "weight_lbs")]
    for s in perf.get("sets") or []:
        if isinstance(s, dict):
            weights.extend(_num(s.get(k)) for k in ("weight", "weight_lbs"))
    weights = [w for w in weights if w]
    return max(weights) if weights else None


def _resolve(
    tool: str,
    exercise: Optional[str],
    user_id: UUID,
    analytics: Optional[QueryAnalytics],
    days: Optional[int] = None,
) -> ExerciseResolution:
    resolution = resolve_exercise(exercise)
    if analytics is not None:
        analytics.record_tool_call(
            tool,
            exercise_name=exercise,
            normalized_name=resolution.canonical,
            was_corrected=resolution.corrected,
            days=days,
            user_id=str(user_id),
        )
    return resolution


def _record(tool: str, user_id: UUID, analytics: Optional[QueryAnalytics], days: Optional[int] = None) -> None:
    if analytics is not None:
        analytics.record_tool_call(tool, days=days, user_id=str(user_id))


def _exercise_filter(canonical: str):
    # Exact alias match only; a "Front Squat" segment never counts as "Squat".
    return func.lower(func.trim(WorkoutLog.segment_name)).in_(matching_aliases(canonical))


def _sanitize_log(log: WorkoutLog) -> Dict[str, Any]:
    # ids, user_id and timestamps are never exposed to the model
    return {
        "date": log.date.isoformat(),
        "day": log.day_name,
        "segment": log.segment_name,
        "type": log.segment_type,
        "mode": log.tracking_mode,
        "data": sanitize_performance_data(log.performance_data),
        "week": log.week_number,
    }


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

def recent_logs(
    db: Session,
    user_id: UUID,
    days: int = DEFAULT_DAYS,
    exercise: Optional[str] = None,
    analytics: Optional[QueryAnalytics] = None,
) -> ToolResult:
    """Workout logs for the last N days, optionally for one exercise."""
    tool = "recent_logs"
    days = clamp_days(days)

    q = db.query(WorkoutLog).filter(WorkoutLog.user_id == user_id, WorkoutLog.date >= _cutoff(days))
    canonical = None
    if exercise:
        resolution = _resolve(tool, exercise, user_id, analytics, days)
        if not resolution.resolved:
            return ToolResult.error(tool, unrecognized_message(exercise, resolution.suggestions))
        canonical = resolution.canonical
        q = q.filter(_exercise_filter(canonical))
    else:
        _record(tool, user_id, analytics, days)

    logs = q.order_by(WorkoutLog.date.desc()).limit(MAX_ROWS).all()
    if not logs:
        return ToolResult.empty(tool, "No workout logs found for this period.")

    rows = [_sanitize_log(log) for log in logs]
    training_days = len({log.date for log in logs})
    subject = f"{canonical} " if canonical else ""
    narrative = (
        f"{len(logs)} {subject}segments logged across {training_days} training days in the last {days} days. "
        f"Most recent: {logs[0].segment_name} on {logs[0].date.isoformat()}."
    )
    return ToolResult.data(tool, {
        "narrative": narrative,
        "data": {"window_days": days, "exercise": canonical, "count": len(rows), "logs": rows},
        "evidence": [
            {"type": "workout_log", "date": r["date"], "value": f"{r['segment']} ({r['type'] or 'N/A'})"}
            for r in rows[:10]
        ],
    })


def biometrics(
    db: Session,
    user_id: UUID,
    days: int = DEFAULT_DAYS,
    analytics: Optional[QueryAnalytics] = None,
) -> ToolResult:
    """Sleep, HRV, resting HR and body weight entries for the last N days."""
    tool = "biometrics"
    days = clamp_days(days)
    _record(tool, user_id, analytics, days)

    rows = (
        db.query(Biometric)
        .filter(Biometric.user_id == user_id, Biometric.date >= _cutoff(days))
        .order_by(Biometric.date.desc())
        .limit(MAX_ROWS)
        .all()
    )
    if not rows:
        return ToolResult.empty(tool, "No biometric data found for this period.")

    hrv = [b.hrv_ms for b in rows if b.hrv_ms]
    sleep = [b.asleep_minutes for b in rows if b.asleep_minutes]
    rhr = [b.resting_hr for b in rows if b.resting_hr]
    weights = [b.weight_lbs for b in rows if b.weight_lbs]

    summary = {
        "avg_hrv_ms": round(mean(hrv)) if hrv else None,
        "avg_sleep_hours": round(mean(sleep) / 60.0, 1) if sleep else None,
        "avg_resting_hr": round(mean(rhr)) if rhr else None,
        "latest_weight_lbs": weights[0] if weights else None,
    }
    parts = [f"{len(rows)} biometric entries in the last {days} days."]
    if summary["avg_sleep_hours"] is not None:
        parts.append(f"Average sleep {summary['avg_sleep_hours']} hours.")
    if summary["avg_hrv_ms"] is not None:
        parts.append(f"Average HRV {summary['avg_hrv_ms']} ms.")
    if summary["avg_resting_hr"] is not None:
        parts.append(f"Average resting HR {summary['avg_resting_hr']} bpm.")

    entries = [
        {
            "date": b.date.isoformat(),
            "asleep_minutes": b.asleep_minutes,
            "deep_sleep_minutes": b.deep_sleep_minutes,
            "rem_sleep_minutes": b.rem_sleep_minutes,
            "sleep_efficiency": b.sleep_efficiency_score,
            "hrv_ms": b.hrv_ms,
            "resting_hr": b.resting_hr,
            "weight_lbs": b.weight_lbs,
            "respiratory_rate": b.respiratory_rate,
        }
        for b in rows
    ]
    return ToolResult.data(tool, {
        "narrative": " ".join(parts),
        "data": {"window_days": days, "count": len(rows), "summary": summary, "entries": entries},
        "evidence": [
            {"type": "biometric", "date": e["date"], "value": f"sleep {e['asleep_minutes']} min, HRV {e['hrv_ms']} ms"}
            for e in entries[:7]
        ],
    })


def pr_lookup(
    db: Session,
    user_id: UUID,
    exercise: Optional[str] = None,
    analytics: Optional[QueryAnalytics] = None,
) -> ToolResult:
    """
    Profile 1RM plus the heaviest logged weight for one exercise.

    Without an exercise, returns every 1RM recorded on the profile.
    """
    tool = "pr_lookup"
    if not exercise:
        _record(tool, user_id, analytics)
        profile = db.query(UserProfile).filter(UserProfile.id == user_id).first()
        maxes = {
            name: _num(getattr(profile, column, None))
            for name, column in PROFILE_MAX_FIELDS.items()
        } if profile else {}
        maxes = {k: v for k, v in maxes.items() if v}
        if not maxes:
            return ToolResult.empty(tool, "No personal records are recorded on the profile.")
        return ToolResult.data(tool, {
            "narrative": "Profile 1RMs: " + ", ".join(f"{k} {v:g} lbs" for k, v in maxes.items()) + ".",
            "data": {"profile_maxes_lbs": maxes},
            "evidence": [{"type": "profile", "value": f"{k} {v:g} lbs"} for k, v in maxes.items()],
        })

    resolution = _resolve(tool, exercise, user_id, analytics)
    if not resolution.resolved:
        return ToolResult.error(tool, unrecognized_message(exercise, resolution.suggestions))
    canonical = resolution.canonical

    profile_max = None
    column = PROFILE_MAX_FIELDS.get(canonical)
    if column:
        profile = db.query(UserProfile).filter(UserProfile.id == user_id).first()
        profile_max = _num(getattr(profile, column, None)) if profile else None

    best_weight, best_date = None, None
    logs = (
        db.query(WorkoutLog)
        .filter(WorkoutLog.user_id == user_id, _exercise_filter(canonical))
        .order_by(WorkoutLog.date.desc())
        .limit(500)
        .all()
    )
    for log in logs:
        w = _top_weight(log.performance_data)
        if w and (best_weight is None or w > best_weight):
            best_weight, best_date = w, log.date

    if profile_max is None and best_weight is None:
        return ToolResult.empty(tool, f"No recorded max or logged sets found for {canonical}.")

    parts = []
    if profile_max is not None:
        parts.append(f"Profile 1RM for {canonical}: {profile_max:g} lbs.")
    if best_weight is not None:
        parts.append(f"Heaviest logged {canonical}: {best_weight:g} lbs on {best_date.isoformat()}.")
    evidence = []
    if best_weight is not None:
        evidence.append({"type": "workout_log", "date": best_date.isoformat(), "value": f"{canonical} {best_weight:g} lbs"})

    return ToolResult.data(tool, {
        "narrative": " ".join(parts),
        "data": {
            "exercise": canonical,
            "corrected_from": exercise if resolution.corrected else None,
            "profile_max_lbs": profile_max,
            "best_logged_lbs": best_weight,
            "best_logged_date": best_date.isoformat() if best_date else None,
        },
        "evidence": evidence,
    })


def recovery_metrics(
    db: Session,
    user_id: UUID,
    days: int = DEFAULT_DAYS,
    analytics: Optional[QueryAnalytics] = None,
) -> ToolResult:
    """Sleep, HRV and readiness combined into one recovery picture."""
    tool = "recovery_metrics"
    days = clamp_days(days)
    _record(tool, user_id, analytics, days)
    cutoff = _cutoff(days)

    bios = (
        db.query(Biometric)
        .filter(Biometric.user_id == user_id, Biometric.date >= cutoff)
        .order_by(Biometric.date.desc())
        .all()
    )
    readiness = (
        db.query(ReadinessLog)
        .filter(ReadinessLog.user_id == user_id, ReadinessLog.date >= cutoff)
        .order_by(ReadinessLog.date.desc())
        .all()
    )
    if not bios and not readiness:
        return ToolResult.empty(tool, "No recovery data found for this period.")

    sleep = [b.asleep_minutes for b in bios if b.asleep_minutes]
    hrv = [b.hrv_ms for b in bios if b.hrv_ms]
    rhr = [b.resting_hr for b in bios if b.resting_hr]
    scores = [r.readiness_score for r in readiness if r.readiness_score is not None]

    latest_sleep = next((b for b in bios if b.asleep_minutes), None)
    data = {
        "window_days": days,
        "avg_sleep_hours": round(mean(sleep) / 60.0, 1) if sleep else None,
        "last_night_sleep_hours": round(latest_sleep.asleep_minutes / 60.0, 1) if latest_sleep else None,
        "last_night_date": latest_sleep.date.isoformat() if latest_sleep else None,
        "avg_hrv_ms": round(mean(hrv)) if hrv else None,
        "hrv_trend": _direction(list(reversed(hrv))) if len(hrv) >= 2 else None,
        "avg_resting_hr": round(mean(rhr)) if rhr else None,
        "avg_readiness": round(mean(scores)) if scores else None,
        "latest_recovery_status": readiness[0].recovery_status if readiness else None,
    }

    parts = []
    if data["last_night_sleep_hours"] is not None:
        parts.append(f"Most recent sleep: {data['last_night_sleep_hours']} hours ({data['last_night_date']}).")
    if data["avg_sleep_hours"] is not None:
        parts.append(f"{days}-day average sleep {data['avg_sleep_hours']} hours.")
    if data["avg_hrv_ms"] is not None:
        parts.append(f"Average HRV {data['avg_hrv_ms']} ms ({data['hrv_trend'] or 'no trend'}).")
    if data["avg_readiness"] is not None:
        parts.append(f"Average readiness {data['avg_readiness']}/100, latest status {data['latest_recovery_status']}.")

    evidence = [
        {"type": "biometric", "date": b.date.isoformat(), "value": f"sleep {b.asleep_minutes} min, HRV {b.hrv_ms} ms"}
        for b in bios[:5]
    ] + [
        {"type": "readiness", "date": r.date.isoformat(), "value": f"readiness {r.readiness_score}"}
        for r in readiness[:5]
    ]
    return ToolResult.data(tool, {"narrative": " ".join(parts), "data": data, "evidence": evidence})


def _planned_days_per_week(db: Session, user_id: UUID) -> Optional[int]:
    profile = db.query(UserProfile).filter(UserProfile.id == user_id).first()
    program = load_program(db)
    if profile is None or not program:
        return None
    phase_no = profile.current_phase or 1
    week_no = profile.current_week or 1
    target = target_phase_for(phase_no, week_no)
    phases = program.get("phases") or []
    if not phases:
        return None
    phase = next((p for p in phases if p.get("id") == target), phases[0])
    week = find_week(program, phase, week_no)
    if not week:
        return None
    return len(week.get("days") or []) or None


def compliance_report(
    db: Session,
    user_id: UUID,
    days: int = DEFAULT_DAYS,
    analytics: Optional[QueryAnalytics] = None,
) -> ToolResult:
    """Logged training days against the program's planned days."""
    tool = "compliance_report"
    days = clamp_days(days)
    _record(tool, user_id, analytics, days)

    logs = (
        db.query(WorkoutLog)
        .filter(WorkoutLog.user_id == user_id, WorkoutLog.date >= _cutoff(days))
        .all()
    )
    if not logs:
        return ToolResult.empty(tool, "No workouts logged in this period.")

    trained = sorted({log.date for log in logs})
    completed = [
        log for log in logs
        if not isinstance(log.performance_data, dict) or log.performance_data.get("completed", True)
    ]
    planned_per_week = _planned_days_per_week(db, user_id)
    planned = round(planned_per_week * days / 7) if planned_per_week else None
    compliance_pct = round(min(len(trained) / planned, 1.0) * 100) if planned else None

    narrative = f"Trained on {len(trained)} of the last {days} days, {len(completed)} of {len(logs)} segments completed."
    if compliance_pct is not None:
        narrative += f" {compliance_pct}% of the {planned} planned sessions."
    return ToolResult.data(tool, {
        "narrative": narrative,
        "data": {
            "window_days": days,
            "training_days": len(trained),
            "segments_logged": len(logs),
            "segments_completed": len(completed),
            "planned_sessions": planned,
            "compliance_pct": compliance_pct,
        },
        "evidence": [{"type": "training_day", "date": d.isoformat(), "value": "logged"} for d in trained[-10:]],
    })


def _direction(values: Sequence[float], threshold_pct: float = 2.0) -> str:
    first, last = values[0], values[-1]
    if not first:
        return "stable"
    change = (last - first) / first * 100
    if change > threshold_pct:
        return "improving"
    if change < -threshold_pct:
        return "declining"
    return "stable"


def trend_analysis(
    db: Session,
    user_id: UUID,
    exercise: Optional[str] = None,
    days: int = MAX_DAYS,
    analytics: Optional[QueryAnalytics] = None,
) -> ToolResult:
    """Direction and % change of top working weight for one exercise."""
    tool = "trend_analysis"
    days = clamp_days(days, default=MAX_DAYS)
    if not exercise:
        _record(tool, user_id, analytics, days)
        return ToolResult.empty(tool, "No exercise named; ask about a specific lift to see its trend.")

    resolution = _resolve(tool, exercise, user_id, analytics, days)
    if not resolution.resolved:
        return ToolResult.error(tool, unrecognized_message(exercise, resolution.suggestions))
    canonical = resolution.canonical

    logs = (
        db.query(WorkoutLog)
        .filter(WorkoutLog.user_id == user_id, WorkoutLog.date >= _cutoff(days), _exercise_filter(canonical))
        .order_by(WorkoutLog.date.asc())
        .all()
    )
    by_date: Dict[date, float] = {}
    for log in logs:
        w = _top_weight(log.performance_data)
        if w:
            by_date[log.date] = max(w, by_date.get(log.date, 0))

    if len(by_date) < 2:
        return ToolResult.empty(tool, f"Not enough logged {canonical} sessions in the last {days} days to show a trend.")

    points = sorted(by_date.items())
    first, last = points[0][1], points[-1][1]
    change_pct = round((last - first) / first * 100, 1)
    direction = _direction([w for _, w in points])
    return ToolResult.data(tool, {
        "narrative": (
            f"{canonical} is {direction}: {first:g} lbs on {points[0][0].isoformat()} to "
            f"{last:g} lbs on {points[-1][0].isoformat()} ({change_pct:+g}%) over {len(points)} sessions."
        ),
        "data": {
            "exercise": canonical,
            "window_days": days,
            "sessions": len(points),
            "direction": direction,
            "change_pct": change_pct,
            "series": [{"date": d.isoformat(), "top_weight_lbs": w} for d, w in points],
        },
        "evidence": [{"type": "workout_log", "date": d.isoformat(), "value": f"{canonical} {w:g} lbs"} for d, w in points[-5:]],
    })


def cardio_summary(
    db: Session,
    user_id: UUID,
    days: int = DEFAULT_DAYS,
    analytics: Optional[QueryAnalytics] = None,
) -> ToolResult:
    """Cardio volume: sessions, distance, duration and average HR."""
    tool = "cardio_summary"
    days = clamp_days(days)
    _record(tool, user_id, analytics, days)

    logs = (
        db.query(WorkoutLog)
        .filter(
            WorkoutLog.user_id == user_id,
            WorkoutLog.date >= _cutoff(days),
            or_(WorkoutLog.segment_type == "CARDIO", WorkoutLog.tracking_mode == "CARDIO_BASIC"),
        )
        .order_by(WorkoutLog.date.desc())
        .all()
    )
    if not logs:
        return ToolResult.empty(tool, "No cardio sessions logged in this period.")

    distance = duration = 0.0
    hrs: List[float] = []
    by_exercise: Dict[str, int] = {}
    for log in logs:
        perf = log.performance_data if isinstance(log.performance_data, dict) else {}
        distance += _num(perf.get("distance_miles") or perf.get("distance_mi") or perf.get("distance")) or 0.0
        duration += _num(perf.get("duration_min")) or 0.0
        hr = _num(perf.get("avg_hr"))
        if hr:
            hrs.append(hr)
        name = resolve_exercise(log.segment_name).canonical or log.segment_name
        if SEGMENT_TYPE_MAP.get(name, "CARDIO") == "CARDIO":
            by_exercise[name] = by_exercise.get(name, 0) + 1

    data = {
        "window_days": days,
        "sessions": len(logs),
        "total_distance_miles": round(distance, 2),
        "total_duration_min": round(duration, 1),
        "avg_hr": round(mean(hrs)) if hrs else None,
        "by_exercise": by_exercise,
    }
    narrative = (
        f"{len(logs)} cardio sessions in the last {days} days: "
        f"{data['total_distance_miles']} miles, {data['total_duration_min']} minutes."
    )
    if data["avg_hr"]:
        narrative += f" Average HR {data['avg_hr']} bpm."
    return ToolResult.data(tool, {
        "narrative": narrative,
        "data": data,
        "evidence": [{"type": "workout_log", "date": log.date.isoformat(), "value": log.segment_name} for log in logs[:5]],
    })


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_DAYS_SCHEMA = {"type": "integer", "minimum": MIN_DAYS, "maximum": MAX_DAYS, "description": "Days to look back (1-30)."}
_EXERCISE_SCHEMA = {"type": "string", "description": "Exercise name as the user wrote it; typos are tolerated."}


@dataclass(frozen=True)
class ToolSpec:
    name: str
    fn: Callable[..., ToolResult]
    description: str
    properties: Dict[str, Any] = field(default_factory=dict)
    required: tuple = ()

    def schema(self) -> Dict[str, Any]:
        """Anthropic tool definition."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": {"type": "object", "properties": dict(self.properties), "required": list(self.required)},
        }


TOOL_SPECS: Dict[str, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec(
            "recent_logs", recent_logs,
            "Workout logs for the last N days, optionally filtered to one exercise. Use for recent activity and performance.",
            {"days": _DAYS_SCHEMA, "exercise": _EXERCISE_SCHEMA},
        ),
        ToolSpec(
            "biometrics", biometrics,
            "Biometric entries (sleep, HRV, resting HR, body weight) for the last N days.",
            {"days": _DAYS_SCHEMA},
        ),
        ToolSpec(
            "pr_lookup", pr_lookup,
            "Personal record for one exercise: profile 1RM and heaviest logged weight.",
            {"exercise": _EXERCISE_SCHEMA},
        ),
        ToolSpec(
            "recovery_metrics", recovery_metrics,
            "Recovery picture combining sleep, HRV, resting HR and readiness scores for the last N days.",
            {"days": _DAYS_SCHEMA},
        ),
        ToolSpec(
            "compliance_report", compliance_report,
            "Logged training days against planned sessions for the last N days.",
            {"days": _DAYS_SCHEMA},
        ),
        ToolSpec(
            "trend_analysis", trend_analysis,
            "Strength trend for one exercise: direction and % change of top working weight.",
            {"exercise": _EXERCISE_SCHEMA, "days": _DAYS_SCHEMA},
        ),
        ToolSpec(
            "cardio_summary", cardio_summary,
            "Cardio volume for the last N days: sessions, distance, duration, average HR.",
            {"days": _DAYS_SCHEMA},
        ),
    )
}


class ToolRegistry:
    """
    The only way data tools run.

    Per call: privacy check, fresh session, bounded wall-clock time. Nothing
    raised inside a tool escapes; it becomes an ERROR result.
    """

    def __init__(
        self,
        gate: PrivacyGate,
        analytics: Optional[QueryAnalytics] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        timeout_seconds: Optional[float] = None,
    ):
        self.gate = gate
        self.analytics = analytics
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.TOOL_TIMEOUT_SECONDS

    def schemas(self, names: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        selected = names if names is not None else TOOL_SPECS.keys()
        return [TOOL_SPECS[n].schema() for n in selected if n in TOOL_SPECS]

    def execute(self, name: str, user_id: UUID, params: Optional[Dict[str, Any]] = None) -> ToolResult:
        spec = TOOL_SPECS.get(name)
        if spec is None:
            return ToolResult.error(name, f"Unknown tool: {name}")
        if not self.gate.can_read_history():
            return self.gate.refusal(name)

        allowed = {k: v for k, v in (params or {}).items() if k in spec.properties}
        db = self.session_factory()
        try:
            return spec.fn(db, user_id, analytics=self.analytics, **allowed)
        except Exception as e:
            logger.error(
                f"Tool {name} failed: {e}",
                extra={"extra_fields": {"tool": name, "user_id": str(user_id)}},
            )
            try:
                db.rollback()
            except Exception:
                pass
            return ToolResult.error(name, "Lookup failed. The data is temporarily unavailable.")
        finally:
            db.close()

    async def execute_async(self, name: str, user_id: UUID, params: Optional[Dict[str, Any]] = None) -> ToolResult:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.execute, name, user_id, params),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Tool {name} timed out after {self.timeout_seconds}s",
                extra={"extra_fields": {"tool": name, "user_id": str(user_id)}},
            )
            return ToolResult.error(name, "Lookup timed out.")

    async def execute_many(
        self,
        names: Sequence[str],
        user_id: UUID,
        params: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> List[ToolResult]:
        """Run tools concurrently; results come back in the order of `names`."""
        params = params or {}
        return list(await asyncio.gather(*(self.execute_async(n, user_id, params.get(n)) for n in names)))


def tool_result_json(result: ToolResult) -> str:
    return json.dumps(result.to_dict(), default=str)
