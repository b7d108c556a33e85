"""
Program snapshot for the coach prompt.

Locates today's routine in the program library (phases -> weeks -> days ->
segments) for the caller's current phase/week and renders it compactly.

Phase 5 is a re-entry block: outside its testing weeks it repeats the
Phase 1 routine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import WorkoutLibrary
from services.exercise_catalog import resolve_exercise

logger = logging.getLogger(__name__)

REENTRY_PHASE = 5
REENTRY_TARGET_PHASE = 1
TESTING_WEEKS = (37, 44, 51)

# Canonical exercise -> user_profiles column holding the 1RM.
PROFILE_MAX_FIELDS = {
    "Squat": "squat_max",
    "Front Squat": "front_squat_max",
    "Deadlift": "deadlift_max",
    "Bench Press": "bench_max",
    "Overhead Press": "overhead_press_max",
    "Clean": "clean_max",
}


def load_program(db: Session) -> Optional[Dict[str, Any]]:
    try:
        row = db.query(WorkoutLibrary).order_by(WorkoutLibrary.id).first()
    except SQLAlchemyError as e:
        logger.error(f"Failed to load workout library: {e}")
        return None
    if row is None or not isinstance(row.program_data, dict):
        return None
    return row.program_data


def target_phase_for(current_phase: int, current_week: int) -> int:
    if current_phase == REENTRY_PHASE and current_week not in TESTING_WEEKS:
        return REENTRY_TARGET_PHASE
    return current_phase


def find_week(program: Dict[str, Any], phase: Dict[str, Any], current_week: int) -> Optional[Dict[str, Any]]:
    weeks = phase.get("weeks") or []
    if not weeks:
        return None
    for w in weeks:
        if current_week in (w.get("week_numbers") or []):
            return w
    # Convert absolute program week to the phase's local week index.
    phases = program.get("phases") or []
    idx = next((i for i, p in enumerate(phases) if p is phase), 0)
    prior_weeks = sum(len(p.get("weeks") or []) for p in phases[:idx])
    return weeks[max(current_week - 1 - prior_weeks, 0) % len(weeks)]


def working_weight(segment_name: str, percent_1rm: float, maxes: Dict[str, float]) -> Optional[int]:
    """Working weight in lbs rounded to 5, or None when the max is unknown."""
    resolution = resolve_exercise(segment_name)
    if not resolution.resolved:
        return None
    one_rm = maxes.get(resolution.canonical)
    if not one_rm:
        return None
    return int(round(one_rm * percent_1rm / 5.0) * 5)


def format_segments(segments: List[Dict[str, Any]], maxes: Optional[Dict[str, float]] = None) -> str:
    if not segments:
        return "No exercises scheduled."

    lines = []
    for i, s in enumerate(segments, 1):
        text = f"{i}. {s.get('name', 'Segment')} ({s.get('type', 'N/A')})"
        target = s.get("target") or {}
        parts = []
        if target.get("sets") and target.get("reps"):
            parts.append(f"{target['sets']}x{target['reps']}")
        elif target.get("duration_min"):
            parts.append(f"{target['duration_min']} min")
        if target.get("zone"):
            parts.append(f"Zone {target['zone']}")
        if target.get("rpe"):
            parts.append(f"RPE {target['rpe']}")
        if target.get("percent_1rm"):
            parts.append(f"@ {round(target['percent_1rm'] * 100)}% 1RM")
            if maxes:
                weight = working_weight(s.get("name", ""), target["percent_1rm"], maxes)
                if weight:
                    parts.append(f"-> {weight} lbs")
        if parts:
            text += f" [{', '.join(parts)}]"
        if s.get("details"):
            text += f" - Details: {s['details']}"
        if s.get("notes"):
            text += f" - Note: {s['notes']}"
        lines.append(text)
    return "\n".join(lines)


@dataclass
class ProgramSnapshot:
    current_phase: int
    current_week: int
    target_phase: int
    today: str
    phase_name: Optional[str] = None
    schedule: List[str] = field(default_factory=list)
    day_title: Optional[str] = None
    routine: Optional[str] = None

    @property
    def is_reentry(self) -> bool:
        return self.target_phase != self.current_phase

    def render(self) -> str:
        lines = []
        if self.routine:
            lines.append(
                f"### CORE ROUTINE - {self.day_title or 'Today'} "
                f"({self.today}, Week {self.current_week}, Phase {self.current_phase})"
            )
            lines.append(self.routine)
        else:
            lines.append(f"### STATUS (Week {self.current_week}, Phase {self.current_phase})")
            lines.append("Rest or recovery focused day.")
        if self.is_reentry:
            lines.append(
                f"Phase {self.current_phase} re-entry: week {self.current_week} follows the "
                f"Phase {self.target_phase} routine."
            )
        if self.phase_name:
            lines.append(f"Phase: {self.phase_name}")
        if self.schedule:
            lines.append(f"Schedule: {', '.join(self.schedule)}")
        return "\n".join(lines)


def build_program_snapshot(
    program: Optional[Dict[str, Any]],
    current_phase: int,
    current_week: int,
    today: Optional[str] = None,
    maxes: Optional[Dict[str, float]] = None,
) -> ProgramSnapshot:
    today = (today or date.today().strftime("%A")).upper()
    target = target_phase_for(current_phase, current_week)
    snapshot = ProgramSnapshot(current_phase, current_week, target, today)

    phases = (program or {}).get("phases") or []
    if not phases:
        return snapshot

    phase = next((p for p in phases if p.get("id") == target), phases[0])
    snapshot.phase_name = phase.get("name")

    week = find_week(program, phase, current_week)
    if not week:
        return snapshot
    days = week.get("days") or []
    snapshot.schedule = [d.get("day", "") for d in days if d.get("day")]

    day = next((d for d in days if (d.get("day") or "").upper() == today), None)
    if day:
        snapshot.day_title = day.get("title")
        snapshot.routine = format_segments(day.get("segments") or [], maxes)
    return snapshot


def profile_maxes(profile: Any) -> Dict[str, float]:
    if profile is None:
        return {}
    out = {}
    for exercise, column in PROFILE_MAX_FIELDS.items():
        value = getattr(profile, column, None)
        if value:
            out[exercise] = float(value)
    return out
