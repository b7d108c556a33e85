"""
Query Analytics

Rolling, in-process record of data-tool calls: which tools run, which
exercises users ask about, and how often the typed name needed correcting.

Approximate by construction. It lives in one process, keeps the last
`max_events` calls, and is gone on restart. The ai_logs / ai_feedback tables
are the durable record.

One instance is owned by the application (app.state.query_analytics); tests
build their own.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 1000


@dataclass(frozen=True)
class ToolCallEvent:
    tool_name: str
    exercise_name: Optional[str] = None
    normalized_name: Optional[str] = None
    was_corrected: bool = False
    days: Optional[int] = None
    user_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d


class QueryAnalytics:
    def __init__(self, max_events: int = DEFAULT_MAX_EVENTS):
        self.max_events = max_events
        self._events: Deque[ToolCallEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._events)

    def record_tool_call(
        self,
        tool_name: str,
        exercise_name: Optional[str] = None,
        normalized_name: Optional[str] = None,
        was_corrected: bool = False,
        days: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> ToolCallEvent:
        event = ToolCallEvent(
            tool_name=tool_name,
            exercise_name=exercise_name,
            normalized_name=normalized_name,
            was_corrected=was_corrected,
            days=days,
            user_id=user_id,
        )
        with self._lock:
            self._events.append(event)
        logger.debug(
            "Query analytics event",
            extra={"extra_fields": {
                "tool": tool_name,
                "exercise": normalized_name or exercise_name,
                "corrected": was_corrected,
            }},
        )
        return event

    def _snapshot(self) -> List[ToolCallEvent]:
        with self._lock:
            return list(self._events)

    def summary(self, top_n: int = 10, recent_n: int = 10) -> Dict[str, Any]:
        events = self._snapshot()
        tools = Counter(e.tool_name for e in events)
        exercises = Counter(
            e.normalized_name or e.exercise_name
            for e in events
            if e.normalized_name or e.exercise_name
        )
        lookups = [e for e in events if e.exercise_name]
        corrections = sum(1 for e in lookups if e.was_corrected)

        return {
            "totalQueries": len(events),
            "toolBreakdown": dict(tools),
            "topExercises": [{"name": n, "count": c} for n, c in exercises.most_common(top_n)],
            "correctionRate": round(corrections / len(lookups), 4) if lookups else 0.0,
            "recentQueries": [e.to_dict() for e in events[-recent_n:]],
        }

    def typo_patterns(self) -> List[Dict[str, Any]]:
        """Most common raw -> resolved corrections, most frequent first."""
        patterns: Dict[str, Dict[str, Any]] = {}
        for e in self._snapshot():
            if not (e.was_corrected and e.exercise_name and e.normalized_name):
                continue
            key = e.exercise_name.strip().lower()
            entry = patterns.setdefault(key, {"original": key, "corrected": e.normalized_name, "count": 0})
            entry["count"] += 1
        return sorted(patterns.values(), key=lambda p: p["count"], reverse=True)

    def reset(self) -> None:
        with self._lock:
            self._events.clear()
