"""
Coach data tool tests.

Tools run against the SQLite test database through the registry, the same
path the chat stream uses.
"""

import json
import time
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from services.coach_tools import (
    MAX_DAYS,
    MIN_DAYS,
    TOOL_SPECS,
    ToolRegistry,
    clamp_days,
    tool_result_json,
)
from services.privacy import PrivacyGate, PrivacyMode
from services.query_analytics import QueryAnalytics
from services.tool_result import ToolOutcome
from coach_test_helpers import (
    add_biometric,
    add_log,
    add_program,
    add_readiness,
    make_profile,
)


@pytest.fixture
def registry():
    return ToolRegistry(PrivacyGate(PrivacyMode.OPEN), analytics=QueryAnalytics())


def test_clamp_days():
    assert clamp_days(0) == MIN_DAYS
    assert clamp_days(365) == MAX_DAYS
    assert clamp_days("14") == 14
    assert clamp_days(None) == 7
    assert clamp_days("soon") == 7


def test_every_tool_has_a_schema(registry):
    names = [s["name"] for s in registry.schemas()]
    assert names == list(TOOL_SPECS)
    for schema in registry.schemas():
        assert schema["input_schema"]["type"] == "object"
        assert schema["description"]


class TestRecentLogs:
    def test_returns_logs_in_window(self, db_session, registry):
        profile = make_profile(db_session)
        add_log(db_session, profile.id, 1, "Back Squat", weight=225)
        add_log(db_session, profile.id, 3, "Bench Press", weight=155)
        add_log(db_session, profile.id, 20, "Deadlift", weight=315)

        result = registry.execute("recent_logs", profile.id, {"days": 7})

        assert result.outcome == ToolOutcome.DATA
        data = result.payload["data"]
        assert data["count"] == 2
        assert data["logs"][0]["segment"] == "Back Squat"
        assert "2 segments" in result.payload["narrative"]

    def test_filters_by_resolved_exercise(self, db_session, registry):
        profile = make_profile(db_session)
        add_log(db_session, profile.id, 1, "Back Squat", weight=225)
        add_log(db_session, profile.id, 2, "Bench Press", weight=155)

        result = registry.execute("recent_logs", profile.id, {"days": 7, "exercise": "squirt"})

        assert result.outcome == ToolOutcome.DATA
        assert [log["segment"] for log in result.payload["data"]["logs"]] == ["Back Squat"]
        assert registry.analytics.typo_patterns()[0]["original"] == "squirt"

    def test_sanitizes_logs(self, db_session, registry):
        profile = make_profile(db_session)
        add_log(db_session, profile.id, 1, "Back Squat", weight=225, rpe=8, device_id="garmin-123")

        result = registry.execute("recent_logs", profile.id, {})
        log = result.payload["data"]["logs"][0]

        assert "device_id" not in log["data"]
        assert log["data"]["rpe"] == 8
        assert "user_id" not in log and "id" not in log

    def test_empty(self, db_session, registry):
        profile = make_profile(db_session)
        result = registry.execute("recent_logs", profile.id, {"days": 7})
        assert result.outcome == ToolOutcome.EMPTY

    def test_unrecognized_exercise_is_error(self, db_session, registry):
        profile = make_profile(db_session)
        result = registry.execute("recent_logs", profile.id, {"exercise": "zzzzqqqq"})
        assert result.outcome == ToolOutcome.ERROR
        assert "couldn't recognize" in result.message

    def test_only_reads_callers_rows(self, db_session, registry):
        me = make_profile(db_session)
        other = make_profile(db_session)
        add_log(db_session, other.id, 1, "Back Squat", weight=405)

        assert registry.execute("recent_logs", me.id, {}).outcome == ToolOutcome.EMPTY


class TestPrLookup:
    def test_profile_max_and_best_logged(self, db_session, registry):
        profile = make_profile(db_session, squat_max=300)
        add_log(db_session, profile.id, 2, "Back Squat", weight=245)
        add_log(db_session, profile.id, 9, "Squat", weight=265)

        result = registry.execute("pr_lookup", profile.id, {"exercise": "squat"})

        data = result.payload["data"]
        assert result.outcome == ToolOutcome.DATA
        assert data["exercise"] == "Squat"
        assert data["profile_max_lbs"] == 300
        assert data["best_logged_lbs"] == 265

    def test_corrected_name_is_reported(self, db_session, registry):
        profile = make_profile(db_session)
        result = registry.execute("pr_lookup", profile.id, {"exercise": "squirt"})
        assert result.payload["data"]["corrected_from"] == "squirt"

    def test_without_exercise_lists_profile_maxes(self, db_session, registry):
        profile = make_profile(db_session, squat_max=300, bench_max=200, deadlift_max=None)
        result = registry.execute("pr_lookup", profile.id, {})
        assert result.payload["data"]["profile_maxes_lbs"] == {"Squat": 300.0, "Bench Press": 200.0}

    def test_nothing_recorded_is_empty(self, db_session, registry):
        profile = make_profile(db_session, squat_max=None, bench_max=None, deadlift_max=None)
        assert registry.execute("pr_lookup", profile.id, {"exercise": "row"}).outcome == ToolOutcome.EMPTY

    def test_front_squat_is_not_a_squat_pr(self, db_session, registry):
        profile = make_profile(db_session, squat_max=None)
        add_log(db_session, profile.id, 2, "Front Squat", weight=315)

        result = registry.execute("pr_lookup", profile.id, {"exercise": "squat"})

        assert result.outcome == ToolOutcome.EMPTY
        assert "315" not in (result.message or "")

    def test_incline_bench_is_not_a_bench_pr(self, db_session, registry):
        profile = make_profile(db_session, bench_max=None)
        add_log(db_session, profile.id, 2, "Incline Bench Press", weight=185)
        add_log(db_session, profile.id, 3, "Bench Press", weight=165)

        data = registry.execute("pr_lookup", profile.id, {"exercise": "bench"}).payload["data"]

        assert data["exercise"] == "Bench Press"
        assert data["best_logged_lbs"] == 165

    def test_similar_lifts_keep_their_own_records(self, db_session, registry):
        profile = make_profile(db_session, deadlift_max=None)
        add_log(db_session, profile.id, 2, "Romanian Deadlift", weight=275)
        add_log(db_session, profile.id, 4, "Deadlift", weight=405)

        assert registry.execute("pr_lookup", profile.id, {"exercise": "deadlift"}).payload["data"]["best_logged_lbs"] == 405
        assert registry.execute("pr_lookup", profile.id, {"exercise": "rdl"}).payload["data"]["best_logged_lbs"] == 275


class TestCorrectionEvents:
    def test_canonical_name_records_no_correction(self, db_session):
        analytics = QueryAnalytics()
        registry = ToolRegistry(PrivacyGate(PrivacyMode.OPEN), analytics=analytics)
        profile = make_profile(db_session)

        result = registry.execute("pr_lookup", profile.id, {"exercise": "Bench Press"})

        assert result.payload["data"]["exercise"] == "Bench Press"
        assert result.payload["data"]["corrected_from"] is None
        assert analytics.typo_patterns() == []
        assert analytics.summary()["correctionRate"] == 0.0

    def test_near_miss_records_exactly_one_correction(self, db_session):
        analytics = QueryAnalytics()
        registry = ToolRegistry(PrivacyGate(PrivacyMode.OPEN), analytics=analytics)
        profile = make_profile(db_session)

        registry.execute("pr_lookup", profile.id, {"exercise": "Bench Press"})
        registry.execute("pr_lookup", profile.id, {"exercise": "bench"})

        patterns = analytics.typo_patterns()
        assert sum(p["count"] for p in patterns) == 1
        assert patterns[0] == {"original": "bench", "corrected": "Bench Press", "count": 1}
        assert analytics.summary()["correctionRate"] == 0.5


class TestRecoveryAndBiometrics:
    def test_recovery_metrics(self, db_session, registry):
        profile = make_profile(db_session)
        add_biometric(db_session, profile.id, 1, asleep_minutes=450, hrv_ms=70)
        add_biometric(db_session, profile.id, 3, asleep_minutes=390, hrv_ms=60)
        add_readiness(db_session, profile.id, 1, score=82, status="optimal")

        result = registry.execute("recovery_metrics", profile.id, {"days": 7})

        data = result.payload["data"]
        assert result.outcome == ToolOutcome.DATA
        assert data["last_night_sleep_hours"] == 7.5
        assert data["avg_sleep_hours"] == 7.0
        assert data["hrv_trend"] == "improving"
        assert data["avg_readiness"] == 82
        assert data["latest_recovery_status"] == "optimal"

    def test_biometrics_summary(self, db_session, registry):
        profile = make_profile(db_session)
        add_biometric(db_session, profile.id, 1, asleep_minutes=480, hrv_ms=66, resting_hr=50)
        add_biometric(db_session, profile.id, 2, asleep_minutes=420, hrv_ms=64, resting_hr=54)

        result = registry.execute("biometrics", profile.id, {"days": 7})

        summary = result.payload["data"]["summary"]
        assert summary["avg_sleep_hours"] == 7.5
        assert summary["avg_hrv_ms"] == 65
        assert summary["avg_resting_hr"] == 52
        assert "source" not in result.payload["data"]["entries"][0]

    def test_no_recovery_data_is_empty(self, db_session, registry):
        profile = make_profile(db_session)
        assert registry.execute("recovery_metrics", profile.id, {}).outcome == ToolOutcome.EMPTY


class TestComplianceTrendCardio:
    def test_compliance_against_program(self, db_session, registry):
        profile = make_profile(db_session, current_phase=1, current_week=2)
        add_program(db_session)
        add_log(db_session, profile.id, 1, "Back Squat", weight=225)
        add_log(db_session, profile.id, 3, "Bench Press", weight=155)

        result = registry.execute("compliance_report", profile.id, {"days": 7})

        data = result.payload["data"]
        assert data["training_days"] == 2
        assert data["planned_sessions"] == 3
        assert data["compliance_pct"] == 67

    def test_trend_improving(self, db_session, registry):
        profile = make_profile(db_session)
        add_log(db_session, profile.id, 20, "Back Squat", weight=200)
        add_log(db_session, profile.id, 10, "Back Squat", weight=215)
        add_log(db_session, profile.id, 2, "Back Squat", weight=225)

        result = registry.execute("trend_analysis", profile.id, {"exercise": "back squat"})

        data = result.payload["data"]
        assert data["direction"] == "improving"
        assert data["change_pct"] == 12.5
        assert data["sessions"] == 3

    def test_trend_needs_two_sessions(self, db_session, registry):
        profile = make_profile(db_session)
        add_log(db_session, profile.id, 2, "Back Squat", weight=225)
        result = registry.execute("trend_analysis", profile.id, {"exercise": "squat"})
        assert result.outcome == ToolOutcome.EMPTY

    def test_trend_ignores_similar_lift(self, db_session, registry):
        profile = make_profile(db_session)
        add_log(db_session, profile.id, 10, "Incline Bench Press", weight=135)
        add_log(db_session, profile.id, 6, "Bench Press", weight=185)
        add_log(db_session, profile.id, 2, "Bench Press", weight=195)

        data = registry.execute("trend_analysis", profile.id, {"exercise": "bench"}).payload["data"]

        assert data["sessions"] == 2
        assert [p["top_weight_lbs"] for p in data["series"]] == [185, 195]

    def test_recent_logs_exercise_filter_is_exact(self, db_session, registry):
        profile = make_profile(db_session)
        add_log(db_session, profile.id, 1, "Front Squat", weight=185)
        add_log(db_session, profile.id, 2, "Back Squat", weight=225)

        result = registry.execute("recent_logs", profile.id, {"exercise": "squat"})

        assert [log["segment"] for log in result.payload["data"]["logs"]] == ["Back Squat"]

    def test_cardio_summary(self, db_session, registry):
        profile = make_profile(db_session)
        add_log(db_session, profile.id, 1, "Zone 2 Run", segment_type="CARDIO", distance_miles=4.0, duration_min=40, avg_hr=140)
        add_log(db_session, profile.id, 4, "Row Erg", segment_type="CARDIO", duration_min=20, avg_hr=150)
        add_log(db_session, profile.id, 2, "Back Squat", weight=225)

        data = registry.execute("cardio_summary", profile.id, {}).payload["data"]

        assert data["sessions"] == 2
        assert data["total_distance_miles"] == 4.0
        assert data["total_duration_min"] == 60.0
        assert data["avg_hr"] == 145


class TestRegistry:
    def test_unknown_tool_is_error(self, registry):
        result = registry.execute("delete_everything", uuid4())
        assert result.outcome == ToolOutcome.ERROR

    def test_unknown_params_are_dropped(self, db_session, registry):
        profile = make_profile(db_session)
        result = registry.execute("biometrics", profile.id, {"days": 7, "user_id": "someone-else"})
        assert result.outcome == ToolOutcome.EMPTY

    def test_exception_becomes_error_result(self):
        session = MagicMock()
        session.query.side_effect = RuntimeError("database exploded")
        registry = ToolRegistry(PrivacyGate(PrivacyMode.OPEN), session_factory=lambda: session)

        result = registry.execute("biometrics", uuid4(), {})

        assert result.outcome == ToolOutcome.ERROR
        assert "exploded" not in result.message
        session.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_timeout_becomes_error_result(self):
        registry = ToolRegistry(PrivacyGate(PrivacyMode.OPEN), timeout_seconds=0.05)

        def slow_execute(name, user_id, params=None):
            time.sleep(0.3)

        registry.execute = slow_execute
        result = await registry.execute_async("biometrics", uuid4())

        assert result.outcome == ToolOutcome.ERROR
        assert result.message == "Lookup timed out."

    @pytest.mark.asyncio
    async def test_execute_many_keeps_order(self, db_session, registry):
        profile = make_profile(db_session)
        add_biometric(db_session, profile.id, 1)

        results = await registry.execute_many(
            ["recent_logs", "biometrics", "recovery_metrics"], profile.id, {"biometrics": {"days": 3}}
        )

        assert [r.tool for r in results] == ["recent_logs", "biometrics", "recovery_metrics"]
        assert [r.outcome for r in results] == [ToolOutcome.EMPTY, ToolOutcome.DATA, ToolOutcome.DATA]

    def test_tool_result_json(self, db_session, registry):
        profile = make_profile(db_session)
        payload = json.loads(tool_result_json(registry.execute("recent_logs", profile.id, {})))
        assert payload["ok"] is False
        assert payload["outcome"] == "empty"
        assert payload["tool"] == "recent_logs"
