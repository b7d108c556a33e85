"""
Dynamic context and system prompt tests.
"""

from uuid import uuid4

import pytest

from services.coach_tools import ToolRegistry
from services.context_builder import (
    INTENT_TOOLS,
    CoachProfile,
    ContextEntry,
    DynamicContext,
    _fit,
    build_dynamic_context,
    build_system_prompt,
    load_coach_profile,
    recently_discussed,
    render_entry,
    tool_params,
)
from services.intent_classifier import Intent
from services.privacy import REFUSAL_MESSAGE, PrivacyGate, PrivacyMode
from services.program_context import build_program_snapshot
from services.tool_result import ToolOutcome
from coach_test_helpers import SAMPLE_PROGRAM, add_biometric, add_log, make_profile

OPEN = PrivacyGate(PrivacyMode.OPEN)
RESTRICTED = PrivacyGate(PrivacyMode.RESTRICTED)
PROFILE = CoachProfile(current_phase=1, current_week=2, maxes={"Squat": 300.0, "Bench Press": 200.0})


class TestToolParams:
    def test_default_window(self):
        assert tool_params(Intent.PLAN_QUESTION, "What is my workout?") == {
            "recent_logs": {"days": 7},
            "compliance_report": {"days": 7},
        }

    def test_explicit_days(self):
        params = tool_params(Intent.INJURY_REPORT, "my knee has hurt for 14 days")
        assert params["recovery_metrics"] == {"days": 14}

    def test_last_night(self):
        assert tool_params(Intent.PRIVACY_SENSITIVE, "How did I sleep last night?")["biometrics"] == {"days": 2}

    def test_history_gets_exercise_and_long_trend_window(self):
        params = tool_params(Intent.HISTORY_QUESTION, "What's my squirt max?")
        assert params["pr_lookup"] == {"exercise": "squirt"}
        assert params["trend_analysis"] == {"days": 30, "exercise": "squirt"}
        assert params["recent_logs"] == {"days": 7}

    def test_general_has_no_tools(self):
        assert tool_params(Intent.GENERAL, "hello") == {}


def test_recently_discussed_uses_last_two_assistant_turns():
    messages = [
        {"role": "assistant", "content": "Deadlift looked great."},
        {"role": "user", "content": "What about bench?"},
        {"role": "assistant", "content": "Bench press is steady."},
        {"role": "assistant", "content": "Front squat is next."},
    ]
    assert recently_discussed(messages) == ["Bench Press", "Front Squat"]


class TestRenderEntry:
    def test_data_entry(self):
        entry = ContextEntry("recent_logs", ToolOutcome.DATA, {"narrative": "2 segments logged.", "data": {"count": 2}})
        text = render_entry(entry)
        assert text.startswith("### RECENT WORKOUT LOGS [data]")
        assert "2 segments logged." in text
        assert '{"count":2}' in text

    def test_refused_entry_shows_message(self):
        entry = ContextEntry("biometrics", ToolOutcome.REFUSED, message=REFUSAL_MESSAGE)
        assert render_entry(entry) == f"### BIOMETRICS [refused]\n{REFUSAL_MESSAGE}"


class TestBuildDynamicContext:
    @pytest.mark.asyncio
    async def test_runs_intent_tools_and_orders_sections(self, db_session):
        profile = make_profile(db_session)
        add_log(db_session, profile.id, 1, "Back Squat", weight=225)

        context = await build_dynamic_context(
            Intent.INJURY_REPORT, profile.id, OPEN, ToolRegistry(OPEN), PROFILE,
            program=SAMPLE_PROGRAM, latest_message="my knee hurts", today="MONDAY",
        )

        assert context.tools_used == ["recovery_metrics", "recent_logs"]
        assert context.outcome_of("recent_logs") == ToolOutcome.DATA
        assert context.outcome_of("recovery_metrics") == ToolOutcome.EMPTY
        assert not context.refused
        text = context.text
        assert text.index("CORE ROUTINE") < text.index("POTENTIAL INJURY") < text.index("RECOVERY METRICS")
        assert text.index("RECOVERY METRICS") < text.index("RECENT WORKOUT LOGS")

    @pytest.mark.asyncio
    async def test_restricted_gate_refuses_and_hides_working_weights(self, db_session):
        profile = make_profile(db_session, privacy="Private")
        add_biometric(db_session, profile.id, 1)

        context = await build_dynamic_context(
            Intent.PRIVACY_SENSITIVE, profile.id, RESTRICTED, ToolRegistry(RESTRICTED), PROFILE,
            program=SAMPLE_PROGRAM, latest_message="how did I sleep", today="MONDAY",
        )

        assert context.refused
        assert context.outcome_of("recovery_metrics") == ToolOutcome.REFUSED
        assert context.outcome_of("biometrics") == ToolOutcome.REFUSED
        assert REFUSAL_MESSAGE in context.text
        assert "225 lbs" not in context.text
        assert "@ 75% 1RM" in context.text

    @pytest.mark.asyncio
    async def test_open_gate_includes_working_weights(self):
        context = await build_dynamic_context(
            Intent.GENERAL, uuid4(), OPEN, ToolRegistry(OPEN), PROFILE, program=SAMPLE_PROGRAM, today="MONDAY",
        )
        assert "-> 225 lbs" in context.text
        assert context.entries == []

    @pytest.mark.asyncio
    async def test_budget_cuts_lowest_priority_sections_first(self, db_session):
        profile = make_profile(db_session)
        for i in range(1, 7):
            add_log(db_session, profile.id, i, "Back Squat", weight=200 + i * 5, notes="x" * 200)

        context = await build_dynamic_context(
            Intent.HISTORY_QUESTION, profile.id, OPEN, ToolRegistry(OPEN), PROFILE,
            program=SAMPLE_PROGRAM, latest_message="squat progress", today="MONDAY", budget=1200,
        )

        assert len(context.text) <= 1200
        assert "pr_lookup" in context.truncated_tools
        assert "RECENT WORKOUT LOGS" in context.text

    def test_short_section_after_a_cut_is_also_cut(self):
        sections = [(None, "s" * 50), ("recent_logs", "r" * 200), ("pr_lookup", "p" * 10)]

        text, cut = _fit(sections, budget=100)

        assert text == "s" * 50
        assert cut == ["recent_logs", "pr_lookup"]

    def test_everything_fits_within_budget(self):
        text, cut = _fit([("recent_logs", "a" * 10), ("pr_lookup", "b" * 10)], budget=100)
        assert text == "a" * 10 + "\n\n" + "b" * 10
        assert cut == []

    @pytest.mark.asyncio
    async def test_each_intent_runs_its_tool_set(self, db_session):
        profile = make_profile(db_session)
        for intent, tools in INTENT_TOOLS.items():
            context = await build_dynamic_context(intent, profile.id, OPEN, ToolRegistry(OPEN), PROFILE)
            assert sorted(context.tools_used) == sorted(tools)


class TestProgramSnapshot:
    def test_phase_five_follows_phase_one_routine(self):
        snapshot = build_program_snapshot(SAMPLE_PROGRAM, 5, 2, "Monday", {"Squat": 300.0})
        text = snapshot.render()
        assert snapshot.target_phase == 1
        assert "Lower Strength" in text
        assert "Phase 5" in text
        assert "re-entry" in text

    def test_phase_five_testing_week_uses_its_own_routine(self):
        snapshot = build_program_snapshot(SAMPLE_PROGRAM, 5, 44, "MONDAY")
        assert snapshot.day_title == "Testing Day"
        assert not snapshot.is_reentry

    def test_rest_day(self):
        text = build_program_snapshot(SAMPLE_PROGRAM, 1, 2, "SUNDAY").render()
        assert "Rest or recovery focused day." in text

    def test_no_program(self):
        snapshot = build_program_snapshot(None, 1, 1, "MONDAY")
        assert snapshot.routine is None


class TestSystemPrompt:
    def _context(self, intent=Intent.PLAN_QUESTION):
        return DynamicContext(intent=intent, entries=[], text="### STATUS (Week 2, Phase 1)")

    def test_contains_directive_position_and_intent(self):
        prompt = build_system_prompt(PROFILE, self._context(), OPEN)
        assert "PRIME DIRECTIVE" in prompt
        assert "- User Phase: 1" in prompt
        assert "- User Week: 2" in prompt
        assert "- Detected Intent: plan_question" in prompt
        assert "ECHO-P1" in prompt
        assert "MODE: ANALYTIC" in prompt

    def test_coach_persona(self):
        profile = CoachProfile(ai_name="Coach K", ai_personality="Coach")
        prompt = build_system_prompt(profile, self._context(), OPEN)
        assert "MODE: COACH" in prompt
        assert '"Coach K"' in prompt

    def test_restricted_access_line(self):
        prompt = build_system_prompt(PROFILE, self._context(), RESTRICTED)
        assert "Privacy Mode is enabled" in prompt


def test_load_coach_profile(db_session):
    profile = make_profile(db_session, ai_name="Atlas", ai_personality="Coach", current_phase=3, current_week=9)
    loaded = load_coach_profile(db_session, profile.id)
    assert loaded.ai_name == "Atlas"
    assert loaded.current_phase == 3
    assert loaded.maxes["Squat"] == 300.0


def test_load_coach_profile_defaults_without_profile(db_session):
    loaded = load_coach_profile(db_session, uuid4())
    assert loaded.ai_name == "ECHO-P1"
    assert loaded.current_phase == 1
