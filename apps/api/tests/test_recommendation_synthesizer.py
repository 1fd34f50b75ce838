"""
Recommendation Synthesizer Tests

Rule-by-rule checks on hand-built patterns, then end-to-end generation
through the engine (derive patterns, synthesize, persist).
"""

from uuid import uuid4

import pytest

from services.analytics_types import (
    HeartRateSummary,
    Pattern,
    PatternType,
    RecommendationType,
    RecoveryPatternData,
    Share,
    SleepSummary,
    StressSummary,
    TimingData,
    TypeShare,
    WorkoutPreferenceData,
)
from services.pattern_extractors import extract_timing
from services.pattern_store import InMemoryPatternStore, InMemoryRecommendationStore
from services.recommendation_payloads import PeerSuggestion, PeerWorkout
from services.recommendation_synthesizer import RecommendationSynthesizer
from services.wearable_readiness import ReadinessSignal


def _preference(user_id, confidence=20.0):
    return Pattern(
        id=uuid4(),
        user_id=user_id,
        pattern_type=PatternType.WORKOUT_PREFERENCE,
        data=WorkoutPreferenceData(
            preferred_types=[
                TypeShare(workout_type="cardio", percentage=75.0),
                TypeShare(workout_type="strength", percentage=25.0),
            ],
            sample_size=4,
        ),
        confidence=confidence,
    )


def _timing(user_id, frequency=2.5, morning=100.0, top_day=50.0, confidence=20.0):
    return Pattern(
        id=uuid4(),
        user_id=user_id,
        pattern_type=PatternType.TIMING,
        data=TimingData(
            preferred_times=[Share(label="morning", percentage=morning)],
            preferred_days=[
                Share(label="monday", percentage=top_day),
                Share(label="wednesday", percentage=25.0),
                Share(label="friday", percentage=25.0),
            ],
            weekly_frequency=frequency,
            average_gap_days=round(7 / frequency, 2),
            sample_size=4,
        ),
        confidence=confidence,
    )


def _recovery(user_id, average_sleep=360.0, confidence=15.0):
    return Pattern(
        id=uuid4(),
        user_id=user_id,
        pattern_type=PatternType.RECOVERY_PATTERN,
        data=RecoveryPatternData(
            sleep_patterns=SleepSummary(average_duration=average_sleep, nights=3),
            heart_rate_patterns=HeartRateSummary(),
            stress_patterns=StressSummary(),
            daily_recovery=[],
            optimal_recovery_time=24.0,
            recovery_recommendations=[],
        ),
        confidence=confidence,
    )


@pytest.fixture
def synthesizer():
    return RecommendationSynthesizer(InMemoryPatternStore(), InMemoryRecommendationStore())


def _actions(drafts):
    return [d.data.action for d in drafts]


# ===================================================================
# RULES
# ===================================================================

class TestPreferenceRule:

    def test_top_type_workout(self, synthesizer, user_id):
        preference = _preference(user_id)

        drafts = synthesizer.synthesize(user_id, {PatternType.WORKOUT_PREFERENCE: preference})

        assert len(drafts) == 1
        rec = drafts[0]
        assert rec.recommendation_type == RecommendationType.WORKOUT
        assert rec.data.workout_type == "cardio"
        assert rec.data.intensity.value == "moderate"
        assert rec.confidence == 20.0
        assert "75%" in rec.reasoning
        assert rec.patterns_used == [preference.id]

    def test_no_patterns_no_recommendations(self, synthesizer, user_id):
        assert synthesizer.synthesize(user_id, {}) == []


class TestTimingRules:

    def test_window_and_low_frequency(self, synthesizer, user_id):
        timing = _timing(user_id, frequency=2.5)

        drafts = synthesizer.synthesize(user_id, {PatternType.TIMING: timing})

        assert _actions(drafts) == ["schedule_workout", "increase_frequency"]
        window, frequency = drafts
        assert window.recommendation_type == RecommendationType.HABIT
        assert window.data.time_range == "7:00 - 11:00"
        assert window.confidence == 20.0
        assert frequency.data.target_frequency == 3
        assert frequency.confidence == 16.0

    def test_no_window_at_or_below_share_threshold(self, synthesizer, user_id):
        drafts = synthesizer.synthesize(user_id, {PatternType.TIMING: _timing(user_id, morning=40.0)})

        assert "schedule_workout" not in _actions(drafts)

    def test_overtraining_warning(self, synthesizer, user_id):
        drafts = synthesizer.synthesize(user_id, {PatternType.TIMING: _timing(user_id, frequency=6.0)})

        warning = [d for d in drafts if d.data.action == "optimize_recovery"][0]
        assert warning.recommendation_type == RecommendationType.RECOVERY
        assert warning.confidence == 14.0
        assert len(warning.data.recovery_tips) == 4

    def test_weekly_plan_over_top_days(self, synthesizer, user_id):
        drafts = synthesizer.synthesize(user_id, {PatternType.TIMING: _timing(user_id, frequency=3.0)})

        plan = [d for d in drafts if d.data.action == "weekly_plan"][0]
        assert plan.recommendation_type == RecommendationType.PLAN
        assert plan.data.preferred_day.value == "monday"
        schedule = {entry.day.value: entry.workout for entry in plan.data.suggested_schedule}
        assert len(schedule) == 7
        assert [day for day, train in schedule.items() if train] == ["monday", "wednesday", "friday"]
        assert plan.confidence == 20.0


    def test_plan_fills_up_with_untrained_days(self, synthesizer, user_id, make_workouts):
        # Mon, Wed, Fri: one workout every 2 days -> 3.5 per week -> 4 training days
        extraction = extract_timing(make_workouts(user_id, [("cardio", 0), ("cardio", 2), ("cardio", 4)]))
        timing = Pattern(
            id=uuid4(), user_id=user_id, pattern_type=PatternType.TIMING,
            data=extraction.data, confidence=extraction.confidence,
        )

        drafts = synthesizer.synthesize(user_id, {PatternType.TIMING: timing})

        plan = [d for d in drafts if d.data.action == "weekly_plan"][0]
        assert plan.data.weekly_frequency == 3.5
        training = [entry for entry in plan.data.suggested_schedule if entry.workout]
        assert [entry.day.value for entry in training] == ["monday", "tuesday", "wednesday", "friday"]
        reasons = {entry.day.value: entry.reason for entry in plan.data.suggested_schedule}
        assert reasons["tuesday"] == "added to reach 4 training days a week"
        assert reasons["monday"].startswith("33%")
        assert reasons["sunday"] == "rest day"
        assert "4 training days" in plan.description
    def test_no_plan_when_no_dominant_day(self, synthesizer, user_id):
        drafts = synthesizer.synthesize(user_id, {PatternType.TIMING: _timing(user_id, frequency=4.0, top_day=30.0)})

        assert "weekly_plan" not in _actions(drafts)


class TestCombinedRule:

    def test_top_type_at_top_time(self, synthesizer, user_id):
        preference = _preference(user_id)
        timing = _timing(user_id, frequency=3.0)

        drafts = synthesizer.synthesize(
            user_id, {PatternType.WORKOUT_PREFERENCE: preference, PatternType.TIMING: timing}
        )

        combined = [d for d in drafts if d.data.action == "workout_suggestion" and d.data.preferred_time][0]
        assert combined.title == "Morning cardio session"
        assert combined.data.duration_minutes == 30
        assert combined.confidence == 18.0
        assert combined.patterns_used == [preference.id, timing.id]


class TestReadinessRule:

    def test_not_ready_with_short_sleep(self, synthesizer, user_id):
        recovery = _recovery(user_id)
        signal = ReadinessSignal(ready=False, recovery_score=45.0, recommendations=["Rest"])

        drafts = synthesizer.synthesize(user_id, {PatternType.RECOVERY_PATTERN: recovery}, readiness=signal)

        assert _actions(drafts) == ["readiness_check", "improve_sleep"]
        assert drafts[0].recommendation_type == RecommendationType.RECOVERY
        assert drafts[0].confidence == 15.0
        assert drafts[1].confidence == 13.5
        assert "6.0 hours" in drafts[1].reasoning

    def test_ready_without_recovery_pattern(self, synthesizer, user_id):
        signal = ReadinessSignal(ready=True, recovery_score=82.0)

        drafts = synthesizer.synthesize(user_id, {}, readiness=signal)

        assert len(drafts) == 1
        assert drafts[0].recommendation_type == RecommendationType.WORKOUT
        assert drafts[0].confidence == 50.0
        assert drafts[0].patterns_used == []

    def test_no_sleep_habit_with_enough_sleep(self, synthesizer, user_id):
        signal = ReadinessSignal(ready=True, recovery_score=82.0)

        drafts = synthesizer.synthesize(
            user_id, {PatternType.RECOVERY_PATTERN: _recovery(user_id, average_sleep=470.0)}, readiness=signal
        )

        assert _actions(drafts) == ["readiness_check"]

    def test_sleep_from_readiness_signal_without_recovery_pattern(self, synthesizer, user_id):
        signal = ReadinessSignal(ready=True, recovery_score=80.0, average_sleep_minutes=330.0)

        drafts = synthesizer.synthesize(user_id, {}, readiness=signal)

        assert _actions(drafts) == ["readiness_check", "improve_sleep"]
        sleep = drafts[1]
        assert sleep.data.current_duration == 330.0
        assert sleep.confidence == 45.0
        assert sleep.patterns_used == []
        assert "5.5 hours" in sleep.reasoning

    def test_signal_sleep_takes_precedence_over_recovery_pattern(self, synthesizer, user_id):
        signal = ReadinessSignal(ready=True, recovery_score=80.0, average_sleep_minutes=450.0)

        drafts = synthesizer.synthesize(
            user_id, {PatternType.RECOVERY_PATTERN: _recovery(user_id, average_sleep=360.0)}, readiness=signal
        )

        assert _actions(drafts) == ["readiness_check"]


class TestPeerRule:

    def test_peer_confidence_capped(self, synthesizer, user_id):
        suggestions = [
            PeerSuggestion(PeerWorkout(workout_type="strength", workout_name="Deadlift", popularity=3), peer_count=2),
            PeerSuggestion(PeerWorkout(workout_type="cardio", workout_name="Tempo Run", popularity=1), peer_count=4),
        ]

        drafts = synthesizer.synthesize(user_id, {}, peer_suggestions=suggestions)

        assert [d.confidence for d in drafts] == [90.0, 25.0]
        assert all(d.source == "similar_users" for d in drafts)


class TestConfidenceBounds:

    def test_every_rule_stays_within_bounds(self, synthesizer, user_id):
        patterns = {
            PatternType.WORKOUT_PREFERENCE: _preference(user_id, confidence=100.0),
            PatternType.TIMING: _timing(user_id, frequency=3.0, confidence=100.0),
            PatternType.RECOVERY_PATTERN: _recovery(user_id, confidence=100.0),
        }
        suggestions = [
            PeerSuggestion(PeerWorkout(workout_type="hiit", workout_name="Intervals", popularity=50), peer_count=1)
        ]

        drafts = synthesizer.synthesize(
            user_id,
            patterns,
            readiness=ReadinessSignal(ready=True, recovery_score=95.0),
            peer_suggestions=suggestions,
        )

        assert len(drafts) >= 6
        assert all(0 <= d.confidence <= 100 for d in drafts)
        assert all(d.reasoning for d in drafts)


# ===================================================================
# GENERATION
# ===================================================================

class TestGenerate:

    def test_derives_patterns_then_persists(self, engine, user_id, make_workouts):
        for workout in make_workouts(user_id, [("cardio", 0), ("cardio", 2), ("strength", 4), ("cardio", 7)]):
            engine.history.add_workout(workout)

        stored = engine.synthesizer.generate(user_id)

        assert stored
        assert all(rec.id is not None for rec in stored)
        assert len(engine.recommendations.get_recommendations(user_id)) == len(stored)
        pattern_ids = {p.id for p in engine.patterns.get_patterns(user_id)}
        assert all(set(rec.patterns_used) <= pattern_ids for rec in stored)

    def test_nothing_to_say_stores_nothing(self, engine, user_id):
        assert engine.synthesizer.generate(user_id) == []
        assert engine.recommendations.get_recommendations(user_id) == []

    def test_engine_survives_readiness_failure(self, engine, user_id, make_workouts, monkeypatch):
        for workout in make_workouts(user_id, [("cardio", 0), ("cardio", 2), ("cardio", 4)]):
            engine.history.add_workout(workout)

        def broken(_user_id):
            raise RuntimeError("wearable sync down")

        monkeypatch.setattr(engine.readiness, "is_ready_to_train", broken)

        stored = engine.generate_recommendations(user_id)

        assert stored
        assert "readiness_check" not in _actions(stored)
