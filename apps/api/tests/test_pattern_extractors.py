"""
Pattern Extractor Tests

Pure functions over history slices: no storage involved.

Organization:
    1. Workout preference
    2. Timing / frequency
    3. Intensity response
    4. Progression / stagnation
    5. Mood correlation
    6. Recovery
"""

from datetime import date, timedelta, timezone

import pytest

from core.exceptions import InsufficientDataError
from services.analytics_types import (
    AnalyticsConstants,
    IntensityLevel,
    PatternType,
    ProgressionStatus,
    WearableSummary,
)
from services.pattern_extractors import (
    classify_progression,
    daily_recovery_for,
    extract_intensity_response,
    extract_mood_correlation,
    extract_progression,
    extract_recovery_pattern,
    extract_stagnation,
    extract_timing,
    extract_workout_preference,
    optimal_recovery_hours,
    weekly_frequency_from,
)


# ===================================================================
# 1. WORKOUT PREFERENCE
# ===================================================================

class TestWorkoutPreference:

    def test_cardio_three_quarters_strength_one_quarter(self, user_id, make_workouts):
        workouts = make_workouts(user_id, [("cardio", 0), ("cardio", 1), ("strength", 2), ("cardio", 3)])

        result = extract_workout_preference(workouts)

        assert result.pattern_type == PatternType.WORKOUT_PREFERENCE
        shares = [(t.workout_type, t.percentage) for t in result.data.preferred_types]
        assert shares == [("cardio", 75.0), ("strength", 25.0)]
        assert result.data.top.workout_type == "cardio"
        assert result.data.sample_size == 4
        assert result.confidence == 20

    def test_below_minimum_is_insufficient(self, user_id, make_workouts):
        workouts = make_workouts(user_id, [("cardio", 0), ("strength", 1)])

        with pytest.raises(InsufficientDataError) as exc:
            extract_workout_preference(workouts)

        assert exc.value.required == 3
        assert exc.value.found == 2

    def test_only_most_recent_window_counts(self, user_id, make_workouts):
        old = make_workouts(user_id, [("strength", day) for day in range(10)])
        recent = make_workouts(user_id, [("cardio", day) for day in range(10, 30)])

        result = extract_workout_preference(old + recent)

        assert result.data.sample_size == 20
        assert [t.workout_type for t in result.data.preferred_types] == ["cardio"]

    def test_confidence_capped(self, user_id, make_workouts):
        workouts = make_workouts(user_id, [("cardio", day) for day in range(20)])

        result = extract_workout_preference(workouts)

        assert result.confidence == 90

    def test_custom_minimum_from_constants(self, user_id, make_workouts):
        workouts = make_workouts(user_id, [("cardio", 0), ("strength", 1)])

        result = extract_workout_preference(workouts, AnalyticsConstants(min_samples=2))

        assert result.data.sample_size == 2


# ===================================================================
# 2. TIMING / FREQUENCY
# ===================================================================

class TestTiming:

    def test_gaps_of_two_two_three_days_is_three_per_week(self, user_id, make_workouts):
        workouts = make_workouts(user_id, [("cardio", 0), ("cardio", 2), ("cardio", 4), ("cardio", 7)])

        result = extract_timing(workouts)

        assert result.data.average_gap_days == pytest.approx(2.33, abs=0.01)
        assert result.data.weekly_frequency == pytest.approx(3.0, abs=0.05)

    def test_day_part_and_weekday_shares(self, user_id, make_workouts):
        # base day is a Monday; offsets 0, 2, 4, 7 -> Mon, Wed, Fri, Mon
        workouts = make_workouts(user_id, [("cardio", 0), ("cardio", 2), ("cardio", 4), ("cardio", 7)])

        result = extract_timing(workouts)

        assert result.data.top_time.label == "morning"
        assert result.data.top_time.percentage == 100.0
        assert result.data.top_day.label == "monday"
        assert result.data.top_day.percentage == 50.0
        assert result.confidence == 20

    def test_evening_classification(self, user_id, make_workouts):
        workouts = make_workouts(user_id, [("cardio", 0), ("cardio", 1), ("cardio", 2)], hour=19)

        result = extract_timing(workouts)

        assert result.data.top_time.label == "evening"

    def test_local_timezone_shifts_day_part_and_weekday(self, user_id, make_workouts):
        # 02:00 UTC on Mon, Wed, Fri is 21:00 the evening before at UTC-5
        workouts = make_workouts(user_id, [("cardio", 0), ("cardio", 2), ("cardio", 4)], hour=2)

        utc = extract_timing(workouts)
        local = extract_timing(workouts, tz=timezone(timedelta(hours=-5)))

        assert utc.data.top_time.label == "night"
        assert local.data.top_time.label == "evening"
        assert {share.label for share in local.data.preferred_days} == {"sunday", "tuesday", "thursday"}
        assert local.data.weekly_frequency == utc.data.weekly_frequency

    def test_timing_confidence_cap(self, user_id, make_workouts):
        workouts = make_workouts(user_id, [("cardio", day) for day in range(20)])

        assert extract_timing(workouts).confidence == 85

    def test_no_gaps_means_zero_frequency(self):
        assert weekly_frequency_from([]) == (0.0, 0.0)

    def test_same_day_repeats_are_not_gaps(self, user_id, make_workouts):
        workouts = make_workouts(user_id, [("cardio", 0), ("cardio", 0), ("cardio", 1)])

        mean_gap, frequency = weekly_frequency_from([w.performed_at for w in workouts])

        assert mean_gap == 1.0
        assert frequency == 7.0

    def test_insufficient_timing(self, user_id, make_workouts):
        with pytest.raises(InsufficientDataError):
            extract_timing(make_workouts(user_id, [("cardio", 0)]))


# ===================================================================
# 3. INTENSITY RESPONSE
# ===================================================================

class TestIntensityResponse:

    def test_moderate_optimal_when_it_performs_best(self, user_id, make_samples):
        samples = make_samples(user_id, [("low", 6), ("moderate", 8), ("high", 7)])

        result = extract_intensity_response(samples)

        assert result.data.optimal_intensity == IntensityLevel.MODERATE
        assert result.data.intensity_analysis["moderate"].weighted_score == pytest.approx(5.0)
        assert result.data.total_responses == 3
        assert result.confidence == 15

    def test_high_optimal_when_it_beats_both(self, user_id, make_samples):
        samples = make_samples(user_id, [("low", 5), ("moderate", 6), ("high", 9)])

        result = extract_intensity_response(samples)

        assert result.data.optimal_intensity == IntensityLevel.HIGH

    def test_recovery_and_mood_enter_the_score(self, user_id, make_samples):
        samples = (
            make_samples(user_id, [("low", 7)], recovery_time=0.0, mood_impact=5.0)
            + make_samples(user_id, [("moderate", 7), ("high", 7)])
        )

        result = extract_intensity_response(samples)

        assert result.data.optimal_intensity == IntensityLevel.LOW

    def test_falls_back_to_best_performance_with_partial_levels(self, user_id, make_samples):
        samples = make_samples(user_id, [("low", 6), ("low", 6), ("high", 8)])

        result = extract_intensity_response(samples)

        assert result.data.optimal_intensity == IntensityLevel.HIGH
        assert "limited data" in result.data.optimal_reason
        assert set(result.data.intensity_analysis) == {"low", "high"}

    def test_insufficient_samples(self, user_id, make_samples):
        with pytest.raises(InsufficientDataError):
            extract_intensity_response(make_samples(user_id, [("low", 6), ("high", 8)]))


# ===================================================================
# 4. PROGRESSION / STAGNATION
# ===================================================================

class TestProgression:

    def _bench(self, make_workouts, user_id, weights, reps=10):
        workouts = make_workouts(user_id, [("strength", week * 7) for week in range(len(weights))], name="Bench Press")
        for workout, weight in zip(workouts, weights):
            workout.weight = weight
            workout.reps = reps
        return workouts

    def test_classification_threshold(self):
        assert classify_progression(2.5) == ProgressionStatus.PROGRESSING
        assert classify_progression(1.0) == ProgressionStatus.STAGNANT
        assert classify_progression(-1.0) == ProgressionStatus.STAGNANT
        assert classify_progression(-1.5) == ProgressionStatus.REGRESSING

    def test_weekly_volume_rate(self, user_id, make_workouts):
        workouts = self._bench(make_workouts, user_id, [100, 102.5, 105, 107.5, 110])

        result = extract_progression(workouts)

        exercise = result.data.exercise_patterns[0]
        # 1000 -> 1100 volume over 4 weeks
        assert exercise.progression_rate == pytest.approx(2.5)
        assert exercise.weeks_of_data == 4
        assert exercise.status == ProgressionStatus.PROGRESSING
        assert exercise.last_progression_date == workouts[-1].performed_at
        assert exercise.muscle_group == "strength"
        assert result.data.progressing_percentage == 100.0
        assert result.confidence == 10
        assert extract_stagnation(result) is None

    def test_flat_volume_produces_stagnation(self, user_id, make_workouts):
        workouts = self._bench(make_workouts, user_id, [100, 100, 100, 100, 100])

        result = extract_progression(workouts)
        stagnation = extract_stagnation(result)

        assert result.data.stagnant_exercises == 1
        assert result.data.exercise_patterns[0].last_progression_date is None
        assert stagnation is not None
        assert stagnation.pattern_type == PatternType.STAGNATION
        assert [e.exercise_name for e in stagnation.data.stagnant_exercises] == ["Bench Press"]

    def test_last_progression_scans_back_from_latest(self, user_id, make_workouts):
        workouts = self._bench(make_workouts, user_id, [100, 110, 105, 105, 100])

        result = extract_progression(workouts)

        exercise = result.data.exercise_patterns[0]
        assert exercise.status == ProgressionStatus.STAGNANT
        assert exercise.last_progression_date == workouts[1].performed_at

    def test_exercise_names_are_grouped_case_insensitively(self, user_id, make_workouts):
        workouts = self._bench(make_workouts, user_id, [100, 102.5, 105, 107.5, 110])
        workouts[2].name = "  bench press "

        result = extract_progression(workouts)

        assert result.data.total_exercises_analyzed == 1

    def test_too_few_workouts(self, user_id, make_workouts):
        workouts = self._bench(make_workouts, user_id, [100, 105, 110, 115])

        with pytest.raises(InsufficientDataError):
            extract_progression(workouts)

    def test_no_qualifying_exercise(self, user_id, make_workouts):
        workouts = make_workouts(user_id, [("cardio", day) for day in range(6)], duration_minutes=30)

        with pytest.raises(InsufficientDataError):
            extract_progression(workouts)


# ===================================================================
# 5. MOOD CORRELATION
# ===================================================================

class TestMoodCorrelation:

    def test_mood_change_per_type(self, user_id, make_workouts, make_moods):
        workouts = make_workouts(user_id, [("cardio", 0), ("cardio", 1), ("strength", 2)], hour=8)
        moods = make_moods(user_id, [(-1, 5), (2, 8), (23, 5), (26, 8)])

        result = extract_mood_correlation(workouts, moods)

        # single strength workout is skipped
        assert [c.workout_type for c in result.data.correlations] == ["cardio"]
        cardio = result.data.correlations[0]
        assert cardio.mood_before == 5.0
        assert cardio.mood_after == 8.0
        assert cardio.mood_change == 3.0
        assert cardio.sample_size == 2
        assert result.data.best_mood_impact.workout_type == "cardio"
        assert result.confidence == 10

    def test_nearest_mood_is_used(self, user_id, make_workouts, make_moods):
        workouts = make_workouts(user_id, [("yoga", 0), ("yoga", 3), ("cardio", 6)])
        moods = make_moods(user_id, [(-10, 2), (-1, 6), (1, 9), (20, 1), (71, 6), (73, 9)])

        result = extract_mood_correlation(workouts, moods)

        yoga = result.data.correlations[0]
        assert yoga.mood_before == 6.0
        assert yoga.mood_after == 9.0

    def test_best_and_worst(self, user_id, make_workouts, make_moods):
        workouts = make_workouts(user_id, [("yoga", 0), ("yoga", 2), ("hiit", 4), ("hiit", 6)])
        moods = make_moods(user_id, [
            (-1, 5), (1, 8),      # yoga +3
            (47, 5), (49, 8),     # yoga +3
            (95, 6), (97, 4),     # hiit -2
            (143, 6), (145, 4),   # hiit -2
        ])

        result = extract_mood_correlation(workouts, moods)

        assert result.data.best_mood_impact.workout_type == "yoga"
        assert result.data.worst_mood_impact.workout_type == "hiit"
        assert result.data.worst_mood_impact.mood_change == -2.0

    def test_needs_three_moods(self, user_id, make_workouts, make_moods):
        workouts = make_workouts(user_id, [("cardio", 0), ("cardio", 1), ("cardio", 2)])

        with pytest.raises(InsufficientDataError):
            extract_mood_correlation(workouts, make_moods(user_id, [(-1, 5), (1, 7)]))


# ===================================================================
# 6. RECOVERY
# ===================================================================

def _summary(user_id, offset, **fields):
    values = dict(sleep_minutes=480, deep_sleep_minutes=90, rem_sleep_minutes=100,
                  sleep_score=80, resting_heart_rate=55, stress_level=20)
    values.update(fields)
    return WearableSummary(user_id=user_id, day=date(2026, 3, 1) + timedelta(days=offset), **values)


class TestRecovery:

    def test_daily_recovery_score(self, user_id):
        day = daily_recovery_for(_summary(user_id, 0))

        # 0.5*80 + 0.3*(100 - 25.05) + 0.2*(100 - 20)
        assert day.recovery_score == pytest.approx(78.5, abs=0.1)
        assert day.ready_to_train is True

    def test_missing_readings_use_neutral_defaults(self, user_id):
        summary = WearableSummary(user_id=user_id, day=date(2026, 3, 1))

        day = daily_recovery_for(summary)

        assert day.sleep_quality == 50.0
        assert day.resting_heart_rate == 65.0
        assert day.stress_level == 50.0
        assert day.ready_to_train is False

    def test_recovery_pattern(self, user_id):
        summaries = [_summary(user_id, i) for i in range(4)]

        result = extract_recovery_pattern(summaries)

        assert result.pattern_type == PatternType.RECOVERY_PATTERN
        assert result.data.sleep_patterns.average_duration == 480.0
        assert result.data.sleep_patterns.nights == 4
        assert result.data.heart_rate_patterns.resting_trend == "stable"
        assert len(result.data.daily_recovery) == 4
        assert result.data.recovery_recommendations
        assert result.confidence == 20

    def test_rising_resting_heart_rate(self, user_id):
        summaries = [_summary(user_id, i, resting_heart_rate=hr) for i, hr in enumerate([50, 51, 53, 56, 58])]

        result = extract_recovery_pattern(summaries)

        assert result.data.heart_rate_patterns.resting_trend == "increasing"
        assert any("rising" in tip for tip in result.data.recovery_recommendations)

    def test_short_sleep_tip(self, user_id):
        summaries = [_summary(user_id, i, sleep_minutes=360) for i in range(3)]

        result = extract_recovery_pattern(summaries)

        assert any("7-8 hours" in tip for tip in result.data.recovery_recommendations)

    def test_optimal_recovery_hours_bounds(self):
        assert optimal_recovery_hours([]) == 24.0

    def test_insufficient_days(self, user_id):
        with pytest.raises(InsufficientDataError):
            extract_recovery_pattern([_summary(user_id, 0), _summary(user_id, 1)])
