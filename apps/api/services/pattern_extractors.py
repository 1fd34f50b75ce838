"""
Pattern Extractors

Pure functions: a slice of one user's history in, one typed pattern payload
plus a confidence score out. Nothing here touches storage; the analysis
service decides what to fetch and where to write.

Every extractor raises InsufficientDataError when its minimum sample count is
not met. Callers treat that as "skip this axis", never as a failure.

Extractors:
    workout_preference  share of each workout type in the recent window
    timing              day-part / weekday shares and weekly frequency
    intensity_response  weighted score per intensity level, optimal level
    progression         weekly volume change per exercise
    stagnation          derived from progression when nothing progresses
    mood_correlation    mood before/after per workout type
    recovery_pattern    sleep, resting HR, stress and daily recovery score
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Dict, List, Optional, Sequence

from core.exceptions import InsufficientDataError
from services.analytics_types import (
    DEFAULT_CONSTANTS,
    AnalyticsConstants,
    DailyRecovery,
    ExerciseProgression,
    HeartRateSummary,
    IntensityLevel,
    IntensityLevelStats,
    IntensityResponseData,
    IntensitySample,
    MoodCorrelationData,
    MoodImpact,
    MoodRecord,
    PatternData,
    PatternType,
    ProgressionData,
    ProgressionStatus,
    RecoveryPatternData,
    Share,
    SleepSummary,
    StagnationData,
    StressSummary,
    TimingData,
    TypeShare,
    WearableSummary,
    WorkoutPreferenceData,
    WorkoutRecord,
    clamp,
)
from services.category_mapping import (
    DAY_PART_ORDER,
    WEEKDAY_ORDER,
    day_part_for,
    weekday_for,
)

logger = logging.getLogger(__name__)

INTENSITY_ORDER = [IntensityLevel.LOW, IntensityLevel.MODERATE, IntensityLevel.HIGH]

# Recovery scoring. Missing readings fall back to neutral values.
FULL_NIGHT_MINUTES = 480.0
DEFAULT_SLEEP_QUALITY = 50.0
DEFAULT_RESTING_HR = 65.0
DEFAULT_STRESS = 50.0
READY_TO_TRAIN_SCORE = 70.0
HIGH_STRESS = 70.0
LOW_STRESS = 30.0
HR_TREND_DAYS = 5
HR_TREND_BPM = 2.0
DEFAULT_RECOVERY_HOURS = 24.0
MIN_RECOVERY_HOURS = 12.0
MAX_RECOVERY_HOURS = 48.0
MIN_DEEP_SLEEP_MINUTES = 60.0
HIGH_RESTING_HR = 70.0


@dataclass
class Extraction:
    """One extractor result, ready for the pattern store."""
    pattern_type: PatternType
    data: PatternData
    confidence: float


def _require(analysis: str, found: int, required: int) -> None:
    if found < required:
        raise InsufficientDataError(analysis, required, found)


def _newest_first(workouts: Sequence[WorkoutRecord]) -> List[WorkoutRecord]:
    # stable: equal timestamps keep the caller's order
    return sorted(workouts, key=lambda w: w.performed_at, reverse=True)


def _shares(counts: Dict[str, int], order: Sequence[str], total: int) -> List[Share]:
    """Percentage per bucket with data, highest first; ties keep canonical order."""
    shares = [
        Share(label=label, percentage=round(counts[label] / total * 100, 1))
        for label in order
        if counts.get(label)
    ]
    return sorted(shares, key=lambda s: s.percentage, reverse=True)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# =============================================================================
# WORKOUT PREFERENCE
# =============================================================================

def extract_workout_preference(
    workouts: Sequence[WorkoutRecord],
    constants: AnalyticsConstants = DEFAULT_CONSTANTS,
) -> Extraction:
    window = _newest_first(workouts)[: constants.workout_window]
    _require(PatternType.WORKOUT_PREFERENCE.value, len(window), constants.min_samples)

    # Counter preserves first-seen (most recent first) order for ties
    counts = Counter(w.workout_type for w in window)
    total = len(window)
    preferred = [
        TypeShare(workout_type=workout_type, percentage=round(count / total * 100, 1))
        for workout_type, count in counts.items()
    ]
    preferred.sort(key=lambda t: t.percentage, reverse=True)

    data = WorkoutPreferenceData(preferred_types=preferred, sample_size=total)
    confidence = min(total * constants.confidence_per_sample, constants.preference_confidence_cap)
    return Extraction(PatternType.WORKOUT_PREFERENCE, data, confidence)


# =============================================================================
# TIMING / FREQUENCY
# =============================================================================

def weekly_frequency_from(dates: Sequence[datetime]) -> tuple:
    """
    (mean gap in days, workouts per week) from workout timestamps.

    Gaps are whole days between consecutive workouts in chronological order;
    same-day repeats do not count as a gap. No gaps means frequency 0.
    """
    ordered = sorted(dates)
    gaps = []
    for previous, current in zip(ordered, ordered[1:]):
        days = round((current - previous).total_seconds() / 86400)
        if days > 0:
            gaps.append(days)
    if not gaps:
        return 0.0, 0.0
    mean_gap = _mean(gaps)
    return round(mean_gap, 2), round(7 / mean_gap, 1)


def _local(moment: datetime, tz: Optional[tzinfo]) -> datetime:
    # naive timestamps are already wall-clock time
    if tz is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(tz)


def extract_timing(
    workouts: Sequence[WorkoutRecord],
    constants: AnalyticsConstants = DEFAULT_CONSTANTS,
    tz: Optional[tzinfo] = None,
) -> Extraction:
    """
    Day-part and weekday shares plus weekly frequency.

    Timestamps are classified in ``tz`` (the user's local zone) when given,
    otherwise in whatever zone they carry, which is UTC for stored history.
    """
    window = _newest_first(workouts)[: constants.workout_window]
    _require(PatternType.TIMING.value, len(window), constants.min_samples)
    total = len(window)

    local_times = [_local(w.performed_at, tz) for w in window]
    part_counts = Counter(day_part_for(moment).value for moment in local_times)
    day_counts = Counter(weekday_for(moment).value for moment in local_times)
    mean_gap, frequency = weekly_frequency_from([w.performed_at for w in window])

    data = TimingData(
        preferred_times=_shares(part_counts, [p.value for p in DAY_PART_ORDER], total),
        preferred_days=_shares(day_counts, [d.value for d in WEEKDAY_ORDER], total),
        weekly_frequency=frequency,
        average_gap_days=mean_gap,
        sample_size=total,
    )
    confidence = min(total * constants.confidence_per_sample, constants.timing_confidence_cap)
    return Extraction(PatternType.TIMING, data, confidence)


# =============================================================================
# INTENSITY RESPONSE
# =============================================================================

def weighted_intensity_score(stats: IntensityLevelStats, constants: AnalyticsConstants = DEFAULT_CONSTANTS) -> float:
    """Performance, inverse recovery and mood impact, each on a 0-10 scale."""
    inverse_recovery = (24 - stats.recovery_time) / 24 * 10
    mood = (stats.mood_impact + 5) / 10 * 10
    return (
        constants.intensity_weight_performance * stats.performance_score
        + constants.intensity_weight_recovery * inverse_recovery
        + constants.intensity_weight_mood * mood
    )


def _level_stats(level: IntensityLevel, samples: List[IntensitySample]) -> IntensityLevelStats:
    recovery = [s.recovery_time for s in samples if s.recovery_time is not None]
    mood = [s.mood_impact for s in samples if s.mood_impact is not None]
    return IntensityLevelStats(
        intensity_level=level,
        performance_score=round(_mean([s.performance_score for s in samples]), 1),
        recovery_time=round(_mean(recovery), 1),
        mood_impact=round(_mean(mood), 1),
        sample_size=len(samples),
    )


def extract_intensity_response(
    samples: Sequence[IntensitySample],
    constants: AnalyticsConstants = DEFAULT_CONSTANTS,
) -> Extraction:
    _require(PatternType.INTENSITY_RESPONSE.value, len(samples), constants.min_samples)

    analysis: Dict[str, IntensityLevelStats] = {}
    for level in INTENSITY_ORDER:
        level_samples = [s for s in samples if s.intensity_level == level]
        if level_samples:
            stats = _level_stats(level, level_samples)
            stats.weighted_score = round(weighted_intensity_score(stats, constants), 2)
            analysis[level.value] = stats

    if len(analysis) == len(INTENSITY_ORDER):
        # moderate unless low or high strictly beats both others
        scores = {level: analysis[level.value].weighted_score for level in INTENSITY_ORDER}
        optimal = IntensityLevel.MODERATE
        for level in (IntensityLevel.LOW, IntensityLevel.HIGH):
            others = [scores[other] for other in INTENSITY_ORDER if other != level]
            if all(scores[level] > other for other in others):
                optimal = level
        reason = (
            f"Highest weighted score ({scores[optimal]:.2f}) across performance, "
            f"recovery and mood impact"
        )
    else:
        optimal = None
        for level in INTENSITY_ORDER:
            stats = analysis.get(level.value)
            if stats is None:
                continue
            if optimal is None or stats.performance_score > analysis[optimal.value].performance_score:
                optimal = level
        reason = (
            f"Best average performance ({analysis[optimal.value].performance_score:.1f}/10) "
            f"based on limited data"
        )

    data = IntensityResponseData(
        intensity_analysis=analysis,
        optimal_intensity=optimal,
        optimal_reason=reason,
        total_responses=len(samples),
    )
    confidence = min(len(samples) * constants.confidence_per_sample, constants.preference_confidence_cap)
    return Extraction(PatternType.INTENSITY_RESPONSE, data, confidence)


# =============================================================================
# PROGRESSION / STAGNATION
# =============================================================================

def classify_progression(rate: float, threshold: float = 1.0) -> ProgressionStatus:
    if rate > threshold:
        return ProgressionStatus.PROGRESSING
    if rate < -threshold:
        return ProgressionStatus.REGRESSING
    return ProgressionStatus.STAGNANT


def _exercise_progression(
    sessions: List[WorkoutRecord], constants: AnalyticsConstants
) -> Optional[ExerciseProgression]:
    sessions = sorted(sessions, key=lambda w: w.performed_at)
    volumes = [w.weight * w.reps for w in sessions]
    weeks = (sessions[-1].performed_at - sessions[0].performed_at) / timedelta(weeks=1)
    if weeks <= 0:
        return None

    rate = (volumes[-1] - volumes[0]) / volumes[0] * 100 / weeks

    last_progression = None
    for i in range(len(volumes) - 1, 0, -1):
        if volumes[i] > volumes[i - 1]:
            last_progression = sessions[i].performed_at
            break

    return ExerciseProgression(
        exercise_name=sessions[0].name,
        muscle_group=sessions[0].workout_type,
        progression_rate=round(rate, 2),
        weeks_of_data=round(weeks),
        status=classify_progression(rate, constants.progression_threshold_pct),
        last_progression_date=last_progression,
    )


def extract_progression(
    workouts: Sequence[WorkoutRecord],
    constants: AnalyticsConstants = DEFAULT_CONSTANTS,
) -> Extraction:
    _require(PatternType.PROGRESSION.value, len(workouts), constants.progression_min_workouts)

    by_exercise: Dict[str, List[WorkoutRecord]] = {}
    for workout in sorted(workouts, key=lambda w: w.performed_at):
        if not workout.name or not workout.weight or not workout.reps:
            continue
        if workout.weight <= 0 or workout.reps <= 0:
            continue
        by_exercise.setdefault(workout.name.lower().strip(), []).append(workout)

    exercises = []
    for sessions in by_exercise.values():
        if len(sessions) < constants.min_samples:
            continue
        progression = _exercise_progression(sessions, constants)
        if progression is not None:
            exercises.append(progression)

    if not exercises:
        raise InsufficientDataError(PatternType.PROGRESSION.value, constants.min_samples, 0)

    progressing = sum(1 for e in exercises if e.is_progressing)
    stagnant = sum(1 for e in exercises if e.is_stagnant)
    regressing = sum(1 for e in exercises if e.is_regressing)

    data = ProgressionData(
        exercise_patterns=exercises,
        total_exercises_analyzed=len(exercises),
        progressing_exercises=progressing,
        stagnant_exercises=stagnant,
        regressing_exercises=regressing,
        progressing_percentage=round(progressing / len(exercises) * 100, 1),
    )
    confidence = min(len(exercises) * 10, constants.preference_confidence_cap)
    return Extraction(PatternType.PROGRESSION, data, confidence)


def extract_stagnation(progression: Extraction) -> Optional[Extraction]:
    """A stagnation pattern when nothing is progressing and something has stalled."""
    data: ProgressionData = progression.data
    if data.progressing_exercises > 0 or data.stagnant_exercises == 0:
        return None
    stagnation = StagnationData(
        stagnant_exercises=[e for e in data.exercise_patterns if e.is_stagnant],
        regressing_exercises=[e for e in data.exercise_patterns if e.is_regressing],
        total_exercises_analyzed=data.total_exercises_analyzed,
    )
    return Extraction(PatternType.STAGNATION, stagnation, progression.confidence)


# =============================================================================
# MOOD CORRELATION
# =============================================================================

def _nearest_mood(
    workout_at: datetime, moods: Sequence[MoodRecord], window: timedelta, before: bool
) -> Optional[MoodRecord]:
    best = None
    best_distance = None
    for mood in moods:
        distance = workout_at - mood.logged_at if before else mood.logged_at - workout_at
        if timedelta(0) <= distance <= window and (best_distance is None or distance < best_distance):
            best, best_distance = mood, distance
    return best


def extract_mood_correlation(
    workouts: Sequence[WorkoutRecord],
    moods: Sequence[MoodRecord],
    constants: AnalyticsConstants = DEFAULT_CONSTANTS,
) -> Extraction:
    _require(f"{PatternType.MOOD_CORRELATION.value} (moods)", len(moods), constants.min_samples)
    _require(f"{PatternType.MOOD_CORRELATION.value} (workouts)", len(workouts), constants.min_samples)

    window = timedelta(days=constants.mood_window_days)
    by_type: Dict[str, List[WorkoutRecord]] = {}
    for workout in sorted(workouts, key=lambda w: w.performed_at):
        by_type.setdefault(workout.workout_type, []).append(workout)

    correlations = []
    for workout_type, typed in by_type.items():
        if len(typed) < 2:
            continue
        before_levels = []
        after_levels = []
        for workout in typed:
            before = _nearest_mood(workout.performed_at, moods, window, before=True)
            after = _nearest_mood(workout.performed_at, moods, window, before=False)
            if before is not None and after is not None:
                before_levels.append(before.mood_level)
                after_levels.append(after.mood_level)
        if not before_levels:
            continue
        mood_before = _mean(before_levels)
        mood_after = _mean(after_levels)
        correlations.append(
            MoodImpact(
                workout_type=workout_type,
                mood_before=round(mood_before, 1),
                mood_after=round(mood_after, 1),
                mood_change=round(mood_after - mood_before, 1),
                sample_size=len(before_levels),
            )
        )

    data = MoodCorrelationData(
        correlations=correlations,
        best_mood_impact=max(correlations, key=lambda c: c.mood_change) if correlations else None,
        worst_mood_impact=min(correlations, key=lambda c: c.mood_change) if correlations else None,
    )
    pairs = sum(c.sample_size for c in correlations)
    confidence = min(pairs * constants.confidence_per_sample, constants.preference_confidence_cap)
    return Extraction(PatternType.MOOD_CORRELATION, data, confidence)


# =============================================================================
# RECOVERY
# =============================================================================

def daily_recovery_for(summary: WearableSummary) -> DailyRecovery:
    """Recovery score for one day: 50% sleep, 30% resting HR, 20% stress."""
    if summary.sleep_score:
        sleep_quality = summary.sleep_score
    elif summary.sleep_minutes and summary.sleep_minutes > 0:
        sleep_quality = min(100.0, summary.sleep_minutes / FULL_NIGHT_MINUTES * 100)
    else:
        sleep_quality = DEFAULT_SLEEP_QUALITY

    if summary.resting_heart_rate and summary.resting_heart_rate > 0:
        resting_hr = summary.resting_heart_rate
    else:
        resting_hr = DEFAULT_RESTING_HR

    stress = summary.stress_level if summary.stress_level is not None else DEFAULT_STRESS

    # 40-100 bpm maps onto 100-0
    hr_component = 100 - clamp((resting_hr - 40) * 1.67)
    score = 0.5 * sleep_quality + 0.3 * hr_component + 0.2 * (100 - stress)

    return DailyRecovery(
        day=summary.day,
        sleep_quality=round(sleep_quality, 1),
        resting_heart_rate=resting_hr,
        stress_level=stress,
        recovery_score=round(score, 1),
        ready_to_train=score >= READY_TO_TRAIN_SCORE,
    )


def _has_reading(summary: WearableSummary) -> bool:
    return bool(summary.sleep_minutes or summary.sleep_score or summary.resting_heart_rate) or (
        summary.stress_level is not None
    )


def _sleep_summary(days: List[WearableSummary], min_samples: int) -> SleepSummary:
    nights = [d for d in days if d.sleep_minutes and d.sleep_minutes > 0]
    if len(nights) < min_samples:
        return SleepSummary(nights=len(nights))
    scored = [d.sleep_score for d in nights if d.sleep_score]
    best = sorted(nights, key=lambda d: d.sleep_score or 0, reverse=True)[:3]
    return SleepSummary(
        average_duration=round(_mean([d.sleep_minutes for d in nights]), 1),
        average_deep=round(_mean([d.deep_sleep_minutes or 0 for d in nights]), 1),
        average_rem=round(_mean([d.rem_sleep_minutes or 0 for d in nights]), 1),
        average_score=round(_mean(scored), 1),
        optimal_sleep_duration=round(_mean([d.sleep_minutes for d in best]), 1),
        nights=len(nights),
    )


def _heart_rate_summary(days: List[WearableSummary], min_samples: int) -> HeartRateSummary:
    readings = [d.resting_heart_rate for d in days if d.resting_heart_rate and d.resting_heart_rate > 0]
    if len(readings) < min_samples:
        return HeartRateSummary()

    trend = "stable"
    if len(readings) >= HR_TREND_DAYS:
        recent = readings[-HR_TREND_DAYS:]
        difference = _mean(recent[-2:]) - _mean(recent[:2])
        if difference < -HR_TREND_BPM:
            trend = "decreasing"
        elif difference > HR_TREND_BPM:
            trend = "increasing"

    return HeartRateSummary(
        average_resting=round(_mean(readings), 1),
        min_resting=min(readings),
        max_resting=max(readings),
        resting_trend=trend,
    )


def _stress_summary(days: List[WearableSummary], min_samples: int) -> StressSummary:
    levels = [d.stress_level for d in days if d.stress_level is not None]
    if len(levels) < min_samples:
        return StressSummary()
    return StressSummary(
        average_stress=round(_mean(levels), 1),
        high_stress_days=sum(1 for s in levels if s > HIGH_STRESS),
        low_stress_days=sum(1 for s in levels if s < LOW_STRESS),
    )


def optimal_recovery_hours(daily: Sequence[DailyRecovery]) -> float:
    """
    Hours to climb from the lowest third of recovery scores to the highest.

    A 30-point spread is taken as one day; the result is bounded to 12-48 h.
    """
    third = len(daily) // 3
    if len(daily) < 3 or third == 0:
        return DEFAULT_RECOVERY_HOURS
    scores = sorted(d.recovery_score for d in daily)
    spread = _mean(scores[-third:]) - _mean(scores[:third])
    if spread <= 0:
        return DEFAULT_RECOVERY_HOURS
    return round(clamp(spread / 30 * 24, MIN_RECOVERY_HOURS, MAX_RECOVERY_HOURS), 1)


def recovery_tips(
    sleep: SleepSummary,
    heart_rate: HeartRateSummary,
    stress: StressSummary,
    sleep_threshold_minutes: float = 420.0,
) -> List[str]:
    tips = []
    if sleep.average_duration < sleep_threshold_minutes:
        tips.append("Increase your sleep to at least 7-8 hours to improve recovery")
    if sleep.average_deep < MIN_DEEP_SLEEP_MINUTES:
        tips.append("Improve sleep quality by avoiding screens before bed and keeping a regular schedule")
    if sleep.optimal_sleep_duration > 0 and abs(sleep.average_duration - sleep.optimal_sleep_duration) > 60:
        tips.append(
            f"Aim for about {round(sleep.optimal_sleep_duration / 60)} hours of sleep, "
            f"which looks like your optimal duration"
        )
    if heart_rate.resting_trend == "increasing":
        tips.append(
            "Your resting heart rate is rising, which can signal accumulated fatigue. "
            "Consider lowering training intensity"
        )
    if heart_rate.average_resting > HIGH_RESTING_HR:
        tips.append("Your resting heart rate is relatively high. Add more low-intensity aerobic work")
    if stress.average_stress > HIGH_STRESS:
        tips.append("Your stress levels are elevated. Try relaxation techniques such as meditation or deep breathing")
    if stress.high_stress_days > stress.low_stress_days * 2:
        tips.append("You are having many high-stress days. Consider easier sessions on those days")
    if not tips:
        tips.append("Your recovery patterns look adequate. Keep up your current routine")
    return tips


def extract_recovery_pattern(
    summaries: Sequence[WearableSummary],
    constants: AnalyticsConstants = DEFAULT_CONSTANTS,
) -> Extraction:
    _require(PatternType.RECOVERY_PATTERN.value, len(summaries), constants.min_samples)
    days = sorted(summaries, key=lambda s: s.day)

    sleep = _sleep_summary(days, constants.min_samples)
    heart_rate = _heart_rate_summary(days, constants.min_samples)
    stress = _stress_summary(days, constants.min_samples)
    daily = [daily_recovery_for(d) for d in days if _has_reading(d)]

    data = RecoveryPatternData(
        sleep_patterns=sleep,
        heart_rate_patterns=heart_rate,
        stress_patterns=stress,
        daily_recovery=daily,
        optimal_recovery_time=optimal_recovery_hours(daily),
        recovery_recommendations=recovery_tips(sleep, heart_rate, stress, constants.sleep_threshold_minutes),
    )
    confidence = min(len(days) * constants.confidence_per_sample, constants.preference_confidence_cap)
    return Extraction(PatternType.RECOVERY_PATTERN, data, confidence)
