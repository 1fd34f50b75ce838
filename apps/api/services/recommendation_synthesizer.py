"""
Recommendation Synthesizer

Turns a user's current patterns (plus an optional readiness signal and
optional peer suggestions) into explained, scored recommendations.

Rules are independent: each one looks only at the inputs it needs and a
missing pattern simply means that rule does not fire. A run can emit zero,
one or several recommendations per rule.

    1. workout preference      -> workout: top workout type
    2. timing, day-part > 40%  -> habit: train in that window
    3. timing frequency        -> habit (< 3/wk), recovery (> 5/wk),
                                  or plan: 7-day schedule if a weekday > 30%
    4. preference + timing     -> workout: top type at top day-part
    5. readiness signal        -> workout (ready) or recovery (not ready),
                                  plus a sleep habit below 7 h average sleep
    6. peer suggestions        -> workout tagged source=similar_users

Every recommendation carries a reasoning string that quotes the numbers
behind it and the ids of the patterns it consulted. generate() persists the
whole batch before returning.
"""

import logging
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from services.analytics_types import (
    DEFAULT_CONSTANTS,
    AnalyticsConstants,
    DayPart,
    IntensityLevel,
    IntensityResponseData,
    Pattern,
    PatternType,
    RecommendationType,
    RecoveryPatternData,
    TimingData,
    Weekday,
    WorkoutPreferenceData,
    clamp,
)
from services.category_mapping import (
    DAY_PART_DURATION_MINUTES,
    DAY_PART_INTENSITY,
    DAY_PART_TIME_RANGES,
    WEEKDAY_ORDER,
)
from services.pattern_store import PatternStore, RecommendationStore
from services.recommendation_payloads import (
    FrequencyIncrease,
    OvertrainingWarning,
    PeerSuggestion,
    ReadinessCheck,
    Recommendation,
    ScheduleDay,
    ScheduleWindow,
    SleepImprovement,
    WeeklyPlan,
    WorkoutSuggestion,
)
from services.wearable_readiness import ReadinessSignal

logger = logging.getLogger(__name__)

TARGET_WEEKLY_FREQUENCY = 3
LOW_FREQUENCY_CONFIDENCE_FACTOR = 0.8
OVERTRAINING_CONFIDENCE_FACTOR = 0.7
SLEEP_CONFIDENCE_FACTOR = 0.9
DEFAULT_READINESS_CONFIDENCE = 50.0
PEER_CONFIDENCE_CAP = 90.0
TARGET_SLEEP_MINUTES = 480.0

REST_DAY_TIPS = [
    "Schedule at least two full rest days per week",
    "Alternate hard and easy sessions",
    "Use active recovery such as walking or mobility work on rest days",
    "Watch for persistent fatigue, poor sleep or a rising resting heart rate",
]

SLEEP_TIPS = [
    "Keep a consistent bedtime and wake-up time, including weekends",
    "Avoid screens for an hour before bed",
    "Keep your bedroom dark, quiet and cool",
    "Avoid caffeine after mid-afternoon",
]


def _ids(*patterns: Optional[Pattern]) -> List[UUID]:
    return [p.id for p in patterns if p is not None and p.id is not None]


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def _label(value: str) -> str:
    return value.replace("_", " ")


class RecommendationSynthesizer:

    def __init__(
        self,
        patterns: PatternStore,
        recommendations: RecommendationStore,
        analysis=None,
        constants: AnalyticsConstants = DEFAULT_CONSTANTS,
    ):
        self.patterns = patterns
        self.recommendations = recommendations
        self.analysis = analysis
        self.constants = constants

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    def generate(
        self,
        user_id: UUID,
        readiness: Optional[ReadinessSignal] = None,
        peer_suggestions: Optional[Sequence[PeerSuggestion]] = None,
    ) -> List[Recommendation]:
        """Synthesize from the stored patterns and persist the batch."""
        current = self.patterns.patterns_by_type(user_id)
        if not current and self.analysis is not None:
            logger.info(f"No patterns stored for {user_id}; deriving them before synthesis")
            self.analysis.analyze_all(user_id)
            current = self.patterns.patterns_by_type(user_id)

        drafts = self.synthesize(user_id, current, readiness, peer_suggestions)
        if not drafts:
            logger.info(f"No recommendations for {user_id} ({len(current)} patterns)")
            return []
        stored = self.recommendations.insert_recommendations(drafts)
        logger.info(f"Stored {len(stored)} recommendations for {user_id}")
        return stored

    def synthesize(
        self,
        user_id: UUID,
        patterns: Dict[PatternType, Pattern],
        readiness: Optional[ReadinessSignal] = None,
        peer_suggestions: Optional[Sequence[PeerSuggestion]] = None,
    ) -> List[Recommendation]:
        """Apply every rule to the given patterns. No persistence."""
        preference = patterns.get(PatternType.WORKOUT_PREFERENCE)
        timing = patterns.get(PatternType.TIMING)
        intensity = patterns.get(PatternType.INTENSITY_RESPONSE)
        recovery = patterns.get(PatternType.RECOVERY_PATTERN)

        drafts: List[Recommendation] = []
        if preference is not None:
            drafts += self._preferred_workout(user_id, preference, intensity)
        if timing is not None:
            drafts += self._training_window(user_id, timing)
            drafts += self._frequency(user_id, timing)
        if preference is not None and timing is not None:
            drafts += self._combined(user_id, preference, timing)
        if readiness is not None:
            drafts += self._readiness(user_id, readiness, recovery)
        for suggestion in peer_suggestions or []:
            drafts.append(self._peer_workout(user_id, suggestion))

        for draft in drafts:
            draft.confidence = round(clamp(draft.confidence), 1)
        return drafts

    # =========================================================================
    # RULES
    # =========================================================================

    def _preferred_workout(
        self, user_id: UUID, preference: Pattern, intensity: Optional[Pattern]
    ) -> List[Recommendation]:
        data: WorkoutPreferenceData = preference.data
        top = data.top
        if top is None:
            return []

        level = IntensityLevel.MODERATE
        consulted = [preference]
        intensity_note = ""
        if intensity is not None:
            intensity_data: IntensityResponseData = intensity.data
            level = intensity_data.optimal_intensity
            consulted.append(intensity)
            intensity_note = f" Your best response so far has been at {level.value} intensity."

        return [
            Recommendation(
                user_id=user_id,
                title=f"{_label(top.workout_type).capitalize()} workout",
                description=(
                    f"A {_label(top.workout_type)} session at {level.value} intensity fits "
                    f"what you train most often."
                ),
                recommendation_type=RecommendationType.WORKOUT,
                data=WorkoutSuggestion(workout_type=top.workout_type, intensity=level),
                confidence=preference.confidence,
                reasoning=(
                    f"{_label(top.workout_type).capitalize()} makes up {top.percentage:.0f}% of your "
                    f"last {data.sample_size} workouts.{intensity_note}"
                ),
                patterns_used=_ids(*consulted),
            )
        ]

    def _training_window(self, user_id: UUID, timing: Pattern) -> List[Recommendation]:
        data: TimingData = timing.data
        top = data.top_time
        if top is None or top.percentage <= self.constants.top_time_share_pct:
            return []
        part = DayPart(top.label)
        time_range = DAY_PART_TIME_RANGES[part]
        return [
            Recommendation(
                user_id=user_id,
                title=f"Keep training in the {part.value}",
                description=f"Block out {time_range} for your sessions to keep the habit going.",
                recommendation_type=RecommendationType.HABIT,
                data=ScheduleWindow(preferred_time=part, time_range=time_range),
                confidence=min(top.percentage, timing.confidence),
                reasoning=f"{top.percentage:.0f}% of your last {data.sample_size} workouts were in the {part.value}.",
                patterns_used=_ids(timing),
            )
        ]

    def _frequency(self, user_id: UUID, timing: Pattern) -> List[Recommendation]:
        data: TimingData = timing.data
        frequency = data.weekly_frequency
        if frequency <= 0:
            return []

        if frequency < self.constants.low_frequency:
            return [
                Recommendation(
                    user_id=user_id,
                    title="Train more often",
                    description=(
                        f"Work up to {TARGET_WEEKLY_FREQUENCY} sessions per week. "
                        f"Adding one short session is a good start."
                    ),
                    recommendation_type=RecommendationType.HABIT,
                    data=FrequencyIncrease(current_frequency=frequency, target_frequency=TARGET_WEEKLY_FREQUENCY),
                    confidence=timing.confidence * LOW_FREQUENCY_CONFIDENCE_FACTOR,
                    reasoning=(
                        f"You average {frequency:.1f} workouts per week "
                        f"(one every {data.average_gap_days:.1f} days), below {self.constants.low_frequency:g}."
                    ),
                    patterns_used=_ids(timing),
                )
            ]

        if frequency > self.constants.high_frequency:
            return [
                Recommendation(
                    user_id=user_id,
                    title="Watch for overtraining",
                    description="You are training very often. Build rest days into your week.",
                    recommendation_type=RecommendationType.RECOVERY,
                    data=OvertrainingWarning(current_frequency=frequency, recovery_tips=list(REST_DAY_TIPS)),
                    confidence=timing.confidence * OVERTRAINING_CONFIDENCE_FACTOR,
                    reasoning=(
                        f"You average {frequency:.1f} workouts per week, above "
                        f"{self.constants.high_frequency:g}, which raises overtraining risk."
                    ),
                    patterns_used=_ids(timing),
                )
            ]

        top_day = data.top_day
        if top_day is None or top_day.percentage <= self.constants.top_day_share_pct:
            return []

        target = min(_round_half_up(frequency), len(WEEKDAY_ORDER))
        training_days = [share.label for share in data.preferred_days[:target]]
        # days never trained on fill the gap in calendar order
        for day in WEEKDAY_ORDER:
            if len(training_days) >= target:
                break
            if day.value not in training_days:
                training_days.append(day.value)
        shares = {share.label: share.percentage for share in data.preferred_days}
        schedule = [
            ScheduleDay(
                day=day,
                workout=day.value in training_days,
                reason=self._schedule_reason(day, training_days, shares, target),
            )
            for day in WEEKDAY_ORDER
        ]
        return [
            Recommendation(
                user_id=user_id,
                title="Your weekly training plan",
                description=(
                    f"{len(training_days)} training days built around the days you already train, "
                    f"with the rest as recovery."
                ),
                recommendation_type=RecommendationType.PLAN,
                data=WeeklyPlan(
                    preferred_day=Weekday(top_day.label),
                    weekly_frequency=frequency,
                    suggested_schedule=schedule,
                ),
                confidence=min(top_day.percentage, timing.confidence),
                reasoning=(
                    f"You train {frequency:.1f} times per week and {top_day.percentage:.0f}% of "
                    f"sessions fall on {top_day.label.capitalize()}."
                ),
                patterns_used=_ids(timing),
            )
        ]

    @staticmethod
    def _schedule_reason(day: Weekday, training_days: List[str], shares: Dict[str, float], target: int) -> str:
        if day.value not in training_days:
            return "rest day"
        if shares.get(day.value):
            return f"{shares[day.value]:.0f}% of your workouts fall on {day.value.capitalize()}"
        return f"added to reach {target} training days a week"

    def _combined(self, user_id: UUID, preference: Pattern, timing: Pattern) -> List[Recommendation]:
        top_type = preference.data.top
        top_time = timing.data.top_time
        if top_type is None or top_time is None:
            return []
        part = DayPart(top_time.label)
        level = DAY_PART_INTENSITY[part]
        duration = DAY_PART_DURATION_MINUTES[part]
        return [
            Recommendation(
                user_id=user_id,
                title=f"{part.value.capitalize()} {_label(top_type.workout_type)} session",
                description=(
                    f"A {duration}-minute {level.value}-intensity {_label(top_type.workout_type)} "
                    f"workout in the {part.value}."
                ),
                recommendation_type=RecommendationType.WORKOUT,
                data=WorkoutSuggestion(
                    workout_type=top_type.workout_type,
                    intensity=level,
                    duration_minutes=duration,
                    preferred_time=part,
                ),
                confidence=min(preference.confidence, timing.confidence) * self.constants.combined_confidence_factor,
                reasoning=(
                    f"{_label(top_type.workout_type).capitalize()} is {top_type.percentage:.0f}% of your "
                    f"workouts and {top_time.percentage:.0f}% of them happen in the {part.value}."
                ),
                patterns_used=_ids(preference, timing),
            )
        ]

    def _readiness(
        self, user_id: UUID, readiness: ReadinessSignal, recovery: Optional[Pattern]
    ) -> List[Recommendation]:
        if recovery is not None:
            confidence = min(recovery.confidence, self.constants.preference_confidence_cap)
        else:
            confidence = DEFAULT_READINESS_CONFIDENCE

        check = ReadinessCheck(
            ready=readiness.ready,
            recovery_score=readiness.recovery_score,
            recommendations=list(readiness.recommendations),
            sleep_quality=readiness.sleep_quality or 0.0,
            resting_heart_rate=readiness.resting_heart_rate or 0.0,
            stress_level=readiness.stress_level or 0.0,
        )
        score = f"{readiness.recovery_score:.0f}/100"
        if readiness.ready:
            recommendation = Recommendation(
                user_id=user_id,
                title="Ready to train",
                description="Your body has recovered. Go ahead with today's session.",
                recommendation_type=RecommendationType.WORKOUT,
                data=check,
                confidence=confidence,
                reasoning=f"Your recovery score today is {score}.",
                patterns_used=_ids(recovery),
            )
        else:
            recommendation = Recommendation(
                user_id=user_id,
                title="Prioritize recovery today",
                description="Your recovery is incomplete. Rest or keep the session light.",
                recommendation_type=RecommendationType.RECOVERY,
                data=check,
                confidence=confidence,
                reasoning=f"Your recovery score today is {score}, below the ready-to-train threshold.",
                patterns_used=_ids(recovery),
            )
        drafts = [recommendation]

        sleep = readiness.average_sleep_minutes
        if sleep is None and recovery is not None:
            recovery_data: RecoveryPatternData = recovery.data
            sleep = recovery_data.sleep_patterns.average_duration
        if sleep is not None and 0 < sleep < self.constants.sleep_threshold_minutes:
            sleep_confidence = recovery.confidence if recovery is not None else DEFAULT_READINESS_CONFIDENCE
            drafts.append(
                Recommendation(
                    user_id=user_id,
                    title="Improve your sleep",
                    description="More sleep will speed up recovery between sessions.",
                    recommendation_type=RecommendationType.HABIT,
                    data=SleepImprovement(
                        current_duration=sleep,
                        target_duration=TARGET_SLEEP_MINUTES,
                        tips=list(SLEEP_TIPS),
                    ),
                    confidence=sleep_confidence * SLEEP_CONFIDENCE_FACTOR,
                    reasoning=(
                        f"You average {sleep / 60:.1f} hours of sleep, under the "
                        f"{self.constants.sleep_threshold_minutes / 60:g} hours that support recovery."
                    ),
                    patterns_used=_ids(recovery),
                )
            )
        return drafts

    def _peer_workout(self, user_id: UUID, suggestion: PeerSuggestion) -> Recommendation:
        workout = suggestion.workout
        peers = max(suggestion.peer_count, 1)
        return Recommendation(
            user_id=user_id,
            title=f"Try {workout.workout_name}",
            description=(
                f"{workout.workout_name} ({_label(workout.workout_type)}) is popular with "
                f"users who train like you."
            ),
            recommendation_type=RecommendationType.WORKOUT,
            data=workout,
            confidence=min(workout.popularity / peers * 100, PEER_CONFIDENCE_CAP),
            reasoning=(
                f"Logged {workout.popularity} times across {suggestion.peer_count} similar users."
            ),
            patterns_used=[],
        )
