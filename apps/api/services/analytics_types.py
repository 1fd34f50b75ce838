"""
Behavior Analytics: Shared Types

Vocabulary for the adaptive analytics engine:

- Enums for every closed string domain (pattern types, recommendation types,
  preference axes, intensity levels, day-parts, weekdays).
- Plain dataclass records for the activity history the engine reads
  (workouts, moods, wearable summaries, intensity samples, profiles).
- Tagged pattern payloads: one pydantic model per pattern type, combined into
  a discriminated union keyed on ``pattern_type``. The payload that lands in
  the ``user_pattern.pattern_data`` JSON column is exactly one of these.
- Domain records for stored state (Pattern, Preference, Feedback, Cluster).
- AnalyticsConstants: the hand-tuned heuristics, named and overridable.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter


# =============================================================================
# ENUMS
# =============================================================================

class PatternType(str, Enum):
    """Axis a Pattern summarizes."""
    WORKOUT_PREFERENCE = "workout_preference"
    TIMING = "timing"
    INTENSITY_RESPONSE = "intensity_response"
    PROGRESSION = "progression"
    STAGNATION = "stagnation"
    MOOD_CORRELATION = "mood_correlation"
    RECOVERY_PATTERN = "recovery_pattern"


class RecommendationType(str, Enum):
    WORKOUT = "workout"
    NUTRITION = "nutrition"
    RECOVERY = "recovery"
    HABIT = "habit"
    PLAN = "plan"
    EXERCISE = "exercise"


class PreferenceType(str, Enum):
    """Preference axes nudged by reinforcement."""
    EXERCISE_TYPE = "exercise_type"
    MUSCLE_GROUP = "muscle_group"
    EQUIPMENT = "equipment"
    TIME_OF_DAY = "time_of_day"
    WORKOUT_DURATION = "workout_duration"
    INTENSITY_LEVEL = "intensity_level"
    RECOVERY_NEED = "recovery_need"


class IntensityLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class DayPart(str, Enum):
    MORNING = "morning"      # 05:00 - 11:59
    AFTERNOON = "afternoon"  # 12:00 - 17:59
    EVENING = "evening"      # 18:00 - 21:59
    NIGHT = "night"          # 22:00 - 04:59


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


class ProgressionStatus(str, Enum):
    PROGRESSING = "progressing"
    STAGNANT = "stagnant"
    REGRESSING = "regressing"


# =============================================================================
# ACTIVITY HISTORY RECORDS (read side)
# =============================================================================

@dataclass
class WorkoutRecord:
    """One logged workout (or one exercise entry within a session)."""
    user_id: UUID
    performed_at: datetime
    workout_type: str
    name: Optional[str] = None
    weight: Optional[float] = None
    reps: Optional[int] = None
    sets: Optional[int] = None
    duration_minutes: Optional[float] = None
    distance_km: Optional[float] = None
    id: Optional[UUID] = None


@dataclass
class MoodRecord:
    user_id: UUID
    logged_at: datetime
    mood_level: float  # 1-10
    id: Optional[UUID] = None


@dataclass
class WearableSummary:
    """Daily summary synced from a wearable device."""
    user_id: UUID
    day: date
    sleep_minutes: Optional[float] = None
    deep_sleep_minutes: Optional[float] = None
    rem_sleep_minutes: Optional[float] = None
    sleep_score: Optional[float] = None  # 0-100
    resting_heart_rate: Optional[float] = None
    stress_level: Optional[float] = None  # 0-100
    steps: Optional[int] = None
    active_minutes: Optional[int] = None
    id: Optional[UUID] = None


@dataclass
class IntensitySample:
    """Self-reported response to one workout at a given intensity."""
    user_id: UUID
    intensity_level: IntensityLevel
    performance_score: float  # 1-10
    recovery_time: Optional[float] = None  # hours
    mood_impact: Optional[float] = None  # -5 to 5
    workout_id: Optional[UUID] = None
    notes: Optional[str] = None
    recorded_at: Optional[datetime] = None
    id: Optional[UUID] = None


@dataclass
class UserProfile:
    user_id: UUID
    level: Optional[str] = None  # e.g. "beginner", "intermediate", "advanced"
    goal: Optional[str] = None  # e.g. "strength", "weight_loss", "endurance"
    timezone: Optional[str] = None  # IANA name, e.g. "Europe/Madrid"


# =============================================================================
# PATTERN PAYLOADS (tagged variants)
# =============================================================================

class TypeShare(BaseModel):
    workout_type: str
    percentage: float


class Share(BaseModel):
    """Percentage share of one bucket (day-part or weekday)."""
    label: str
    percentage: float


class WorkoutPreferenceData(BaseModel):
    pattern_type: Literal["workout_preference"] = "workout_preference"
    preferred_types: List[TypeShare]
    sample_size: int

    @property
    def top(self) -> Optional[TypeShare]:
        return self.preferred_types[0] if self.preferred_types else None


class TimingData(BaseModel):
    pattern_type: Literal["timing"] = "timing"
    preferred_times: List[Share]
    preferred_days: List[Share]
    weekly_frequency: float
    average_gap_days: float
    sample_size: int

    @property
    def top_time(self) -> Optional[Share]:
        return self.preferred_times[0] if self.preferred_times else None

    @property
    def top_day(self) -> Optional[Share]:
        return self.preferred_days[0] if self.preferred_days else None


class IntensityLevelStats(BaseModel):
    intensity_level: IntensityLevel
    performance_score: float
    recovery_time: float
    mood_impact: float
    sample_size: int
    weighted_score: Optional[float] = None


class IntensityResponseData(BaseModel):
    pattern_type: Literal["intensity_response"] = "intensity_response"
    intensity_analysis: Dict[str, IntensityLevelStats]
    optimal_intensity: IntensityLevel
    optimal_reason: str
    total_responses: int


class ExerciseProgression(BaseModel):
    exercise_name: str
    muscle_group: Optional[str] = None
    progression_rate: float  # % volume change per week
    weeks_of_data: int
    status: ProgressionStatus
    last_progression_date: Optional[datetime] = None

    @property
    def is_progressing(self) -> bool:
        return self.status == ProgressionStatus.PROGRESSING

    @property
    def is_stagnant(self) -> bool:
        return self.status == ProgressionStatus.STAGNANT

    @property
    def is_regressing(self) -> bool:
        return self.status == ProgressionStatus.REGRESSING


class ProgressionData(BaseModel):
    pattern_type: Literal["progression"] = "progression"
    exercise_patterns: List[ExerciseProgression]
    total_exercises_analyzed: int
    progressing_exercises: int
    stagnant_exercises: int
    regressing_exercises: int
    progressing_percentage: float


class StagnationData(BaseModel):
    pattern_type: Literal["stagnation"] = "stagnation"
    stagnant_exercises: List[ExerciseProgression]
    regressing_exercises: List[ExerciseProgression]
    total_exercises_analyzed: int


class MoodImpact(BaseModel):
    workout_type: str
    mood_before: float
    mood_after: float
    mood_change: float
    sample_size: int


class MoodCorrelationData(BaseModel):
    pattern_type: Literal["mood_correlation"] = "mood_correlation"
    correlations: List[MoodImpact]
    best_mood_impact: Optional[MoodImpact] = None
    worst_mood_impact: Optional[MoodImpact] = None


class SleepSummary(BaseModel):
    average_duration: float = 0.0  # minutes
    average_deep: float = 0.0
    average_rem: float = 0.0
    average_score: float = 0.0
    optimal_sleep_duration: float = 0.0
    nights: int = 0


class HeartRateSummary(BaseModel):
    average_resting: float = 0.0
    min_resting: float = 0.0
    max_resting: float = 0.0
    resting_trend: Literal["decreasing", "increasing", "stable"] = "stable"


class StressSummary(BaseModel):
    average_stress: float = 0.0
    high_stress_days: int = 0
    low_stress_days: int = 0


class DailyRecovery(BaseModel):
    day: date
    sleep_quality: float
    resting_heart_rate: float
    stress_level: float
    recovery_score: float
    ready_to_train: bool


class RecoveryPatternData(BaseModel):
    pattern_type: Literal["recovery_pattern"] = "recovery_pattern"
    sleep_patterns: SleepSummary
    heart_rate_patterns: HeartRateSummary
    stress_patterns: StressSummary
    daily_recovery: List[DailyRecovery]
    optimal_recovery_time: float  # hours
    recovery_recommendations: List[str]


PatternData = Annotated[
    Union[
        WorkoutPreferenceData,
        TimingData,
        IntensityResponseData,
        ProgressionData,
        StagnationData,
        MoodCorrelationData,
        RecoveryPatternData,
    ],
    Field(discriminator="pattern_type"),
]

_pattern_data_adapter = TypeAdapter(PatternData)


def parse_pattern_data(pattern_type: Union[PatternType, str], payload: Dict[str, Any]) -> PatternData:
    """Rebuild the typed payload from its stored JSON form."""
    pattern_type = PatternType(pattern_type)
    return _pattern_data_adapter.validate_python({**payload, "pattern_type": pattern_type.value})


def dump_pattern_data(data: PatternData) -> Dict[str, Any]:
    return data.model_dump(mode="json")


# =============================================================================
# STORED STATE
# =============================================================================

@dataclass
class Pattern:
    """Current statistical summary of one user along one axis."""
    user_id: UUID
    pattern_type: PatternType
    data: PatternData
    confidence: float
    id: Optional[UUID] = None
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "user_id": str(self.user_id),
            "pattern_type": self.pattern_type.value,
            "pattern_data": dump_pattern_data(self.data),
            "confidence": round(self.confidence, 1),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass
class Preference:
    user_id: UUID
    preference_type: PreferenceType
    preference_value: str
    strength: float  # 0-100
    id: Optional[UUID] = None
    updated_at: Optional[datetime] = None


@dataclass
class Feedback:
    """One rating event. Append-only."""
    recommendation_id: UUID
    user_id: UUID
    rating: int  # 1-5
    feedback_text: Optional[str] = None
    recommendation_type: Optional[RecommendationType] = None
    id: Optional[UUID] = None
    created_at: Optional[datetime] = None

    @property
    def is_positive(self) -> bool:
        return self.rating >= 4

    @property
    def is_negative(self) -> bool:
        return self.rating <= 2


@dataclass
class CommonPattern:
    pattern_type: PatternType
    value: str
    frequency_percentage: float

    VALUE_KEYS = {
        PatternType.WORKOUT_PREFERENCE: "common_workout_type",
        PatternType.TIMING: "common_time",
        PatternType.INTENSITY_RESPONSE: "common_optimal_intensity",
    }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern_type": self.pattern_type.value,
            "pattern_data": {
                self.VALUE_KEYS[self.pattern_type]: self.value,
                "frequency_percentage": round(self.frequency_percentage, 1),
            },
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CommonPattern":
        pattern_type = PatternType(payload["pattern_type"])
        data = payload.get("pattern_data", {})
        return cls(
            pattern_type=pattern_type,
            value=data[cls.VALUE_KEYS[pattern_type]],
            frequency_percentage=float(data.get("frequency_percentage", 0.0)),
        )


@dataclass
class Cluster:
    """Point-in-time group of similar users and the patterns they share."""
    cluster_name: str
    cluster_description: str
    user_ids: List[UUID]
    common_patterns: List[CommonPattern] = field(default_factory=list)
    id: Optional[UUID] = None
    created_at: Optional[datetime] = None


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


# =============================================================================
# TUNABLE CONSTANTS
# =============================================================================

@dataclass(frozen=True)
class AnalyticsConstants:
    """
    Hand-tuned heuristics with no documented derivation.

    Defaults mirror core.config; services take an instance so tests and
    deployments can override individual values.
    """
    workout_window: int = 20
    min_samples: int = 3
    preference_confidence_cap: float = 90.0
    timing_confidence_cap: float = 85.0
    confidence_per_sample: float = 5.0
    intensity_weight_performance: float = 0.5
    intensity_weight_recovery: float = 0.3
    intensity_weight_mood: float = 0.2
    progression_min_workouts: int = 5
    progression_threshold_pct: float = 1.0
    mood_window_days: float = 1.0
    recovery_lookback_days: int = 14

    top_time_share_pct: float = 40.0
    top_day_share_pct: float = 30.0
    low_frequency: float = 3.0
    high_frequency: float = 5.0
    combined_confidence_factor: float = 0.9
    sleep_threshold_minutes: float = 420.0

    positive_ratio: float = 0.8
    negative_ratio: float = 0.2
    confidence_boost: float = 5.0
    confidence_penalty: float = 10.0
    confidence_floor: float = 10.0
    preference_delta: float = 5.0
    preference_start: float = 50.0

    similarity_pattern_weight: float = 0.5
    similarity_profile_weight: float = 0.3
    similarity_preference_weight: float = 0.2
    min_similarity: float = 0.7
    max_similar_users: int = 10
    candidate_limit: int = 100
    similarity_timeout_s: float = 30.0
    common_pattern_share: float = 0.5

    @classmethod
    def from_settings(cls, settings=None) -> "AnalyticsConstants":
        if settings is None:
            from core.config import settings
        return cls(
            workout_window=settings.ANALYTICS_WORKOUT_WINDOW,
            min_samples=settings.ANALYTICS_MIN_SAMPLES,
            preference_confidence_cap=settings.ANALYTICS_PREFERENCE_CONFIDENCE_CAP,
            timing_confidence_cap=settings.ANALYTICS_TIMING_CONFIDENCE_CAP,
            confidence_per_sample=settings.ANALYTICS_CONFIDENCE_PER_SAMPLE,
            intensity_weight_performance=settings.ANALYTICS_INTENSITY_WEIGHT_PERFORMANCE,
            intensity_weight_recovery=settings.ANALYTICS_INTENSITY_WEIGHT_RECOVERY,
            intensity_weight_mood=settings.ANALYTICS_INTENSITY_WEIGHT_MOOD,
            progression_min_workouts=settings.ANALYTICS_PROGRESSION_MIN_WORKOUTS,
            progression_threshold_pct=settings.ANALYTICS_PROGRESSION_THRESHOLD_PCT,
            mood_window_days=settings.ANALYTICS_MOOD_WINDOW_DAYS,
            recovery_lookback_days=settings.ANALYTICS_RECOVERY_LOOKBACK_DAYS,
            top_time_share_pct=settings.ANALYTICS_TOP_TIME_SHARE_PCT,
            top_day_share_pct=settings.ANALYTICS_TOP_DAY_SHARE_PCT,
            low_frequency=settings.ANALYTICS_LOW_FREQUENCY,
            high_frequency=settings.ANALYTICS_HIGH_FREQUENCY,
            combined_confidence_factor=settings.ANALYTICS_COMBINED_CONFIDENCE_FACTOR,
            sleep_threshold_minutes=settings.ANALYTICS_SLEEP_THRESHOLD_MINUTES,
            positive_ratio=settings.ANALYTICS_POSITIVE_RATIO,
            negative_ratio=settings.ANALYTICS_NEGATIVE_RATIO,
            confidence_boost=settings.ANALYTICS_CONFIDENCE_BOOST,
            confidence_penalty=settings.ANALYTICS_CONFIDENCE_PENALTY,
            confidence_floor=settings.ANALYTICS_CONFIDENCE_FLOOR,
            preference_delta=settings.ANALYTICS_PREFERENCE_DELTA,
            preference_start=settings.ANALYTICS_PREFERENCE_START,
            similarity_pattern_weight=settings.ANALYTICS_SIMILARITY_PATTERN_WEIGHT,
            similarity_profile_weight=settings.ANALYTICS_SIMILARITY_PROFILE_WEIGHT,
            similarity_preference_weight=settings.ANALYTICS_SIMILARITY_PREFERENCE_WEIGHT,
            min_similarity=settings.ANALYTICS_MIN_SIMILARITY,
            max_similar_users=settings.ANALYTICS_MAX_SIMILAR_USERS,
            candidate_limit=settings.ANALYTICS_CANDIDATE_LIMIT,
            similarity_timeout_s=settings.ANALYTICS_SIMILARITY_TIMEOUT_S,
            common_pattern_share=settings.ANALYTICS_COMMON_PATTERN_SHARE,
        )


DEFAULT_CONSTANTS = AnalyticsConstants()
