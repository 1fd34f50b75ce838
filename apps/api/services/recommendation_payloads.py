"""
Recommendation payload variants.

Each synthesized Recommendation carries exactly one of these models in its
``recommendation_data`` column, tagged by ``action``. Reinforcement reads
``salient_attributes()`` to decide which Preferences a rating should nudge.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter

from services.analytics_types import (
    DayPart,
    IntensityLevel,
    PreferenceType,
    RecommendationType,
    Weekday,
)


SalientAttribute = Tuple[PreferenceType, str]


class WorkoutSuggestion(BaseModel):
    action: Literal["workout_suggestion"] = "workout_suggestion"
    workout_type: str
    intensity: IntensityLevel = IntensityLevel.MODERATE
    duration_minutes: int = 45
    preferred_time: Optional[DayPart] = None

    def salient_attributes(self) -> List[SalientAttribute]:
        attrs = [
            (PreferenceType.EXERCISE_TYPE, self.workout_type),
            (PreferenceType.INTENSITY_LEVEL, self.intensity.value),
        ]
        if self.preferred_time is not None:
            attrs.append((PreferenceType.TIME_OF_DAY, self.preferred_time.value))
        return attrs


class ScheduleWindow(BaseModel):
    action: Literal["schedule_workout"] = "schedule_workout"
    preferred_time: DayPart
    time_range: str

    def salient_attributes(self) -> List[SalientAttribute]:
        return [(PreferenceType.TIME_OF_DAY, self.preferred_time.value)]


class FrequencyIncrease(BaseModel):
    action: Literal["increase_frequency"] = "increase_frequency"
    current_frequency: float
    target_frequency: float

    def salient_attributes(self) -> List[SalientAttribute]:
        return []


class OvertrainingWarning(BaseModel):
    action: Literal["optimize_recovery"] = "optimize_recovery"
    current_frequency: float
    recovery_tips: List[str]

    def salient_attributes(self) -> List[SalientAttribute]:
        return []


class ScheduleDay(BaseModel):
    day: Weekday
    workout: bool
    reason: str


class WeeklyPlan(BaseModel):
    action: Literal["weekly_plan"] = "weekly_plan"
    preferred_day: Weekday
    weekly_frequency: float
    suggested_schedule: List[ScheduleDay]

    def salient_attributes(self) -> List[SalientAttribute]:
        return []


class ReadinessCheck(BaseModel):
    action: Literal["readiness_check"] = "readiness_check"
    ready: bool
    recovery_score: float
    recommendations: List[str] = Field(default_factory=list)
    sleep_quality: float = 0.0
    resting_heart_rate: float = 0.0
    stress_level: float = 0.0

    def salient_attributes(self) -> List[SalientAttribute]:
        return []


class SleepImprovement(BaseModel):
    action: Literal["improve_sleep"] = "improve_sleep"
    current_duration: float  # minutes
    target_duration: float = 480.0
    tips: List[str]

    def salient_attributes(self) -> List[SalientAttribute]:
        return []


class PeerWorkout(BaseModel):
    action: Literal["peer_workout"] = "peer_workout"
    source: Literal["similar_users"] = "similar_users"
    workout_type: str
    workout_name: str
    popularity: int
    sets: Optional[int] = None
    reps: Optional[int] = None
    weight: Optional[float] = None
    duration_minutes: Optional[float] = None
    distance_km: Optional[float] = None

    def salient_attributes(self) -> List[SalientAttribute]:
        return [(PreferenceType.EXERCISE_TYPE, self.workout_type)]


@dataclass
class PeerSuggestion:
    """A workout popular among similar users, before it becomes a Recommendation."""
    workout: PeerWorkout
    peer_count: int


RecommendationData = Annotated[
    Union[
        WorkoutSuggestion,
        ScheduleWindow,
        FrequencyIncrease,
        OvertrainingWarning,
        WeeklyPlan,
        ReadinessCheck,
        SleepImprovement,
        PeerWorkout,
    ],
    Field(discriminator="action"),
]

_recommendation_data_adapter = TypeAdapter(RecommendationData)


def parse_recommendation_data(payload: Dict[str, Any]) -> RecommendationData:
    return _recommendation_data_adapter.validate_python(payload)


def dump_recommendation_data(data: RecommendationData) -> Dict[str, Any]:
    return data.model_dump(mode="json")


@dataclass
class Recommendation:
    """
    A synthesized, explained suggestion.

    Title, description, reasoning and payload are fixed at creation. Only the
    reinforcement loop changes confidence, is_active and the feedback stats.
    """
    user_id: UUID
    title: str
    description: str
    recommendation_type: RecommendationType
    data: RecommendationData
    confidence: float
    reasoning: str
    patterns_used: List[UUID] = field(default_factory=list)
    is_active: bool = True
    feedback_count: int = 0
    positive_feedback_ratio: float = 0.0
    id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def source(self) -> Optional[str]:
        return getattr(self.data, "source", None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "user_id": str(self.user_id),
            "title": self.title,
            "description": self.description,
            "recommendation_type": self.recommendation_type.value,
            "recommendation_data": dump_recommendation_data(self.data),
            "confidence": round(self.confidence, 1),
            "reasoning": self.reasoning,
            "patterns_used": [str(p) for p in self.patterns_used],
            "is_active": self.is_active,
            "feedback_count": self.feedback_count,
            "positive_feedback_ratio": round(self.positive_feedback_ratio, 3),
            "source": self.source,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
