from sqlalchemy import Column, Integer, Boolean, CheckConstraint, Float, Date, DateTime, ForeignKey, Text, Index, UniqueConstraint, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from core.database import Base
import uuid
from datetime import datetime, timezone


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ACTIVITY HISTORY (written by the surrounding tracker, read by the engine)
# =============================================================================

class UserProfile(Base):
    """Profile attributes the similarity engine compares. Owned by the tracker."""
    __tablename__ = "user_profile"

    user_id = Column(Uuid, primary_key=True)
    level = Column(Text, nullable=True)  # 'beginner' | 'intermediate' | 'advanced'
    goal = Column(Text, nullable=True)   # e.g. 'strength', 'weight_loss', 'endurance'
    timezone = Column(Text, nullable=True)  # IANA name; day-parts are classified in local time
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class WorkoutLog(Base):
    """
    One logged workout.

    Strength entries carry weight/reps/sets per exercise name; cardio entries
    carry duration and distance. workout_type is the raw label from the
    client and is canonicalized on read.
    """
    __tablename__ = "workout_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    performed_at = Column(DateTime(timezone=True), nullable=False)
    workout_type = Column(Text, nullable=False)
    name = Column(Text, nullable=True)
    weight = Column(Float, nullable=True)
    reps = Column(Integer, nullable=True)
    sets = Column(Integer, nullable=True)
    duration_minutes = Column(Float, nullable=True)
    distance_km = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_workout_log_user_performed", "user_id", "performed_at"),
    )


class MoodLog(Base):
    __tablename__ = "mood_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    logged_at = Column(DateTime(timezone=True), nullable=False)
    mood_level = Column(Float, nullable=False)  # 1-10
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_mood_log_user_logged", "user_id", "logged_at"),
    )


class WearableSummaryLog(Base):
    """Daily wearable summary. One row per user per day (re-syncs overwrite)."""
    __tablename__ = "wearable_summary"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    day = Column(Date, nullable=False)
    sleep_minutes = Column(Float, nullable=True)
    deep_sleep_minutes = Column(Float, nullable=True)
    rem_sleep_minutes = Column(Float, nullable=True)
    sleep_score = Column(Float, nullable=True)
    resting_heart_rate = Column(Float, nullable=True)
    stress_level = Column(Float, nullable=True)
    steps = Column(Integer, nullable=True)
    active_minutes = Column(Integer, nullable=True)
    synced_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "day", name="uq_wearable_summary_user_day"),
    )


class IntensityResponse(Base):
    """Self-reported response to a workout at a given intensity."""
    __tablename__ = "intensity_response"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    workout_id = Column(Uuid, nullable=True)
    intensity_level = Column(Text, nullable=False)  # 'low' | 'moderate' | 'high'
    performance_score = Column(Float, nullable=False)  # 1-10
    recovery_time = Column(Float, nullable=True)  # hours
    mood_impact = Column(Float, nullable=True)  # -5..5
    notes = Column(Text, nullable=True)
    recorded_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("performance_score >= 1 AND performance_score <= 10", name="ck_intensity_response_performance"),
        CheckConstraint("mood_impact IS NULL OR (mood_impact >= -5 AND mood_impact <= 5)", name="ck_intensity_response_mood"),
    )


# =============================================================================
# ENGINE STATE
# =============================================================================

class UserPattern(Base):
    """
    Current statistical summary of one user along one axis.

    Exactly one row per (user_id, pattern_type): every extractor run replaces
    pattern_data and confidence in place. pattern_data holds one tagged
    payload variant (see services.analytics_types.PatternData).
    """
    __tablename__ = "user_pattern"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    pattern_type = Column(Text, nullable=False)
    pattern_data = Column(JSONType, nullable=False)
    confidence = Column(Float, nullable=False)
    last_updated = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "pattern_type", name="uq_user_pattern_user_type"),
        CheckConstraint("confidence >= 0 AND confidence <= 100", name="ck_user_pattern_confidence"),
    )


class UserPreference(Base):
    """Learned weight for one (user, axis, value). Nudged by reinforcement only."""
    __tablename__ = "user_preference"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    preference_type = Column(Text, nullable=False)
    preference_value = Column(Text, nullable=False)
    strength = Column(Float, nullable=False, default=50.0)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "preference_type", "preference_value", name="uq_user_preference_triple"),
        CheckConstraint("strength >= 0 AND strength <= 100", name="ck_user_preference_strength"),
    )


class SmartRecommendation(Base):
    """
    A synthesized, explained suggestion.

    title/description/reasoning/recommendation_data are written once. The
    reinforcement loop owns confidence, is_active, feedback_count and
    positive_feedback_ratio.
    """
    __tablename__ = "smart_recommendation"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    recommendation_type = Column(Text, nullable=False)
    recommendation_data = Column(JSONType, nullable=False)
    confidence = Column(Float, nullable=False)
    reasoning = Column(Text, nullable=False)
    patterns_used = Column(JSONType, nullable=False, default=list)  # ordered list of user_pattern ids
    is_active = Column(Boolean, default=True, nullable=False)
    feedback_count = Column(Integer, default=0, nullable=False)
    positive_feedback_ratio = Column(Float, default=0.0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("confidence >= 0 AND confidence <= 100", name="ck_smart_recommendation_confidence"),
        Index("ix_smart_recommendation_user_created", "user_id", "created_at"),
    )


class RecommendationFeedback(Base):
    """One rating event. Append-only."""
    __tablename__ = "recommendation_feedback"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    recommendation_id = Column(Uuid, ForeignKey("smart_recommendation.id"), nullable=False, index=True)
    user_id = Column(Uuid, nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    feedback_text = Column(Text, nullable=True)
    recommendation_type = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_recommendation_feedback_rating"),
    )


class UserCluster(Base):
    """Point-in-time group of similar users. Not kept in sync with later pattern changes."""
    __tablename__ = "user_cluster"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    seed_user_id = Column(Uuid, nullable=False, index=True)
    cluster_name = Column(Text, nullable=False)
    cluster_description = Column(Text, nullable=True)
    user_ids = Column(JSONType, nullable=False)
    common_patterns = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("seed_user_id", "cluster_name", name="uq_user_cluster_seed_name"),
    )
