"""initial behavior analytics schema

Revision ID: analytics_001
Revises:
Create Date: 2026-10-18

Activity history tables (written by the tracker) and engine state tables
(patterns, preferences, recommendations, feedback, clusters).
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = "analytics_001"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "user_profile",
        sa.Column("user_id", sa.Uuid(), primary_key=True),
        sa.Column("level", sa.Text(), nullable=True),
        sa.Column("goal", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "workout_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("workout_type", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("weight", sa.Float(), nullable=True),
        sa.Column("reps", sa.Integer(), nullable=True),
        sa.Column("sets", sa.Integer(), nullable=True),
        sa.Column("duration_minutes", sa.Float(), nullable=True),
        sa.Column("distance_km", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_workout_log_user_id", "workout_log", ["user_id"])
    op.create_index("ix_workout_log_user_performed", "workout_log", ["user_id", "performed_at"])

    op.create_table(
        "mood_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("logged_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("mood_level", sa.Float(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_mood_log_user_id", "mood_log", ["user_id"])
    op.create_index("ix_mood_log_user_logged", "mood_log", ["user_id", "logged_at"])

    op.create_table(
        "wearable_summary",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("sleep_minutes", sa.Float(), nullable=True),
        sa.Column("deep_sleep_minutes", sa.Float(), nullable=True),
        sa.Column("rem_sleep_minutes", sa.Float(), nullable=True),
        sa.Column("sleep_score", sa.Float(), nullable=True),
        sa.Column("resting_heart_rate", sa.Float(), nullable=True),
        sa.Column("stress_level", sa.Float(), nullable=True),
        sa.Column("steps", sa.Integer(), nullable=True),
        sa.Column("active_minutes", sa.Integer(), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "day", name="uq_wearable_summary_user_day"),
    )
    op.create_index("ix_wearable_summary_user_id", "wearable_summary", ["user_id"])

    op.create_table(
        "intensity_response",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("workout_id", sa.Uuid(), nullable=True),
        sa.Column("intensity_level", sa.Text(), nullable=False),
        sa.Column("performance_score", sa.Float(), nullable=False),
        sa.Column("recovery_time", sa.Float(), nullable=True),
        sa.Column("mood_impact", sa.Float(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "performance_score >= 1 AND performance_score <= 10",
            name="ck_intensity_response_performance",
        ),
        sa.CheckConstraint(
            "mood_impact IS NULL OR (mood_impact >= -5 AND mood_impact <= 5)",
            name="ck_intensity_response_mood",
        ),
    )
    op.create_index("ix_intensity_response_user_id", "intensity_response", ["user_id"])

    op.create_table(
        "user_pattern",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("pattern_type", sa.Text(), nullable=False),
        sa.Column("pattern_data", JSON_TYPE, nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "pattern_type", name="uq_user_pattern_user_type"),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 100", name="ck_user_pattern_confidence"),
    )
    op.create_index("ix_user_pattern_user_id", "user_pattern", ["user_id"])

    op.create_table(
        "user_preference",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("preference_type", sa.Text(), nullable=False),
        sa.Column("preference_value", sa.Text(), nullable=False),
        sa.Column("strength", sa.Float(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "user_id", "preference_type", "preference_value", name="uq_user_preference_triple"
        ),
        sa.CheckConstraint("strength >= 0 AND strength <= 100", name="ck_user_preference_strength"),
    )
    op.create_index("ix_user_preference_user_id", "user_preference", ["user_id"])

    op.create_table(
        "smart_recommendation",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("recommendation_type", sa.Text(), nullable=False),
        sa.Column("recommendation_data", JSON_TYPE, nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("patterns_used", JSON_TYPE, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("feedback_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("positive_feedback_ratio", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "confidence >= 0 AND confidence <= 100", name="ck_smart_recommendation_confidence"
        ),
    )
    op.create_index("ix_smart_recommendation_user_id", "smart_recommendation", ["user_id"])
    op.create_index(
        "ix_smart_recommendation_user_created", "smart_recommendation", ["user_id", "created_at"]
    )

    op.create_table(
        "recommendation_feedback",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "recommendation_id",
            sa.Uuid(),
            sa.ForeignKey("smart_recommendation.id"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("feedback_text", sa.Text(), nullable=True),
        sa.Column("recommendation_type", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_recommendation_feedback_rating"),
    )
    op.create_index(
        "ix_recommendation_feedback_recommendation_id", "recommendation_feedback", ["recommendation_id"]
    )
    op.create_index("ix_recommendation_feedback_user_id", "recommendation_feedback", ["user_id"])

    op.create_table(
        "user_cluster",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("seed_user_id", sa.Uuid(), nullable=False),
        sa.Column("cluster_name", sa.Text(), nullable=False),
        sa.Column("cluster_description", sa.Text(), nullable=True),
        sa.Column("user_ids", JSON_TYPE, nullable=False),
        sa.Column("common_patterns", JSON_TYPE, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("seed_user_id", "cluster_name", name="uq_user_cluster_seed_name"),
    )
    op.create_index("ix_user_cluster_seed_user_id", "user_cluster", ["seed_user_id"])


def downgrade() -> None:
    op.drop_table("user_cluster")
    op.drop_table("recommendation_feedback")
    op.drop_table("smart_recommendation")
    op.drop_table("user_preference")
    op.drop_table("user_pattern")
    op.drop_table("intensity_response")
    op.drop_table("wearable_summary")
    op.drop_table("mood_log")
    op.drop_table("workout_log")
    op.drop_table("user_profile")
