"""
Pytest configuration and fixtures

Engine tests run against the in-memory adapters. Store and task tests use a
fresh in-memory SQLite database per test, built from the ORM metadata, so
nothing persists between tests.
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

# Point the app at SQLite before core.config is imported anywhere.
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from core.database import Base  # noqa: E402
import models  # noqa: E402,F401
from services.analytics_types import (  # noqa: E402
    DEFAULT_CONSTANTS,
    IntensityLevel,
    IntensitySample,
    MoodRecord,
    WorkoutRecord,
)
from services.engine import build_in_memory_engine, build_sql_engine  # noqa: E402
from services.pattern_analysis import InlineRunner  # noqa: E402

# A Monday, 08:00 UTC
BASE_TIME = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_engine():
    """A private in-memory SQLite database with the full schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def engine():
    """Analytics engine over in-memory adapters with inline background jobs."""
    return build_in_memory_engine(DEFAULT_CONSTANTS, runner=InlineRunner())


@pytest.fixture
def sql_engine(session_factory):
    return build_sql_engine(session_factory, constants=DEFAULT_CONSTANTS, runner=InlineRunner())


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def make_workouts():
    """
    Build workouts for one user from (workout_type, days_after_base) pairs.

    Extra keyword arguments are applied to every workout.
    """
    def _make(user_id, entries, hour=8, **fields):
        return [
            WorkoutRecord(
                user_id=user_id,
                performed_at=BASE_TIME.replace(hour=hour) + timedelta(days=offset),
                workout_type=workout_type,
                **fields,
            )
            for workout_type, offset in entries
        ]
    return _make


@pytest.fixture
def make_samples():
    """Intensity samples from (level, performance) pairs with neutral recovery and mood."""
    def _make(user_id, entries, recovery_time=24.0, mood_impact=0.0):
        return [
            IntensitySample(
                user_id=user_id,
                intensity_level=IntensityLevel(level),
                performance_score=performance,
                recovery_time=recovery_time,
                mood_impact=mood_impact,
            )
            for level, performance in entries
        ]
    return _make


@pytest.fixture
def make_moods():
    def _make(user_id, entries):
        return [
            MoodRecord(user_id=user_id, logged_at=BASE_TIME + timedelta(hours=hours), mood_level=level)
            for hours, level in entries
        ]
    return _make
