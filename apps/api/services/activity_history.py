"""
Activity History Adapters

Read access to the per-user records the analytics engine mines:
workouts, mood entries, daily wearable summaries, intensity responses and
profile attributes. The engine only ever talks to these interfaces; the
surrounding tracker owns the underlying tables.

Two implementations of each interface:
- Sql*: backed by the SQLAlchemy models, given a session factory.
- InMemory*: plain lists, for tests and embedding.

Any backend error on a read is raised as UpstreamReadFailure so callers can
isolate it per step (or per candidate, in the similarity engine).
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import PersistenceFailure, UpstreamReadFailure
from services.analytics_types import (
    IntensitySample,
    MoodRecord,
    UserProfile,
    WearableSummary,
    WorkoutRecord,
)
from services.category_mapping import canonical_intensity, canonical_workout_type

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# =============================================================================
# INTERFACES
# =============================================================================

class ActivityHistory(ABC):
    """Read-mostly access to a user's logged activity."""

    @abstractmethod
    def get_workouts(
        self,
        user_id: UUID,
        limit: Optional[int] = None,
        newest_first: bool = True,
        since: Optional[datetime] = None,
    ) -> List[WorkoutRecord]:
        pass

    @abstractmethod
    def get_moods(
        self,
        user_id: UUID,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> List[MoodRecord]:
        """Mood entries, oldest first."""
        pass

    @abstractmethod
    def get_wearable_summaries(
        self,
        user_id: UUID,
        limit: Optional[int] = None,
        since: Optional[date] = None,
    ) -> List[WearableSummary]:
        """Daily summaries, newest first."""
        pass

    @abstractmethod
    def get_intensity_responses(self, user_id: UUID, limit: Optional[int] = None) -> List[IntensitySample]:
        """Intensity samples, newest first."""
        pass

    @abstractmethod
    def record_intensity_response(self, sample: IntensitySample) -> IntensitySample:
        pass

    def get_recent_workouts_for_users(
        self, user_ids: Iterable[UUID], per_user_limit: int
    ) -> Dict[UUID, List[WorkoutRecord]]:
        """Most recent workouts for each user. A failing user is omitted, not fatal."""
        result: Dict[UUID, List[WorkoutRecord]] = {}
        for user_id in user_ids:
            try:
                result[user_id] = self.get_workouts(user_id, limit=per_user_limit)
            except UpstreamReadFailure as e:
                logger.warning(f"Skipping workouts for peer {user_id}: {e}")
        return result


class ProfileSource(ABC):
    @abstractmethod
    def get_profile(self, user_id: UUID) -> Optional[UserProfile]:
        pass


# =============================================================================
# SQL IMPLEMENTATIONS
# =============================================================================

class SqlActivityHistory(ActivityHistory):

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def get_workouts(self, user_id, limit=None, newest_first=True, since=None):
        from models import WorkoutLog

        try:
            with self._session_factory() as db:
                query = db.query(WorkoutLog).filter(WorkoutLog.user_id == user_id)
                if since is not None:
                    query = query.filter(WorkoutLog.performed_at >= since)
                order = WorkoutLog.performed_at.desc() if newest_first else WorkoutLog.performed_at.asc()
                query = query.order_by(order, WorkoutLog.id)
                if limit:
                    query = query.limit(limit)
                rows = query.all()
        except SQLAlchemyError as e:
            raise UpstreamReadFailure("workouts", user_id, e) from e

        return [
            WorkoutRecord(
                id=row.id,
                user_id=row.user_id,
                performed_at=_as_utc(row.performed_at),
                workout_type=canonical_workout_type(row.workout_type),
                name=row.name,
                weight=row.weight,
                reps=row.reps,
                sets=row.sets,
                duration_minutes=row.duration_minutes,
                distance_km=row.distance_km,
            )
            for row in rows
        ]

    def get_moods(self, user_id, limit=None, since=None):
        from models import MoodLog

        try:
            with self._session_factory() as db:
                query = db.query(MoodLog).filter(MoodLog.user_id == user_id)
                if since is not None:
                    query = query.filter(MoodLog.logged_at >= since)
                if limit:
                    # newest N, returned oldest first
                    rows = query.order_by(MoodLog.logged_at.desc()).limit(limit).all()
                    rows.reverse()
                else:
                    rows = query.order_by(MoodLog.logged_at.asc()).all()
        except SQLAlchemyError as e:
            raise UpstreamReadFailure("moods", user_id, e) from e

        return [
            MoodRecord(id=row.id, user_id=row.user_id, logged_at=_as_utc(row.logged_at), mood_level=row.mood_level)
            for row in rows
        ]

    def get_wearable_summaries(self, user_id, limit=None, since=None):
        from models import WearableSummaryLog

        try:
            with self._session_factory() as db:
                query = db.query(WearableSummaryLog).filter(WearableSummaryLog.user_id == user_id)
                if since is not None:
                    query = query.filter(WearableSummaryLog.day >= since)
                query = query.order_by(WearableSummaryLog.day.desc())
                if limit:
                    query = query.limit(limit)
                rows = query.all()
        except SQLAlchemyError as e:
            raise UpstreamReadFailure("wearable summaries", user_id, e) from e

        return [
            WearableSummary(
                id=row.id,
                user_id=row.user_id,
                day=row.day,
                sleep_minutes=row.sleep_minutes,
                deep_sleep_minutes=row.deep_sleep_minutes,
                rem_sleep_minutes=row.rem_sleep_minutes,
                sleep_score=row.sleep_score,
                resting_heart_rate=row.resting_heart_rate,
                stress_level=row.stress_level,
                steps=row.steps,
                active_minutes=row.active_minutes,
            )
            for row in rows
        ]

    def get_intensity_responses(self, user_id, limit=None):
        from models import IntensityResponse

        try:
            with self._session_factory() as db:
                query = (
                    db.query(IntensityResponse)
                    .filter(IntensityResponse.user_id == user_id)
                    .order_by(IntensityResponse.recorded_at.desc())
                )
                if limit:
                    query = query.limit(limit)
                rows = query.all()
        except SQLAlchemyError as e:
            raise UpstreamReadFailure("intensity responses", user_id, e) from e

        samples = []
        for row in rows:
            level = canonical_intensity(row.intensity_level)
            if level is None:
                logger.debug(f"Ignoring intensity response {row.id} with unknown level {row.intensity_level!r}")
                continue
            samples.append(
                IntensitySample(
                    id=row.id,
                    user_id=row.user_id,
                    workout_id=row.workout_id,
                    intensity_level=level,
                    performance_score=row.performance_score,
                    recovery_time=row.recovery_time,
                    mood_impact=row.mood_impact,
                    notes=row.notes,
                    recorded_at=_as_utc(row.recorded_at),
                )
            )
        return samples

    def record_intensity_response(self, sample):
        from models import IntensityResponse

        row = IntensityResponse(
            user_id=sample.user_id,
            workout_id=sample.workout_id,
            intensity_level=sample.intensity_level.value,
            performance_score=sample.performance_score,
            recovery_time=sample.recovery_time,
            mood_impact=sample.mood_impact,
            notes=sample.notes,
        )
        if sample.recorded_at is not None:
            row.recorded_at = sample.recorded_at
        try:
            with self._session_factory() as db:
                db.add(row)
                db.commit()
                db.refresh(row)
        except SQLAlchemyError as e:
            raise PersistenceFailure("record_intensity_response", sample.user_id, e) from e

        sample.id = row.id
        sample.recorded_at = _as_utc(row.recorded_at)
        return sample


class SqlProfileSource(ProfileSource):

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def get_profile(self, user_id):
        from models import UserProfile as UserProfileRow

        try:
            with self._session_factory() as db:
                row = db.query(UserProfileRow).filter(UserProfileRow.user_id == user_id).first()
        except SQLAlchemyError as e:
            raise UpstreamReadFailure("profile", user_id, e) from e
        if row is None:
            return None
        return UserProfile(user_id=row.user_id, level=row.level, goal=row.goal, timezone=row.timezone)


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================

class InMemoryActivityHistory(ActivityHistory):

    def __init__(self):
        self._lock = threading.Lock()
        self.workouts: List[WorkoutRecord] = []
        self.moods: List[MoodRecord] = []
        self.summaries: List[WearableSummary] = []
        self.intensity_samples: List[IntensitySample] = []

    def add_workout(self, workout: WorkoutRecord) -> WorkoutRecord:
        if workout.id is None:
            workout.id = uuid4()
        workout.workout_type = canonical_workout_type(workout.workout_type)
        with self._lock:
            self.workouts.append(workout)
        return workout

    def add_mood(self, mood: MoodRecord) -> MoodRecord:
        with self._lock:
            self.moods.append(mood)
        return mood

    def add_wearable_summary(self, summary: WearableSummary) -> WearableSummary:
        with self._lock:
            self.summaries = [
                s for s in self.summaries if not (s.user_id == summary.user_id and s.day == summary.day)
            ]
            self.summaries.append(summary)
        return summary

    def get_workouts(self, user_id, limit=None, newest_first=True, since=None):
        with self._lock:
            rows = [w for w in self.workouts if w.user_id == user_id]
        if since is not None:
            rows = [w for w in rows if w.performed_at >= since]
        rows.sort(key=lambda w: w.performed_at, reverse=newest_first)
        return rows[:limit] if limit else rows

    def get_moods(self, user_id, limit=None, since=None):
        with self._lock:
            rows = [m for m in self.moods if m.user_id == user_id]
        if since is not None:
            rows = [m for m in rows if m.logged_at >= since]
        rows.sort(key=lambda m: m.logged_at)
        return rows[-limit:] if limit else rows

    def get_wearable_summaries(self, user_id, limit=None, since=None):
        with self._lock:
            rows = [s for s in self.summaries if s.user_id == user_id]
        if since is not None:
            rows = [s for s in rows if s.day >= since]
        rows.sort(key=lambda s: s.day, reverse=True)
        return rows[:limit] if limit else rows

    def get_intensity_responses(self, user_id, limit=None):
        with self._lock:
            rows = [s for s in self.intensity_samples if s.user_id == user_id]
        rows.reverse()
        return rows[:limit] if limit else rows

    def record_intensity_response(self, sample):
        if sample.id is None:
            sample.id = uuid4()
        if sample.recorded_at is None:
            sample.recorded_at = datetime.now(timezone.utc)
        with self._lock:
            self.intensity_samples.append(sample)
        return sample


class InMemoryProfileSource(ProfileSource):

    def __init__(self, profiles: Optional[Iterable[UserProfile]] = None):
        self._profiles: Dict[UUID, UserProfile] = {p.user_id: p for p in (profiles or [])}

    def set_profile(self, profile: UserProfile) -> None:
        self._profiles[profile.user_id] = profile

    def get_profile(self, user_id):
        return self._profiles.get(user_id)
