"""
Pattern, Preference, Recommendation and Cluster Stores

The engine's only mutable shared state. Write contracts:

- Patterns: upsert by (user_id, pattern_type). A write replaces pattern_data
  and confidence as a whole record inside one transaction, so a concurrent
  reader sees either the old or the new version. Writers for the same key are
  serialized in-process; across processes the unique constraint decides and a
  losing insert is retried as an update (last writer wins).
- Preferences: upsert by (user_id, preference_type, preference_value). The
  adjustment is read-modify-write under the same per-key lock and is always
  clamped to [0, 100].
- Recommendations: inserted once. Only the feedback-owned fields
  (confidence, is_active, feedback_count, positive_feedback_ratio) may be
  updated afterwards.
- Feedback: append-only.
- Clusters: upsert by (seed user, cluster name); a point-in-time snapshot.

Every backend error on a write surfaces as PersistenceFailure. Retrying is
safe: all writes are upserts or append-only inserts.
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Hashable, Iterator, List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.exceptions import PersistenceFailure, RecommendationNotFound, UpstreamReadFailure
from services.activity_history import SessionFactory, _as_utc
from services.analytics_types import (
    Cluster,
    CommonPattern,
    Feedback,
    Pattern,
    PatternData,
    PatternType,
    Preference,
    PreferenceType,
    RecommendationType,
    clamp,
    dump_pattern_data,
    parse_pattern_data,
)
from services.recommendation_payloads import (
    Recommendation,
    dump_recommendation_data,
    parse_recommendation_data,
)

logger = logging.getLogger(__name__)

# Fields the reinforcement loop may change after a recommendation is written.
MUTABLE_RECOMMENDATION_FIELDS = frozenset(
    {"confidence", "is_active", "feedback_count", "positive_feedback_ratio"}
)

# Insert attempts before a unique-key race is reported as a failure.
UPSERT_ATTEMPTS = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_confidence(value: float) -> float:
    if not 0.0 <= value <= 100.0:
        raise ValueError(f"confidence must be within [0, 100], got {value}")
    return float(value)


def _check_mutable_fields(fields: Dict[str, Any]) -> None:
    illegal = set(fields) - MUTABLE_RECOMMENDATION_FIELDS
    if illegal:
        raise ValueError(f"Recommendation fields are immutable after creation: {sorted(illegal)}")
    if "confidence" in fields:
        _check_confidence(fields["confidence"])


class KeyedLocks:
    """
    One re-entrant lock per key, created on first use.

    Entries are reference counted and dropped when the last holder or waiter
    releases, so the map only holds keys that are in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List] = {}  # key -> [RLock, users]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.RLock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


# =============================================================================
# INTERFACES
# =============================================================================

class PatternStore(ABC):

    @abstractmethod
    def upsert_pattern(
        self, user_id: UUID, pattern_type: PatternType, data: PatternData, confidence: float
    ) -> Pattern:
        pass

    @abstractmethod
    def get_patterns(self, user_id: UUID, pattern_type: Optional[PatternType] = None) -> List[Pattern]:
        pass

    @abstractmethod
    def users_with_patterns(self, exclude: Optional[UUID] = None, limit: Optional[int] = None) -> List[UUID]:
        """Distinct users holding at least one Pattern."""
        pass

    def get_pattern(self, user_id: UUID, pattern_type: PatternType) -> Optional[Pattern]:
        patterns = self.get_patterns(user_id, pattern_type)
        return patterns[0] if patterns else None

    def patterns_by_type(self, user_id: UUID) -> Dict[PatternType, Pattern]:
        return {p.pattern_type: p for p in self.get_patterns(user_id)}


class PreferenceStore(ABC):

    @abstractmethod
    def get_preferences(self, user_id: UUID) -> List[Preference]:
        pass

    @abstractmethod
    def adjust_preference(
        self,
        user_id: UUID,
        preference_type: PreferenceType,
        preference_value: str,
        delta: float,
        start: float = 50.0,
    ) -> Preference:
        """
        Nudge one preference by delta, clamped to [0, 100].

        A preference that does not exist yet is created at clamp(start + delta).
        """
        pass


class RecommendationStore(ABC):

    @abstractmethod
    def insert_recommendations(self, recommendations: List[Recommendation]) -> List[Recommendation]:
        """Persist a batch in one transaction; all or nothing."""
        pass

    def insert_recommendation(self, recommendation: Recommendation) -> Recommendation:
        return self.insert_recommendations([recommendation])[0]

    @abstractmethod
    def get_recommendation(self, recommendation_id: UUID) -> Optional[Recommendation]:
        pass

    @abstractmethod
    def update_recommendation(self, recommendation_id: UUID, **fields) -> Recommendation:
        pass

    @abstractmethod
    def get_recommendations(
        self,
        user_id: UUID,
        recommendation_type: Optional[RecommendationType] = None,
        active_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[Recommendation]:
        """Newest first."""
        pass

    @abstractmethod
    def append_feedback(self, feedback: Feedback) -> Feedback:
        pass

    @abstractmethod
    def get_feedback(self, recommendation_id: UUID) -> List[Feedback]:
        """Complete feedback history, oldest first."""
        pass


class ClusterStore(ABC):

    @abstractmethod
    def upsert_cluster(self, seed_user_id: UUID, cluster: Cluster) -> Cluster:
        pass

    @abstractmethod
    def get_clusters(self, seed_user_id: UUID) -> List[Cluster]:
        pass


# =============================================================================
# SQL IMPLEMENTATIONS
# =============================================================================

def _row_to_pattern(row) -> Pattern:
    pattern_type = PatternType(row.pattern_type)
    return Pattern(
        id=row.id,
        user_id=row.user_id,
        pattern_type=pattern_type,
        data=parse_pattern_data(pattern_type, row.pattern_data),
        confidence=row.confidence,
        last_updated=_as_utc(row.last_updated),
    )


def _row_to_preference(row) -> Preference:
    return Preference(
        id=row.id,
        user_id=row.user_id,
        preference_type=PreferenceType(row.preference_type),
        preference_value=row.preference_value,
        strength=row.strength,
        updated_at=_as_utc(row.updated_at),
    )


def _row_to_recommendation(row) -> Recommendation:
    return Recommendation(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        description=row.description,
        recommendation_type=RecommendationType(row.recommendation_type),
        data=parse_recommendation_data(row.recommendation_data),
        confidence=row.confidence,
        reasoning=row.reasoning,
        patterns_used=[UUID(str(p)) for p in (row.patterns_used or [])],
        is_active=row.is_active,
        feedback_count=row.feedback_count,
        positive_feedback_ratio=row.positive_feedback_ratio,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def _row_to_feedback(row) -> Feedback:
    return Feedback(
        id=row.id,
        recommendation_id=row.recommendation_id,
        user_id=row.user_id,
        rating=row.rating,
        feedback_text=row.feedback_text,
        recommendation_type=RecommendationType(row.recommendation_type) if row.recommendation_type else None,
        created_at=_as_utc(row.created_at),
    )


def _row_to_cluster(row) -> Cluster:
    return Cluster(
        id=row.id,
        cluster_name=row.cluster_name,
        cluster_description=row.cluster_description or "",
        user_ids=[UUID(str(u)) for u in row.user_ids],
        common_patterns=[CommonPattern.from_dict(p) for p in (row.common_patterns or [])],
        created_at=_as_utc(row.created_at),
    )


class SqlPatternStore(PatternStore):

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory
        self._locks = KeyedLocks()

    def upsert_pattern(self, user_id, pattern_type, data, confidence):
        from models import UserPattern

        pattern_type = PatternType(pattern_type)
        if data.pattern_type != pattern_type.value:
            raise ValueError(f"{data.pattern_type} payload cannot be stored as {pattern_type.value}")
        confidence = _check_confidence(confidence)
        payload = dump_pattern_data(data)

        with self._locks.hold((user_id, pattern_type)):
            for attempt in range(1, UPSERT_ATTEMPTS + 1):
                try:
                    with self._session_factory() as db:
                        row = (
                            db.query(UserPattern)
                            .filter(
                                UserPattern.user_id == user_id,
                                UserPattern.pattern_type == pattern_type.value,
                            )
                            .with_for_update()
                            .first()
                        )
                        if row is None:
                            row = UserPattern(user_id=user_id, pattern_type=pattern_type.value)
                            db.add(row)
                        row.pattern_data = payload
                        row.confidence = confidence
                        row.last_updated = _utcnow()
                        db.commit()
                        return _row_to_pattern(row)
                except IntegrityError as e:
                    if attempt == UPSERT_ATTEMPTS:
                        raise PersistenceFailure("upsert_pattern", (user_id, pattern_type.value), e) from e
                    logger.info(f"Concurrent insert of {pattern_type.value} pattern for {user_id}, retrying as update")
                except SQLAlchemyError as e:
                    logger.error(f"Failed to upsert {pattern_type.value} pattern for {user_id}: {e}")
                    raise PersistenceFailure("upsert_pattern", (user_id, pattern_type.value), e) from e

    def get_patterns(self, user_id, pattern_type=None):
        from models import UserPattern

        try:
            with self._session_factory() as db:
                query = db.query(UserPattern).filter(UserPattern.user_id == user_id)
                if pattern_type is not None:
                    query = query.filter(UserPattern.pattern_type == PatternType(pattern_type).value)
                rows = query.order_by(UserPattern.pattern_type).all()
                return [_row_to_pattern(row) for row in rows]
        except SQLAlchemyError as e:
            raise UpstreamReadFailure("patterns", user_id, e) from e

    def users_with_patterns(self, exclude=None, limit=None):
        from models import UserPattern

        try:
            with self._session_factory() as db:
                query = db.query(UserPattern.user_id).distinct()
                if exclude is not None:
                    query = query.filter(UserPattern.user_id != exclude)
                query = query.order_by(UserPattern.user_id)
                if limit:
                    query = query.limit(limit)
                return [row[0] for row in query.all()]
        except SQLAlchemyError as e:
            raise UpstreamReadFailure("pattern owners", exclude, e) from e


class SqlPreferenceStore(PreferenceStore):

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory
        self._locks = KeyedLocks()

    def get_preferences(self, user_id):
        from models import UserPreference

        try:
            with self._session_factory() as db:
                rows = (
                    db.query(UserPreference)
                    .filter(UserPreference.user_id == user_id)
                    .order_by(UserPreference.preference_type, UserPreference.preference_value)
                    .all()
                )
                return [_row_to_preference(row) for row in rows]
        except SQLAlchemyError as e:
            raise UpstreamReadFailure("preferences", user_id, e) from e

    def adjust_preference(self, user_id, preference_type, preference_value, delta, start=50.0):
        from models import UserPreference

        preference_type = PreferenceType(preference_type)
        key = (user_id, preference_type, preference_value)

        with self._locks.hold(key):
            for attempt in range(1, UPSERT_ATTEMPTS + 1):
                try:
                    with self._session_factory() as db:
                        row = (
                            db.query(UserPreference)
                            .filter(
                                UserPreference.user_id == user_id,
                                UserPreference.preference_type == preference_type.value,
                                UserPreference.preference_value == preference_value,
                            )
                            .with_for_update()
                            .first()
                        )
                        if row is None:
                            row = UserPreference(
                                user_id=user_id,
                                preference_type=preference_type.value,
                                preference_value=preference_value,
                                strength=clamp(start + delta),
                            )
                            db.add(row)
                        else:
                            row.strength = clamp(row.strength + delta)
                        row.updated_at = _utcnow()
                        db.commit()
                        return _row_to_preference(row)
                except IntegrityError as e:
                    if attempt == UPSERT_ATTEMPTS:
                        raise PersistenceFailure("adjust_preference", key, e) from e
                    logger.info(f"Concurrent insert of preference {preference_type.value}={preference_value} for {user_id}, retrying")
                except SQLAlchemyError as e:
                    logger.error(f"Failed to adjust preference {preference_type.value}={preference_value} for {user_id}: {e}")
                    raise PersistenceFailure("adjust_preference", key, e) from e


class SqlRecommendationStore(RecommendationStore):

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def insert_recommendations(self, recommendations):
        from models import SmartRecommendation

        if not recommendations:
            return []
        try:
            with self._session_factory() as db:
                rows = []
                for rec in recommendations:
                    row = SmartRecommendation(
                        user_id=rec.user_id,
                        title=rec.title,
                        description=rec.description,
                        recommendation_type=rec.recommendation_type.value,
                        recommendation_data=dump_recommendation_data(rec.data),
                        confidence=_check_confidence(rec.confidence),
                        reasoning=rec.reasoning,
                        patterns_used=[str(p) for p in rec.patterns_used],
                        is_active=rec.is_active,
                        feedback_count=rec.feedback_count,
                        positive_feedback_ratio=rec.positive_feedback_ratio,
                    )
                    db.add(row)
                    rows.append(row)
                db.commit()
                return [_row_to_recommendation(row) for row in rows]
        except SQLAlchemyError as e:
            user_id = recommendations[0].user_id
            logger.error(f"Failed to insert {len(recommendations)} recommendations for {user_id}: {e}")
            raise PersistenceFailure("insert_recommendations", user_id, e) from e

    def get_recommendation(self, recommendation_id):
        from models import SmartRecommendation

        try:
            with self._session_factory() as db:
                row = db.get(SmartRecommendation, recommendation_id)
                return _row_to_recommendation(row) if row is not None else None
        except SQLAlchemyError as e:
            raise UpstreamReadFailure("recommendation", recommendation_id, e) from e

    def update_recommendation(self, recommendation_id, **fields):
        from models import SmartRecommendation

        _check_mutable_fields(fields)
        try:
            with self._session_factory() as db:
                row = db.get(SmartRecommendation, recommendation_id, with_for_update=True)
                if row is None:
                    raise RecommendationNotFound(recommendation_id)
                for name, value in fields.items():
                    setattr(row, name, value)
                row.updated_at = _utcnow()
                db.commit()
                return _row_to_recommendation(row)
        except SQLAlchemyError as e:
            logger.error(f"Failed to update recommendation {recommendation_id}: {e}")
            raise PersistenceFailure("update_recommendation", recommendation_id, e) from e

    def get_recommendations(self, user_id, recommendation_type=None, active_only=False, limit=None):
        from models import SmartRecommendation

        try:
            with self._session_factory() as db:
                query = db.query(SmartRecommendation).filter(SmartRecommendation.user_id == user_id)
                if recommendation_type is not None:
                    query = query.filter(
                        SmartRecommendation.recommendation_type == RecommendationType(recommendation_type).value
                    )
                if active_only:
                    query = query.filter(SmartRecommendation.is_active.is_(True))
                query = query.order_by(SmartRecommendation.created_at.desc())
                if limit:
                    query = query.limit(limit)
                return [_row_to_recommendation(row) for row in query.all()]
        except SQLAlchemyError as e:
            raise UpstreamReadFailure("recommendations", user_id, e) from e

    def append_feedback(self, feedback):
        from models import RecommendationFeedback

        row = RecommendationFeedback(
            recommendation_id=feedback.recommendation_id,
            user_id=feedback.user_id,
            rating=feedback.rating,
            feedback_text=feedback.feedback_text,
            recommendation_type=feedback.recommendation_type.value if feedback.recommendation_type else None,
        )
        try:
            with self._session_factory() as db:
                db.add(row)
                db.commit()
                return _row_to_feedback(row)
        except SQLAlchemyError as e:
            logger.error(f"Failed to append feedback for recommendation {feedback.recommendation_id}: {e}")
            raise PersistenceFailure("append_feedback", feedback.recommendation_id, e) from e

    def get_feedback(self, recommendation_id):
        from models import RecommendationFeedback

        try:
            with self._session_factory() as db:
                rows = (
                    db.query(RecommendationFeedback)
                    .filter(RecommendationFeedback.recommendation_id == recommendation_id)
                    .order_by(RecommendationFeedback.created_at.asc())
                    .all()
                )
                return [_row_to_feedback(row) for row in rows]
        except SQLAlchemyError as e:
            raise UpstreamReadFailure("feedback", recommendation_id, e) from e


class SqlClusterStore(ClusterStore):

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory
        self._locks = KeyedLocks()

    def upsert_cluster(self, seed_user_id, cluster):
        from models import UserCluster

        key = (seed_user_id, cluster.cluster_name)
        user_ids = [str(u) for u in cluster.user_ids]
        common = [p.to_dict() for p in cluster.common_patterns]

        with self._locks.hold(key):
            for attempt in range(1, UPSERT_ATTEMPTS + 1):
                try:
                    with self._session_factory() as db:
                        row = (
                            db.query(UserCluster)
                            .filter(
                                UserCluster.seed_user_id == seed_user_id,
                                UserCluster.cluster_name == cluster.cluster_name,
                            )
                            .first()
                        )
                        if row is None:
                            row = UserCluster(seed_user_id=seed_user_id, cluster_name=cluster.cluster_name)
                            db.add(row)
                        row.cluster_description = cluster.cluster_description
                        row.user_ids = user_ids
                        row.common_patterns = common
                        row.created_at = _utcnow()
                        db.commit()
                        return _row_to_cluster(row)
                except IntegrityError as e:
                    if attempt == UPSERT_ATTEMPTS:
                        raise PersistenceFailure("upsert_cluster", key, e) from e
                except SQLAlchemyError as e:
                    logger.error(f"Failed to upsert cluster {cluster.cluster_name!r} for {seed_user_id}: {e}")
                    raise PersistenceFailure("upsert_cluster", key, e) from e

    def get_clusters(self, seed_user_id):
        from models import UserCluster

        try:
            with self._session_factory() as db:
                rows = (
                    db.query(UserCluster)
                    .filter(UserCluster.seed_user_id == seed_user_id)
                    .order_by(UserCluster.created_at.desc())
                    .all()
                )
                return [_row_to_cluster(row) for row in rows]
        except SQLAlchemyError as e:
            raise UpstreamReadFailure("clusters", seed_user_id, e) from e


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================

class InMemoryPatternStore(PatternStore):

    def __init__(self):
        self._lock = threading.Lock()
        self._patterns: Dict[Tuple[UUID, PatternType], Pattern] = {}
        self.write_count = 0

    def upsert_pattern(self, user_id, pattern_type, data, confidence):
        pattern_type = PatternType(pattern_type)
        if data.pattern_type != pattern_type.value:
            raise ValueError(f"{data.pattern_type} payload cannot be stored as {pattern_type.value}")
        confidence = _check_confidence(confidence)
        with self._lock:
            existing = self._patterns.get((user_id, pattern_type))
            pattern = Pattern(
                id=existing.id if existing else uuid4(),
                user_id=user_id,
                pattern_type=pattern_type,
                data=data.model_copy(deep=True),
                confidence=confidence,
                last_updated=_utcnow(),
            )
            self._patterns[(user_id, pattern_type)] = pattern
            self.write_count += 1
        return replace(pattern)

    def get_patterns(self, user_id, pattern_type=None):
        with self._lock:
            patterns = [
                replace(p) for (uid, ptype), p in self._patterns.items()
                if uid == user_id and (pattern_type is None or ptype == PatternType(pattern_type))
            ]
        return sorted(patterns, key=lambda p: p.pattern_type.value)

    def users_with_patterns(self, exclude=None, limit=None):
        with self._lock:
            users = sorted({uid for uid, _ in self._patterns if uid != exclude}, key=str)
        return users[:limit] if limit else users


class InMemoryPreferenceStore(PreferenceStore):

    def __init__(self):
        self._lock = threading.Lock()
        self._preferences: Dict[Tuple[UUID, PreferenceType, str], Preference] = {}

    def set_strength(self, user_id: UUID, preference_type: PreferenceType, value: str, strength: float) -> None:
        with self._lock:
            self._preferences[(user_id, preference_type, value)] = Preference(
                id=uuid4(),
                user_id=user_id,
                preference_type=preference_type,
                preference_value=value,
                strength=clamp(strength),
                updated_at=_utcnow(),
            )

    def get_preferences(self, user_id):
        with self._lock:
            prefs = [replace(p) for (uid, _, _), p in self._preferences.items() if uid == user_id]
        return sorted(prefs, key=lambda p: (p.preference_type.value, p.preference_value))

    def adjust_preference(self, user_id, preference_type, preference_value, delta, start=50.0):
        preference_type = PreferenceType(preference_type)
        key = (user_id, preference_type, preference_value)
        with self._lock:
            existing = self._preferences.get(key)
            if existing is None:
                pref = Preference(
                    id=uuid4(),
                    user_id=user_id,
                    preference_type=preference_type,
                    preference_value=preference_value,
                    strength=clamp(start + delta),
                )
            else:
                pref = replace(existing, strength=clamp(existing.strength + delta))
            pref.updated_at = _utcnow()
            self._preferences[key] = pref
        return replace(pref)


class InMemoryRecommendationStore(RecommendationStore):

    def __init__(self):
        self._lock = threading.Lock()
        self._recommendations: Dict[UUID, Recommendation] = {}
        self._order: Dict[UUID, int] = {}
        self._feedback: Dict[UUID, List[Feedback]] = {}
        self._sequence = itertools.count()

    def insert_recommendations(self, recommendations):
        for rec in recommendations:
            _check_confidence(rec.confidence)
        now = _utcnow()
        stored = []
        with self._lock:
            for rec in recommendations:
                copy = replace(rec, id=uuid4(), created_at=now, updated_at=now, patterns_used=list(rec.patterns_used))
                self._recommendations[copy.id] = copy
                self._order[copy.id] = next(self._sequence)
                stored.append(replace(copy))
        return stored

    def get_recommendation(self, recommendation_id):
        with self._lock:
            rec = self._recommendations.get(recommendation_id)
            return replace(rec) if rec else None

    def update_recommendation(self, recommendation_id, **fields):
        _check_mutable_fields(fields)
        with self._lock:
            rec = self._recommendations.get(recommendation_id)
            if rec is None:
                raise RecommendationNotFound(recommendation_id)
            updated = replace(rec, updated_at=_utcnow(), **fields)
            self._recommendations[recommendation_id] = updated
            return replace(updated)

    def get_recommendations(self, user_id, recommendation_type=None, active_only=False, limit=None):
        with self._lock:
            recs = [r for r in self._recommendations.values() if r.user_id == user_id]
            if recommendation_type is not None:
                recs = [r for r in recs if r.recommendation_type == RecommendationType(recommendation_type)]
            if active_only:
                recs = [r for r in recs if r.is_active]
            recs.sort(key=lambda r: self._order[r.id], reverse=True)
            recs = [replace(r) for r in recs]
        return recs[:limit] if limit else recs

    def append_feedback(self, feedback):
        stored = replace(feedback, id=uuid4(), created_at=_utcnow())
        with self._lock:
            self._feedback.setdefault(feedback.recommendation_id, []).append(stored)
        return replace(stored)

    def get_feedback(self, recommendation_id):
        with self._lock:
            return [replace(f) for f in self._feedback.get(recommendation_id, [])]


class InMemoryClusterStore(ClusterStore):

    def __init__(self):
        self._lock = threading.Lock()
        self._clusters: Dict[Tuple[UUID, str], Cluster] = {}

    def upsert_cluster(self, seed_user_id, cluster):
        key = (seed_user_id, cluster.cluster_name)
        with self._lock:
            existing = self._clusters.get(key)
            stored = replace(
                cluster,
                id=existing.id if existing else uuid4(),
                user_ids=list(cluster.user_ids),
                common_patterns=list(cluster.common_patterns),
                created_at=_utcnow(),
            )
            self._clusters[key] = stored
        return replace(stored)

    def get_clusters(self, seed_user_id):
        with self._lock:
            clusters = [replace(c) for (seed, _), c in self._clusters.items() if seed == seed_user_id]
        return sorted(clusters, key=lambda c: c.created_at, reverse=True)
