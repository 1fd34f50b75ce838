"""
Peer Similarity Engine

Scores how alike two users train and builds groups of similar users.

similarity(a, b) in [0, 1]:

    0.5 * pattern component
        +0.3 same top workout type
        +0.2 same top day-part
        +0.2 weekly frequency within 1 (+0.1 within 2)
        +0.3 same optimal intensity
        (a term counts only when both users hold that pattern)
    0.3 * profile component
        +0.5 same experience level, +0.5 same goal
    0.2 * preference component
        mean over A's preferences of 1 - |strength_a - strength_b| / 100,
        0 for preferences B does not share

find_similar_users() scans the candidate population (users with at least
one pattern). It is the one long-running read path: it honours a deadline
and a cancel event, checked between candidates, and returns whatever was
scored so far with complete=False. A candidate whose lookups fail is logged
and skipped.
"""

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from core.exceptions import InsufficientDataError
from services.activity_history import ActivityHistory, ProfileSource
from services.analytics_types import (
    DEFAULT_CONSTANTS,
    AnalyticsConstants,
    Cluster,
    CommonPattern,
    Pattern,
    PatternType,
    Preference,
    UserProfile,
)
from services.pattern_store import ClusterStore, PatternStore, PreferenceStore
from services.recommendation_payloads import PeerSuggestion, PeerWorkout

logger = logging.getLogger(__name__)

# pattern component terms
TOP_TYPE_MATCH = 0.3
TOP_TIME_MATCH = 0.2
FREQUENCY_CLOSE = 0.2
FREQUENCY_NEAR = 0.1
OPTIMAL_INTENSITY_MATCH = 0.3

# profile component terms
LEVEL_MATCH = 0.5
GOAL_MATCH = 0.5

PEER_WORKOUT_LIMIT = 50
PEER_MIN_WORKOUTS_PER_TYPE = 3


@dataclass
class UserSnapshot:
    user_id: UUID
    patterns: Dict[PatternType, Pattern]
    profile: Optional[UserProfile]
    preferences: List[Preference]


@dataclass
class SimilarityBreakdown:
    pattern_component: float
    profile_component: float
    preference_component: float
    total: float


@dataclass
class SimilarUser:
    user_id: UUID
    similarity: float
    breakdown: SimilarityBreakdown

    def to_dict(self):
        return {
            "user_id": str(self.user_id),
            "similarity": round(self.similarity, 4),
            "pattern_component": round(self.breakdown.pattern_component, 4),
            "profile_component": round(self.breakdown.profile_component, 4),
            "preference_component": round(self.breakdown.preference_component, 4),
        }


@dataclass
class SimilaritySearch:
    user_id: UUID
    matches: List[SimilarUser] = field(default_factory=list)
    candidates_total: int = 0
    candidates_scored: int = 0
    candidates_skipped: int = 0
    complete: bool = True

    @property
    def user_ids(self) -> List[UUID]:
        return [m.user_id for m in self.matches]


# =============================================================================
# SCORING (pure)
# =============================================================================

def _top_type(patterns: Dict[PatternType, Pattern]) -> Optional[str]:
    pattern = patterns.get(PatternType.WORKOUT_PREFERENCE)
    top = pattern.data.top if pattern else None
    return top.workout_type if top else None


def _top_time(patterns: Dict[PatternType, Pattern]) -> Optional[str]:
    pattern = patterns.get(PatternType.TIMING)
    top = pattern.data.top_time if pattern else None
    return top.label if top else None


def _optimal_intensity(patterns: Dict[PatternType, Pattern]) -> Optional[str]:
    pattern = patterns.get(PatternType.INTENSITY_RESPONSE)
    return pattern.data.optimal_intensity.value if pattern else None


def pattern_component(a: Dict[PatternType, Pattern], b: Dict[PatternType, Pattern]) -> float:
    score = 0.0

    if PatternType.WORKOUT_PREFERENCE in a and PatternType.WORKOUT_PREFERENCE in b:
        top_a, top_b = _top_type(a), _top_type(b)
        if top_a is not None and top_a == top_b:
            score += TOP_TYPE_MATCH

    if PatternType.TIMING in a and PatternType.TIMING in b:
        time_a, time_b = _top_time(a), _top_time(b)
        if time_a is not None and time_a == time_b:
            score += TOP_TIME_MATCH
        gap = abs(a[PatternType.TIMING].data.weekly_frequency - b[PatternType.TIMING].data.weekly_frequency)
        if gap <= 1:
            score += FREQUENCY_CLOSE
        elif gap <= 2:
            score += FREQUENCY_NEAR

    if PatternType.INTENSITY_RESPONSE in a and PatternType.INTENSITY_RESPONSE in b:
        if _optimal_intensity(a) == _optimal_intensity(b):
            score += OPTIMAL_INTENSITY_MATCH

    return min(score, 1.0)


def profile_component(a: Optional[UserProfile], b: Optional[UserProfile]) -> float:
    if a is None or b is None:
        return 0.0
    score = 0.0
    if a.level and a.level == b.level:
        score += LEVEL_MATCH
    if a.goal and a.goal == b.goal:
        score += GOAL_MATCH
    return score


def preference_component(a: Sequence[Preference], b: Sequence[Preference]) -> float:
    if not a:
        return 0.0
    b_strength = {(p.preference_type, p.preference_value): p.strength for p in b}
    total = 0.0
    for pref in a:
        other = b_strength.get((pref.preference_type, pref.preference_value))
        if other is not None:
            total += 1 - abs(pref.strength - other) / 100
    return total / len(a)


def similarity_breakdown(
    a: UserSnapshot, b: UserSnapshot, constants: AnalyticsConstants = DEFAULT_CONSTANTS
) -> SimilarityBreakdown:
    patterns = pattern_component(a.patterns, b.patterns)
    profile = profile_component(a.profile, b.profile)
    preferences = preference_component(a.preferences, b.preferences)
    total = (
        constants.similarity_pattern_weight * patterns
        + constants.similarity_profile_weight * profile
        + constants.similarity_preference_weight * preferences
    )
    return SimilarityBreakdown(patterns, profile, preferences, max(0.0, min(1.0, total)))


def common_patterns_among(
    patterns_by_user: Dict[UUID, Dict[PatternType, Pattern]],
    share: float = 0.5,
) -> List[CommonPattern]:
    """
    Most frequent top value per pattern type across a group.

    Kept only when it appears for at least `share` of the members that hold
    that pattern type. Ties go to the value seen first.
    """
    extractors = [
        (PatternType.WORKOUT_PREFERENCE, _top_type),
        (PatternType.TIMING, _top_time),
        (PatternType.INTENSITY_RESPONSE, _optimal_intensity),
    ]
    common = []
    for pattern_type, top_value in extractors:
        holders = [p for p in patterns_by_user.values() if pattern_type in p]
        if not holders:
            continue
        values = Counter(v for v in (top_value(p) for p in holders) if v is not None)
        if not values:
            continue
        value, frequency = values.most_common(1)[0]
        if frequency >= len(holders) * share:
            common.append(CommonPattern(pattern_type, value, frequency / len(holders) * 100))
    return common


# =============================================================================
# ENGINE
# =============================================================================

class PeerSimilarityEngine:

    def __init__(
        self,
        patterns: PatternStore,
        preferences: PreferenceStore,
        profiles: ProfileSource,
        history: ActivityHistory,
        clusters: ClusterStore,
        constants: AnalyticsConstants = DEFAULT_CONSTANTS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.patterns = patterns
        self.preferences = preferences
        self.profiles = profiles
        self.history = history
        self.clusters = clusters
        self.constants = constants
        self._clock = clock

    def snapshot(self, user_id: UUID) -> UserSnapshot:
        return UserSnapshot(
            user_id=user_id,
            patterns=self.patterns.patterns_by_type(user_id),
            profile=self.profiles.get_profile(user_id),
            preferences=self.preferences.get_preferences(user_id),
        )

    def similarity(self, user_a: UUID, user_b: UUID) -> float:
        return similarity_breakdown(self.snapshot(user_a), self.snapshot(user_b), self.constants).total

    def find_similar_users(
        self,
        user_id: UUID,
        min_similarity: Optional[float] = None,
        max_k: Optional[int] = None,
        timeout_s: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> SimilaritySearch:
        min_similarity = self.constants.min_similarity if min_similarity is None else min_similarity
        max_k = self.constants.max_similar_users if max_k is None else max_k
        timeout_s = self.constants.similarity_timeout_s if timeout_s is None else timeout_s
        deadline = self._clock() + timeout_s if timeout_s else None

        seed = self.snapshot(user_id)
        candidates = self.patterns.users_with_patterns(exclude=user_id, limit=self.constants.candidate_limit)
        search = SimilaritySearch(user_id=user_id, candidates_total=len(candidates))

        scored = []
        for candidate in candidates:
            if cancel is not None and cancel.is_set():
                logger.warning(f"Similarity search for {user_id} cancelled after {search.candidates_scored} candidates")
                search.complete = False
                break
            if deadline is not None and self._clock() >= deadline:
                logger.warning(
                    f"Similarity search for {user_id} timed out after {search.candidates_scored} "
                    f"of {len(candidates)} candidates"
                )
                search.complete = False
                break
            try:
                breakdown = similarity_breakdown(seed, self.snapshot(candidate), self.constants)
            except Exception as e:
                logger.warning(f"Skipping similarity candidate {candidate} for {user_id}: {e}", exc_info=True)
                search.candidates_skipped += 1
                continue
            search.candidates_scored += 1
            if breakdown.total >= min_similarity:
                scored.append(SimilarUser(candidate, breakdown.total, breakdown))

        scored.sort(key=lambda m: (-m.similarity, str(m.user_id)))
        search.matches = scored[:max_k]
        logger.info(
            f"Found {len(search.matches)} similar users for {user_id} "
            f"({search.candidates_scored} scored, {search.candidates_skipped} skipped)"
        )
        return search

    def common_patterns(self, user_ids: Iterable[UUID]) -> List[CommonPattern]:
        patterns_by_user = {}
        for user_id in user_ids:
            try:
                patterns_by_user[user_id] = self.patterns.patterns_by_type(user_id)
            except Exception as e:
                logger.warning(f"Skipping patterns of {user_id} in common-pattern scan: {e}")
        return common_patterns_among(patterns_by_user, self.constants.common_pattern_share)

    def peer_suggestions(self, similar_user_ids: Sequence[UUID]) -> List[PeerSuggestion]:
        """Workouts popular among the given peers' most recent sessions."""
        if not similar_user_ids:
            return []
        per_user = self.history.get_recent_workouts_for_users(similar_user_ids, PEER_WORKOUT_LIMIT)
        recent = sorted(
            (w for workouts in per_user.values() for w in workouts),
            key=lambda w: w.performed_at,
            reverse=True,
        )[:PEER_WORKOUT_LIMIT]

        by_type: Dict[str, list] = {}
        for workout in recent:
            by_type.setdefault(workout.workout_type, []).append(workout)

        suggestions = []
        for workout_type, workouts in by_type.items():
            if len(workouts) < PEER_MIN_WORKOUTS_PER_TYPE:
                continue
            names = Counter(w.name for w in workouts if w.name)
            if not names:
                continue
            name, popularity = names.most_common(1)[0]
            example = next(w for w in workouts if w.name == name)
            suggestions.append(
                PeerSuggestion(
                    workout=PeerWorkout(
                        workout_type=workout_type,
                        workout_name=name,
                        popularity=popularity,
                        sets=example.sets,
                        reps=example.reps,
                        weight=example.weight,
                        duration_minutes=example.duration_minutes,
                        distance_km=example.distance_km,
                    ),
                    peer_count=len(similar_user_ids),
                )
            )
        return suggestions

    def recommendations_from_similar_users(self, user_id: UUID, search: Optional[SimilaritySearch] = None) -> List[PeerSuggestion]:
        search = search or self.find_similar_users(user_id)
        return self.peer_suggestions(search.user_ids)

    def create_cluster(
        self,
        user_id: UUID,
        cluster_name: Optional[str] = None,
        min_similarity: Optional[float] = None,
        max_k: Optional[int] = None,
    ) -> Cluster:
        """Snapshot the user and their most similar peers with their shared patterns."""
        search = self.find_similar_users(user_id, min_similarity=min_similarity, max_k=max_k)
        if not search.matches:
            raise InsufficientDataError("cluster", 1, 0)

        members = [user_id] + search.user_ids
        name = cluster_name or f"Training group {datetime.now(timezone.utc).date().isoformat()}"
        cluster = Cluster(
            cluster_name=name,
            cluster_description=f"Group of {len(members)} users with similar training patterns",
            user_ids=members,
            common_patterns=self.common_patterns(members),
        )
        stored = self.clusters.upsert_cluster(user_id, cluster)
        logger.info(f"Stored cluster {name!r} for {user_id} with {len(members)} members")
        return stored
