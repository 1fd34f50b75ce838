"""
Peer Similarity Engine Tests

Score composition, search bounds (deadline, cancel, failing candidates),
shared-pattern detection, peer workout suggestions and cluster snapshots.
"""

import itertools
import threading
from uuid import uuid4

import pytest

from core.exceptions import InsufficientDataError, UpstreamReadFailure
from services.activity_history import InMemoryProfileSource
from services.analytics_types import (
    DEFAULT_CONSTANTS,
    PatternType,
    PreferenceType,
    Share,
    TimingData,
    TypeShare,
    UserProfile,
    WorkoutPreferenceData,
)
from services.peer_similarity import PeerSimilarityEngine, common_patterns_among


def _hold(engine, user_id, top_type="cardio", top_time="morning", frequency=3.0):
    """Store preference and timing patterns for one user."""
    engine.patterns.upsert_pattern(
        user_id,
        PatternType.WORKOUT_PREFERENCE,
        WorkoutPreferenceData(preferred_types=[TypeShare(workout_type=top_type, percentage=75.0)], sample_size=4),
        20,
    )
    engine.patterns.upsert_pattern(
        user_id,
        PatternType.TIMING,
        TimingData(
            preferred_times=[Share(label=top_time, percentage=100.0)],
            preferred_days=[Share(label="monday", percentage=50.0)],
            weekly_frequency=frequency,
            average_gap_days=round(7 / frequency, 2),
            sample_size=4,
        ),
        20,
    )


def _engine_with(engine, profiles=None, clock=None):
    kwargs = {"clock": clock} if clock is not None else {}
    return PeerSimilarityEngine(
        engine.patterns,
        engine.preferences,
        profiles or engine.profiles,
        engine.history,
        engine.clusters,
        DEFAULT_CONSTANTS,
        **kwargs,
    )


class FailingProfiles(InMemoryProfileSource):

    def __init__(self, failing_user):
        super().__init__()
        self.failing_user = failing_user

    def get_profile(self, user_id):
        if user_id == self.failing_user:
            raise UpstreamReadFailure("profile", user_id, RuntimeError("profile service down"))
        return super().get_profile(user_id)


# ===================================================================
# SCORING
# ===================================================================

class TestSimilarityScore:

    def test_pattern_only_match(self, engine, user_id):
        peer = uuid4()
        _hold(engine, user_id, frequency=3.0)
        _hold(engine, peer, frequency=3.5)

        search = engine.similarity.find_similar_users(user_id, min_similarity=0.3)

        assert search.user_ids == [peer]
        match = search.matches[0]
        assert match.breakdown.pattern_component == pytest.approx(0.7)
        assert match.similarity == pytest.approx(0.35)

    def test_below_default_threshold_excluded(self, engine, user_id):
        peer = uuid4()
        _hold(engine, user_id)
        _hold(engine, peer)

        assert engine.similarity.find_similar_users(user_id).matches == []

    def test_profile_and_preferences_add_up(self, engine, user_id):
        peer = uuid4()
        _hold(engine, user_id)
        _hold(engine, peer)
        for uid in (user_id, peer):
            engine.profiles.set_profile(UserProfile(user_id=uid, level="intermediate", goal="endurance"))
        engine.preferences.set_strength(user_id, PreferenceType.EXERCISE_TYPE, "cardio", 60)
        engine.preferences.set_strength(peer, PreferenceType.EXERCISE_TYPE, "cardio", 80)

        assert engine.similarity.similarity(user_id, peer) == pytest.approx(0.35 + 0.3 + 0.2 * 0.8)

    def test_frequency_band(self, engine, user_id):
        near, far = uuid4(), uuid4()
        _hold(engine, user_id, frequency=3.0)
        _hold(engine, near, frequency=4.5)
        _hold(engine, far, frequency=6.0)

        assert engine.similarity.similarity(user_id, near) == pytest.approx(0.5 * 0.6)
        assert engine.similarity.similarity(user_id, far) == pytest.approx(0.5 * 0.5)

    def test_users_without_patterns_score_zero(self, engine, user_id):
        assert engine.similarity.similarity(user_id, uuid4()) == 0.0

    def test_ranking_and_ties(self, engine, user_id):
        _hold(engine, user_id)
        twins = sorted([uuid4(), uuid4()], key=str)
        for twin in twins:
            _hold(engine, twin)
        weaker = uuid4()
        _hold(engine, weaker, top_time="evening")

        search = engine.similarity.find_similar_users(user_id, min_similarity=0.1, max_k=2)

        assert search.user_ids == twins
        assert search.complete is True
        assert search.candidates_total == 3


# ===================================================================
# SEARCH BOUNDS
# ===================================================================

class TestSearchBounds:

    def test_deadline_returns_partial_results(self, engine, user_id):
        _hold(engine, user_id)
        for _ in range(4):
            _hold(engine, uuid4())
        ticks = itertools.count(0, 10)
        similarity = _engine_with(engine, clock=lambda: next(ticks))

        search = similarity.find_similar_users(user_id, min_similarity=0.1, timeout_s=30)

        assert search.complete is False
        assert search.candidates_scored == 2
        assert len(search.matches) == 2

    def test_cancel_stops_search(self, engine, user_id):
        _hold(engine, user_id)
        _hold(engine, uuid4())
        cancel = threading.Event()
        cancel.set()

        search = engine.similarity.find_similar_users(user_id, min_similarity=0.1, cancel=cancel)

        assert search.complete is False
        assert search.candidates_scored == 0
        assert search.matches == []

    def test_failing_candidate_skipped(self, engine, user_id):
        good, bad = uuid4(), uuid4()
        for uid in (user_id, good, bad):
            _hold(engine, uid)
        similarity = _engine_with(engine, profiles=FailingProfiles(bad))

        search = similarity.find_similar_users(user_id, min_similarity=0.1)

        assert search.user_ids == [good]
        assert search.candidates_skipped == 1
        assert search.complete is True


# ===================================================================
# GROUPS
# ===================================================================

class TestCommonPatterns:

    def test_majority_value_per_type(self, engine, user_id):
        a, b = uuid4(), uuid4()
        _hold(engine, user_id, top_type="cardio")
        _hold(engine, a, top_type="cardio", top_time="evening")
        _hold(engine, b, top_type="strength", top_time="afternoon")

        common = {c.pattern_type: c for c in engine.similarity.common_patterns([user_id, a, b])}

        assert common[PatternType.WORKOUT_PREFERENCE].value == "cardio"
        assert common[PatternType.WORKOUT_PREFERENCE].frequency_percentage == pytest.approx(200 / 3)
        # three different day-parts: no value reaches half the group
        assert PatternType.TIMING not in common
        assert PatternType.INTENSITY_RESPONSE not in common

    def test_share_counts_only_holders(self, engine, user_id):
        a, b = uuid4(), uuid4()
        _hold(engine, user_id, top_type="cardio")
        engine.patterns.upsert_pattern(
            a,
            PatternType.WORKOUT_PREFERENCE,
            WorkoutPreferenceData(preferred_types=[TypeShare(workout_type="cardio", percentage=60.0)], sample_size=5),
            25,
        )
        _hold(engine, b, top_type="strength")

        patterns_by_user = {uid: engine.patterns.patterns_by_type(uid) for uid in (user_id, a, b)}
        common = {c.pattern_type: c for c in common_patterns_among(patterns_by_user)}

        # only two of the three members hold a timing pattern, both "morning"
        assert common[PatternType.TIMING].frequency_percentage == 100.0
        assert common_patterns_among({}) == []


class TestPeerSuggestions:

    def test_popular_named_workouts(self, engine, user_id, make_workouts):
        peers = [uuid4(), uuid4()]
        for workout in (
            make_workouts(peers[0], [("strength", 0), ("strength", 2)], name="Deadlift", sets=5, reps=5, weight=120.0)
            + make_workouts(peers[1], [("strength", 1)], name="Deadlift", sets=3, reps=5, weight=100.0)
            + make_workouts(peers[1], [("cardio", 3), ("cardio", 4)], name="Tempo Run")
        ):
            engine.history.add_workout(workout)

        suggestions = engine.similarity.peer_suggestions(peers)

        assert len(suggestions) == 1
        workout = suggestions[0].workout
        assert workout.workout_name == "Deadlift"
        assert workout.popularity == 3
        assert workout.source == "similar_users"
        assert suggestions[0].peer_count == 2

    def test_no_peers_no_suggestions(self, engine):
        assert engine.similarity.peer_suggestions([]) == []


class TestCreateCluster:

    def _twins(self, engine, user_id, count=2):
        peers = [uuid4() for _ in range(count)]
        for uid in [user_id] + peers:
            _hold(engine, uid)
            engine.profiles.set_profile(UserProfile(user_id=uid, level="beginner", goal="strength"))
            engine.preferences.set_strength(uid, PreferenceType.EXERCISE_TYPE, "cardio", 70)
        return peers

    def test_snapshot_stored(self, engine, user_id):
        peers = self._twins(engine, user_id)

        cluster = engine.similarity.create_cluster(user_id, cluster_name="Morning cardio")

        assert cluster.id is not None
        assert cluster.user_ids[0] == user_id
        assert set(cluster.user_ids[1:]) == set(peers)
        assert cluster.cluster_description == "Group of 3 users with similar training patterns"
        values = {c.pattern_type: c.value for c in cluster.common_patterns}
        assert values == {PatternType.WORKOUT_PREFERENCE: "cardio", PatternType.TIMING: "morning"}
        assert engine.clusters.get_clusters(user_id)[0].id == cluster.id

    def test_no_similar_users(self, engine, user_id):
        _hold(engine, user_id)

        with pytest.raises(InsufficientDataError):
            engine.similarity.create_cluster(user_id)
        assert engine.clusters.get_clusters(user_id) == []
