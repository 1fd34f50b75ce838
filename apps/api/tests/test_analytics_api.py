"""
Behavior Analytics API Tests

Exercises the router end to end with the in-memory engine injected through
a dependency override, including the engine-error -> HTTP status mapping.
"""

import threading
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from core.exceptions import UpstreamReadFailure
from main import app
from routers import analytics
from routers.analytics import get_analytics_engine, shutdown_analytics_engine
from services.analytics_types import PreferenceType, UserProfile
from services.engine import build_in_memory_engine
from services.pattern_analysis import ThreadPoolRunner


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_analytics_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def _base(user_id):
    return f"/v1/analytics/users/{user_id}"


def _seed(engine, workouts):
    for workout in workouts:
        engine.history.add_workout(workout)


class TestHealth:

    def test_ping(self, client):
        response = client.get("/ping")
        assert response.status_code == 200
        assert response.json() == {"pong": True}

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestPatternEndpoints:

    def test_analyze_and_list(self, client, engine, user_id, make_workouts):
        _seed(engine, make_workouts(user_id, [("cardio", 0), ("cardio", 2), ("strength", 4)]))

        response = client.post(f"{_base(user_id)}/patterns/analyze")

        assert response.status_code == 200
        body = response.json()
        assert body["secondary_queued"] is True
        statuses = {o["pattern_type"]: o["status"] for o in body["outcomes"]}
        assert statuses == {"workout_preference": "written", "timing": "written"}

        listed = client.get(f"{_base(user_id)}/patterns", params={"pattern_type": "workout_preference"})
        assert listed.status_code == 200
        patterns = listed.json()
        assert len(patterns) == 1
        assert patterns[0]["pattern_data"]["preferred_types"][0]["workout_type"] == "cardio"

    def test_analyze_with_secondary_inline(self, client, user_id):
        response = client.post(f"{_base(user_id)}/patterns/analyze", json={"include_secondary": True})

        assert response.status_code == 200
        body = response.json()
        assert body["secondary_queued"] is False
        assert all(o["status"] == "skipped" for o in body["outcomes"])

    def test_unknown_pattern_type_rejected(self, client, user_id):
        response = client.get(f"{_base(user_id)}/patterns", params={"pattern_type": "sleepiness"})
        assert response.status_code == 422

    def test_upstream_failure_is_503(self, client, engine, user_id, monkeypatch):
        def broken(*args, **kwargs):
            raise UpstreamReadFailure("patterns", user_id, RuntimeError("connection reset"))

        monkeypatch.setattr(engine.patterns, "get_patterns", broken)

        response = client.get(f"{_base(user_id)}/patterns")

        assert response.status_code == 503
        assert response.json()["error_code"] == "SERVICE_UNAVAILABLE"


class TestRecommendationEndpoints:

    def _generate(self, client, engine, user_id, make_workouts):
        _seed(engine, make_workouts(user_id, [("cardio", 0), ("cardio", 2), ("cardio", 4), ("strength", 7)]))
        response = client.post(f"{_base(user_id)}/recommendations/generate", json={"include_peers": False})
        assert response.status_code == 201
        return response.json()

    def test_generate_and_list(self, client, engine, user_id, make_workouts):
        generated = self._generate(client, engine, user_id, make_workouts)

        assert generated
        assert all(0 <= r["confidence"] <= 100 for r in generated)
        assert all(r["reasoning"] for r in generated)

        listed = client.get(f"{_base(user_id)}/recommendations")
        assert listed.status_code == 200
        assert {r["id"] for r in listed.json()} == {r["id"] for r in generated}

    def test_feedback_retires_and_reinforces(self, client, engine, user_id, make_workouts):
        generated = self._generate(client, engine, user_id, make_workouts)
        workout = next(r for r in generated if r["recommendation_data"]["action"] == "workout_suggestion")

        response = client.post(
            f"{_base(user_id)}/recommendations/{workout['id']}/feedback",
            json={"rating": 1, "feedback_text": "Not for me"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["recommendation"]["is_active"] is False
        assert body["recommendation"]["feedback_count"] == 1
        assert body["reinforced_preferences"]
        strengths = {
            (p.preference_type, p.preference_value): p.strength for p in engine.preferences.get_preferences(user_id)
        }
        assert strengths[(PreferenceType.EXERCISE_TYPE, "cardio")] == 45

        active = client.get(f"{_base(user_id)}/recommendations").json()
        assert workout["id"] not in {r["id"] for r in active}
        everything = client.get(f"{_base(user_id)}/recommendations", params={"active_only": False}).json()
        assert workout["id"] in {r["id"] for r in everything}

    def test_feedback_unknown_recommendation_is_404(self, client, user_id):
        response = client.post(f"{_base(user_id)}/recommendations/{uuid4()}/feedback", json={"rating": 4})

        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"

    @pytest.mark.parametrize("rating", [0, 6])
    def test_feedback_rating_validated(self, client, user_id, rating):
        response = client.post(f"{_base(user_id)}/recommendations/{uuid4()}/feedback", json={"rating": rating})
        assert response.status_code == 422


class TestIntensityEndpoint:

    def test_record_sample(self, client, engine, user_id):
        response = client.post(
            f"{_base(user_id)}/intensity-responses",
            json={"intensity_level": "high", "performance_score": 8, "recovery_time": 30, "mood_impact": 2},
        )

        assert response.status_code == 201
        assert response.json()["intensity_level"] == "high"
        assert len(engine.history.get_intensity_responses(user_id)) == 1

    def test_out_of_range_score(self, client, user_id):
        response = client.post(
            f"{_base(user_id)}/intensity-responses",
            json={"intensity_level": "high", "performance_score": 11},
        )
        assert response.status_code == 422


class TestPeerEndpoints:

    def _twins(self, engine, make_workouts, user_ids):
        for uid in user_ids:
            _seed(engine, make_workouts(uid, [("cardio", 0), ("cardio", 2), ("cardio", 4)]))
            engine.profiles.set_profile(UserProfile(user_id=uid, level="beginner", goal="endurance"))
            engine.preferences.set_strength(uid, PreferenceType.EXERCISE_TYPE, "cardio", 60)
            engine.analysis.analyze_workout_patterns(uid, run_secondary=False)

    def test_similar_users(self, client, engine, user_id, make_workouts):
        peer = uuid4()
        self._twins(engine, make_workouts, [user_id, peer])

        response = client.get(f"{_base(user_id)}/similar-users")

        assert response.status_code == 200
        body = response.json()
        assert body["complete"] is True
        assert [m["user_id"] for m in body["matches"]] == [str(peer)]
        # no intensity pattern: pattern component tops out at 0.7
        assert body["matches"][0]["similarity"] == pytest.approx(0.85)

    def test_cluster_created(self, client, engine, user_id, make_workouts):
        peer = uuid4()
        self._twins(engine, make_workouts, [user_id, peer])

        response = client.post(f"{_base(user_id)}/clusters", json={"cluster_name": "Cardio crew"})

        assert response.status_code == 201
        cluster = response.json()["cluster"]
        assert cluster["cluster_name"] == "Cardio crew"
        assert cluster["user_ids"] == [str(user_id), str(peer)]

    def test_no_cluster_without_peers(self, client, user_id):
        response = client.post(f"{_base(user_id)}/clusters")

        assert response.status_code == 201
        assert response.json() == {"cluster": None, "reason": "No similar users found"}


class TestShutdown:

    def test_shutdown_drains_background_analyses(self, monkeypatch):
        runner = ThreadPoolRunner(max_workers=1)
        monkeypatch.setattr(analytics, "_engine", build_in_memory_engine(runner=runner))
        release = threading.Event()
        finished = []

        def slow_analysis():
            release.wait(5)
            finished.append(True)

        runner.submit("slow", slow_analysis)
        assert runner.pending == 1
        release.set()

        shutdown_analytics_engine()

        assert finished == [True]
        assert runner.pending == 0
        assert analytics._engine is None

    def test_app_shutdown_without_engine_is_noop(self, monkeypatch):
        monkeypatch.setattr(analytics, "_engine", None)

        with TestClient(app) as client:
            assert client.get("/ping").status_code == 200

        assert analytics._engine is None
