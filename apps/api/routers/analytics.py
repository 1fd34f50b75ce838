"""
Behavior Analytics API Router

Thin HTTP surface over the analytics engine. Authentication is handled by
the surrounding service; every route is scoped to the user id in the path.

Engine errors are mapped to HTTP responses by the handlers in main.py:
RecommendationNotFound -> 404, PersistenceFailure / UpstreamReadFailure -> 503.
Insufficient history never produces an error, only empty results.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status

from core.config import settings
from core.exceptions import InsufficientDataError
from schemas import (
    AnalysisOutcomeResponse,
    AnalyzePatternsRequest,
    AnalyzePatternsResponse,
    ClusterCreate,
    ClusterResponse,
    ClusterResult,
    GenerateRecommendationsRequest,
    IntensityResponseCreate,
    IntensityResponseOut,
    PatternResponse,
    RecommendationFeedbackCreate,
    RecommendationFeedbackResponse,
    RecommendationResponse,
    SimilarUserResponse,
    SimilarUsersResponse,
)
from services.analytics_types import IntensitySample, PatternType, RecommendationType
from services.engine import AnalyticsEngine, build_sql_engine
from services.pattern_analysis import ThreadPoolRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/analytics/users/{user_id}", tags=["analytics"])

_engine: Optional[AnalyticsEngine] = None


def _queue_reinforcement_retry(user_id: UUID, recommendation_id: UUID, rating: int) -> None:
    from tasks.analytics_tasks import reinforce_preferences

    reinforce_preferences.delay(str(user_id), str(recommendation_id), rating)


def get_analytics_engine() -> AnalyticsEngine:
    """Process-wide engine backed by the application database."""
    global _engine
    if _engine is None:
        from core.database import SessionLocal

        _engine = build_sql_engine(
            SessionLocal,
            runner=ThreadPoolRunner(max_workers=settings.ANALYTICS_BACKGROUND_WORKERS),
            retry_reinforcement=_queue_reinforcement_retry,
        )
    return _engine


def shutdown_analytics_engine() -> None:
    """Let in-flight background analyses finish, then drop the cached engine."""
    global _engine
    if _engine is None:
        return
    engine, _engine = _engine, None
    engine.analysis.runner.shutdown(wait=True)


# =============================================================================
# PATTERNS
# =============================================================================

@router.post("/patterns/analyze", response_model=AnalyzePatternsResponse)
def analyze_patterns(
    user_id: UUID,
    request: Optional[AnalyzePatternsRequest] = Body(None),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    """
    Recompute the user's patterns.

    Workout preference and timing always run in the request. The secondary
    analyses either run inline (include_secondary) or are queued in the
    background.
    """
    request = request or AnalyzePatternsRequest()
    if request.include_secondary:
        outcomes = engine.analysis.analyze_all(user_id)
    else:
        outcomes = engine.analysis.analyze_workout_patterns(user_id, run_secondary=True)

    return AnalyzePatternsResponse(
        user_id=user_id,
        outcomes=[AnalysisOutcomeResponse(**o.to_dict()) for o in outcomes],
        secondary_queued=not request.include_secondary,
    )


@router.get("/patterns", response_model=List[PatternResponse])
def list_patterns(
    user_id: UUID,
    pattern_type: Optional[PatternType] = Query(None, description="Filter by pattern type"),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    return [PatternResponse(**p.to_dict()) for p in engine.patterns.get_patterns(user_id, pattern_type)]


# =============================================================================
# RECOMMENDATIONS
# =============================================================================

@router.post(
    "/recommendations/generate",
    response_model=List[RecommendationResponse],
    status_code=status.HTTP_201_CREATED,
)
def generate_recommendations(
    user_id: UUID,
    request: Optional[GenerateRecommendationsRequest] = Body(None),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    request = request or GenerateRecommendationsRequest()
    recommendations = engine.generate_recommendations(
        user_id,
        include_readiness=request.include_readiness,
        include_peers=request.include_peers,
    )
    return [RecommendationResponse(**r.to_dict()) for r in recommendations]


@router.get("/recommendations", response_model=List[RecommendationResponse])
def list_recommendations(
    user_id: UUID,
    recommendation_type: Optional[RecommendationType] = Query(None, alias="type"),
    active_only: bool = Query(True),
    limit: int = Query(50, ge=1, le=100),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    """Newest first."""
    recommendations = engine.recommendations.get_recommendations(
        user_id,
        recommendation_type=recommendation_type,
        active_only=active_only,
        limit=limit,
    )
    return [RecommendationResponse(**r.to_dict()) for r in recommendations]


@router.post(
    "/recommendations/{recommendation_id}/feedback",
    response_model=RecommendationFeedbackResponse,
    status_code=status.HTTP_201_CREATED,
)
def submit_recommendation_feedback(
    user_id: UUID,
    recommendation_id: UUID,
    feedback: RecommendationFeedbackCreate,
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    result = engine.feedback.submit_feedback(
        user_id, recommendation_id, feedback.rating, feedback.feedback_text
    )
    return RecommendationFeedbackResponse(**result.to_dict())


# =============================================================================
# INTENSITY RESPONSES
# =============================================================================

@router.post(
    "/intensity-responses",
    response_model=IntensityResponseOut,
    status_code=status.HTTP_201_CREATED,
)
def record_intensity_response(
    user_id: UUID,
    response: IntensityResponseCreate,
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    sample = engine.history.record_intensity_response(
        IntensitySample(
            user_id=user_id,
            workout_id=response.workout_id,
            intensity_level=response.intensity_level,
            performance_score=response.performance_score,
            recovery_time=response.recovery_time,
            mood_impact=response.mood_impact,
            notes=response.notes,
        )
    )
    return IntensityResponseOut.model_validate(sample)


# =============================================================================
# PEERS
# =============================================================================

@router.get("/similar-users", response_model=SimilarUsersResponse)
def find_similar_users(
    user_id: UUID,
    min_similarity: Optional[float] = Query(None, ge=0, le=1),
    max_users: Optional[int] = Query(None, ge=1, le=50),
    timeout_s: Optional[float] = Query(None, gt=0, le=120),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    search = engine.similarity.find_similar_users(
        user_id, min_similarity=min_similarity, max_k=max_users, timeout_s=timeout_s
    )
    return SimilarUsersResponse(
        user_id=user_id,
        matches=[SimilarUserResponse(**m.to_dict()) for m in search.matches],
        candidates_total=search.candidates_total,
        candidates_scored=search.candidates_scored,
        candidates_skipped=search.candidates_skipped,
        complete=search.complete,
    )


@router.post("/clusters", response_model=ClusterResult, status_code=status.HTTP_201_CREATED)
def create_cluster(
    user_id: UUID,
    request: Optional[ClusterCreate] = Body(None),
    engine: AnalyticsEngine = Depends(get_analytics_engine),
):
    request = request or ClusterCreate()
    try:
        cluster = engine.similarity.create_cluster(
            user_id,
            cluster_name=request.cluster_name,
            min_similarity=request.min_similarity,
            max_k=request.max_users,
        )
    except InsufficientDataError as e:
        logger.info(f"No cluster for {user_id}: {e}")
        return ClusterResult(cluster=None, reason="No similar users found")

    return ClusterResult(
        cluster=ClusterResponse(
            id=cluster.id,
            cluster_name=cluster.cluster_name,
            cluster_description=cluster.cluster_description,
            user_ids=cluster.user_ids,
            common_patterns=[p.to_dict() for p in cluster.common_patterns],
            created_at=cluster.created_at,
        )
    )
