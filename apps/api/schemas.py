from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from uuid import UUID
from typing import Optional, List, Dict, Any

from services.analytics_types import IntensityLevel


# =============================================================================
# PATTERNS
# =============================================================================

class PatternResponse(BaseModel):
    id: Optional[UUID] = None
    user_id: UUID
    pattern_type: str
    pattern_data: Dict[str, Any]
    confidence: float  # 0-100
    last_updated: Optional[datetime] = None


class AnalyzePatternsRequest(BaseModel):
    """Options for an on-demand pattern analysis run."""
    # True: run intensity/progression/mood/recovery in this request as well.
    # False: queue them in the background and return after the workout analysis.
    include_secondary: bool = False


class AnalysisOutcomeResponse(BaseModel):
    pattern_type: str
    status: str  # 'written' | 'skipped' | 'failed'
    pattern: Optional[PatternResponse] = None
    reason: Optional[str] = None


class AnalyzePatternsResponse(BaseModel):
    user_id: UUID
    outcomes: List[AnalysisOutcomeResponse]
    secondary_queued: bool = False


# =============================================================================
# RECOMMENDATIONS
# =============================================================================

class RecommendationResponse(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    description: str
    recommendation_type: str
    recommendation_data: Dict[str, Any]
    confidence: float
    reasoning: str
    patterns_used: List[UUID] = []
    is_active: bool
    feedback_count: int = 0
    positive_feedback_ratio: float = 0.0
    source: Optional[str] = None
    created_at: Optional[datetime] = None


class GenerateRecommendationsRequest(BaseModel):
    include_readiness: bool = True
    include_peers: bool = True


class RecommendationFeedbackCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    feedback_text: Optional[str] = Field(None, max_length=2000)


class PreferenceResponse(BaseModel):
    preference_type: str
    preference_value: str
    strength: float


class RecommendationFeedbackResponse(BaseModel):
    feedback_id: Optional[UUID] = None
    recommendation: RecommendationResponse
    reinforced_preferences: List[PreferenceResponse] = []
    reinforcement_error: Optional[str] = None


# =============================================================================
# INTENSITY RESPONSES
# =============================================================================

class IntensityResponseCreate(BaseModel):
    workout_id: Optional[UUID] = None
    intensity_level: IntensityLevel
    performance_score: float = Field(..., ge=1, le=10)
    recovery_time: Optional[float] = Field(None, ge=0, description="Hours until recovered")
    mood_impact: Optional[float] = Field(None, ge=-5, le=5)
    notes: Optional[str] = None


class IntensityResponseOut(BaseModel):
    id: UUID
    user_id: UUID
    workout_id: Optional[UUID] = None
    intensity_level: IntensityLevel
    performance_score: float
    recovery_time: Optional[float] = None
    mood_impact: Optional[float] = None
    notes: Optional[str] = None
    recorded_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# PEERS / CLUSTERS
# =============================================================================

class SimilarUserResponse(BaseModel):
    user_id: UUID
    similarity: float
    pattern_component: float
    profile_component: float
    preference_component: float


class SimilarUsersResponse(BaseModel):
    user_id: UUID
    matches: List[SimilarUserResponse]
    candidates_total: int
    candidates_scored: int
    candidates_skipped: int
    complete: bool


class ClusterCreate(BaseModel):
    cluster_name: Optional[str] = Field(None, max_length=200)
    min_similarity: Optional[float] = Field(None, ge=0, le=1)
    max_users: Optional[int] = Field(None, ge=1, le=50)


class CommonPatternResponse(BaseModel):
    pattern_type: str
    pattern_data: Dict[str, Any]


class ClusterResponse(BaseModel):
    id: Optional[UUID] = None
    cluster_name: str
    cluster_description: Optional[str] = None
    user_ids: List[UUID]
    common_patterns: List[CommonPatternResponse] = []
    created_at: Optional[datetime] = None


class ClusterResult(BaseModel):
    """A cluster, or null when no similar users were found."""
    cluster: Optional[ClusterResponse] = None
    reason: Optional[str] = None
