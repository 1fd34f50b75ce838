"""
Analytics Engine wiring.

Builds every service of the behavior-analytics engine around one set of
adapters. Production code uses build_sql_engine() (SQLAlchemy session
factory from core.database); tests build the same graph from the in-memory
adapters with build_in_memory_engine().
"""

import logging
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from services.activity_history import (
    ActivityHistory,
    InMemoryActivityHistory,
    InMemoryProfileSource,
    ProfileSource,
    SessionFactory,
    SqlActivityHistory,
    SqlProfileSource,
)
from services.analytics_types import DEFAULT_CONSTANTS, AnalyticsConstants
from services.feedback_reinforcement import FeedbackReinforcementService, ReinforcementRetry
from services.pattern_analysis import BackgroundRunner, InlineRunner, PatternAnalysisService
from services.pattern_store import (
    ClusterStore,
    InMemoryClusterStore,
    InMemoryPatternStore,
    InMemoryPreferenceStore,
    InMemoryRecommendationStore,
    PatternStore,
    PreferenceStore,
    RecommendationStore,
    SqlClusterStore,
    SqlPatternStore,
    SqlPreferenceStore,
    SqlRecommendationStore,
)
from services.peer_similarity import PeerSimilarityEngine
from services.recommendation_payloads import Recommendation
from services.recommendation_synthesizer import RecommendationSynthesizer
from services.wearable_readiness import ReadinessProvider, WearableReadinessProvider

logger = logging.getLogger(__name__)


@dataclass
class AnalyticsEngine:
    history: ActivityHistory
    profiles: ProfileSource
    patterns: PatternStore
    preferences: PreferenceStore
    recommendations: RecommendationStore
    clusters: ClusterStore
    analysis: PatternAnalysisService
    synthesizer: RecommendationSynthesizer
    feedback: FeedbackReinforcementService
    similarity: PeerSimilarityEngine
    readiness: ReadinessProvider
    constants: AnalyticsConstants = DEFAULT_CONSTANTS

    def generate_recommendations(
        self,
        user_id: UUID,
        include_readiness: bool = True,
        include_peers: bool = True,
    ) -> List[Recommendation]:
        """
        Full synthesis run: stored patterns, readiness signal, peer suggestions.

        The readiness signal and peer suggestions are optional inputs; if
        either lookup fails the run continues without it.
        """
        readiness = None
        if include_readiness:
            try:
                readiness = self.readiness.is_ready_to_train(user_id)
            except Exception as e:
                logger.warning(f"Readiness signal unavailable for {user_id}: {e}")

        peers = None
        if include_peers:
            try:
                peers = self.similarity.recommendations_from_similar_users(user_id)
            except Exception as e:
                logger.warning(f"Peer suggestions unavailable for {user_id}: {e}")

        return self.synthesizer.generate(user_id, readiness=readiness, peer_suggestions=peers)


def assemble_engine(
    history: ActivityHistory,
    profiles: ProfileSource,
    patterns: PatternStore,
    preferences: PreferenceStore,
    recommendations: RecommendationStore,
    clusters: ClusterStore,
    constants: AnalyticsConstants = DEFAULT_CONSTANTS,
    runner: Optional[BackgroundRunner] = None,
    retry_reinforcement: Optional[ReinforcementRetry] = None,
) -> AnalyticsEngine:
    analysis = PatternAnalysisService(history, patterns, constants, runner or InlineRunner(), profiles)
    return AnalyticsEngine(
        history=history,
        profiles=profiles,
        patterns=patterns,
        preferences=preferences,
        recommendations=recommendations,
        clusters=clusters,
        analysis=analysis,
        synthesizer=RecommendationSynthesizer(patterns, recommendations, analysis, constants),
        feedback=FeedbackReinforcementService(recommendations, preferences, constants, retry_reinforcement),
        similarity=PeerSimilarityEngine(patterns, preferences, profiles, history, clusters, constants),
        readiness=WearableReadinessProvider(history, patterns),
        constants=constants,
    )


def build_sql_engine(
    session_factory: SessionFactory,
    constants: Optional[AnalyticsConstants] = None,
    runner: Optional[BackgroundRunner] = None,
    retry_reinforcement: Optional[ReinforcementRetry] = None,
) -> AnalyticsEngine:
    return assemble_engine(
        history=SqlActivityHistory(session_factory),
        profiles=SqlProfileSource(session_factory),
        patterns=SqlPatternStore(session_factory),
        preferences=SqlPreferenceStore(session_factory),
        recommendations=SqlRecommendationStore(session_factory),
        clusters=SqlClusterStore(session_factory),
        constants=constants or AnalyticsConstants.from_settings(),
        runner=runner,
        retry_reinforcement=retry_reinforcement,
    )


def build_in_memory_engine(
    constants: AnalyticsConstants = DEFAULT_CONSTANTS,
    runner: Optional[BackgroundRunner] = None,
) -> AnalyticsEngine:
    return assemble_engine(
        history=InMemoryActivityHistory(),
        profiles=InMemoryProfileSource(),
        patterns=InMemoryPatternStore(),
        preferences=InMemoryPreferenceStore(),
        recommendations=InMemoryRecommendationStore(),
        clusters=InMemoryClusterStore(),
        constants=constants,
        runner=runner,
    )
