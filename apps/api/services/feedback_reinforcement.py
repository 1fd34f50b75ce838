"""
Feedback & Reinforcement Loop

submit_feedback() handles one rating on one recommendation:

    1. append the Feedback record (immutable)
    2. recompute feedback_count and positive ratio from the full history
    3. nudge confidence: ratio >= 0.8 -> +5 (max 100), ratio <= 0.2 -> -10 (min 10)
    4. rating < 3 retires the recommendation (is_active=False, never undone)
    5. non-neutral ratings nudge the user's Preferences for every salient
       attribute of the recommendation payload (+5 / -5, clamped to 0-100)

Steps 1-4 run under a per-recommendation lock so concurrent ratings see a
consistent history. Step 5 is best effort: a failure there is logged, handed
to the retry hook (a Celery task in production) and does not undo 1-4.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple
from uuid import UUID

from core.exceptions import AnalyticsError, RecommendationNotFound
from services.analytics_types import (
    DEFAULT_CONSTANTS,
    AnalyticsConstants,
    Feedback,
    Preference,
    PreferenceType,
    RecommendationType,
)
from services.pattern_store import KeyedLocks, PreferenceStore, RecommendationStore
from services.recommendation_payloads import Recommendation

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5
RETIRE_BELOW_RATING = 3

# (user_id, recommendation_id, rating) -> None
ReinforcementRetry = Callable[[UUID, UUID, int], None]


@dataclass
class FeedbackStats:
    feedback_count: int
    positive_ratio: float


@dataclass
class FeedbackResult:
    feedback: Feedback
    recommendation: Recommendation
    reinforced: List[Preference] = field(default_factory=list)
    reinforcement_error: Optional[str] = None

    def to_dict(self):
        return {
            "feedback_id": str(self.feedback.id) if self.feedback.id else None,
            "recommendation": self.recommendation.to_dict(),
            "reinforced_preferences": [
                {
                    "preference_type": p.preference_type.value,
                    "preference_value": p.preference_value,
                    "strength": p.strength,
                }
                for p in self.reinforced
            ],
            "reinforcement_error": self.reinforcement_error,
        }


def feedback_stats(history: Sequence[Feedback]) -> FeedbackStats:
    """Aggregate stats from the complete feedback history. Order-independent."""
    count = len(history)
    if count == 0:
        return FeedbackStats(0, 0.0)
    positive = sum(1 for f in history if f.is_positive)
    return FeedbackStats(count, positive / count)


def adjusted_confidence(confidence: float, positive_ratio: float, constants: AnalyticsConstants = DEFAULT_CONSTANTS) -> float:
    if positive_ratio >= constants.positive_ratio:
        return min(confidence + constants.confidence_boost, 100.0)
    if positive_ratio <= constants.negative_ratio:
        return max(confidence - constants.confidence_penalty, constants.confidence_floor)
    return confidence


def salient_attributes(recommendation: Recommendation) -> List[Tuple[PreferenceType, str]]:
    attributes = list(recommendation.data.salient_attributes())
    if recommendation.recommendation_type == RecommendationType.RECOVERY:
        attributes.append((PreferenceType.RECOVERY_NEED, "high"))
    return attributes


class FeedbackReinforcementService:

    def __init__(
        self,
        recommendations: RecommendationStore,
        preferences: PreferenceStore,
        constants: AnalyticsConstants = DEFAULT_CONSTANTS,
        retry_reinforcement: Optional[ReinforcementRetry] = None,
    ):
        self.recommendations = recommendations
        self.preferences = preferences
        self.constants = constants
        self.retry_reinforcement = retry_reinforcement
        self._locks = KeyedLocks()

    def _load(self, user_id: UUID, recommendation_id: UUID) -> Recommendation:
        recommendation = self.recommendations.get_recommendation(recommendation_id)
        if recommendation is None or recommendation.user_id != user_id:
            raise RecommendationNotFound(recommendation_id)
        return recommendation

    def submit_feedback(
        self,
        user_id: UUID,
        recommendation_id: UUID,
        rating: int,
        feedback_text: Optional[str] = None,
    ) -> FeedbackResult:
        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValueError(f"rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}")

        with self._locks.hold(recommendation_id):
            recommendation = self._load(user_id, recommendation_id)
            feedback = self.recommendations.append_feedback(
                Feedback(
                    recommendation_id=recommendation_id,
                    user_id=user_id,
                    rating=rating,
                    feedback_text=feedback_text,
                    recommendation_type=recommendation.recommendation_type,
                )
            )

            stats = feedback_stats(self.recommendations.get_feedback(recommendation_id))
            updates = {
                "feedback_count": stats.feedback_count,
                "positive_feedback_ratio": stats.positive_ratio,
                "confidence": adjusted_confidence(recommendation.confidence, stats.positive_ratio, self.constants),
            }
            if rating < RETIRE_BELOW_RATING and recommendation.is_active:
                updates["is_active"] = False
                logger.info(f"Retiring recommendation {recommendation_id} after rating {rating}")
            recommendation = self.recommendations.update_recommendation(recommendation_id, **updates)

        result = FeedbackResult(feedback=feedback, recommendation=recommendation)
        try:
            result.reinforced = self.reinforce_preferences(user_id, recommendation, rating)
        except AnalyticsError as e:
            logger.error(f"Preference reinforcement failed for recommendation {recommendation_id}: {e}", exc_info=True)
            result.reinforcement_error = str(e)
            if self.retry_reinforcement is not None:
                try:
                    self.retry_reinforcement(user_id, recommendation_id, rating)
                except Exception as retry_error:
                    logger.error(f"Could not queue reinforcement retry for {recommendation_id}: {retry_error}")
        return result

    def reinforce_preferences(self, user_id: UUID, recommendation: Recommendation, rating: int) -> List[Preference]:
        """Nudge each salient preference. Neutral ratings (3) change nothing."""
        if rating >= 4:
            delta = self.constants.preference_delta
        elif rating <= 2:
            delta = -self.constants.preference_delta
        else:
            return []

        reinforced = []
        for preference_type, value in salient_attributes(recommendation):
            reinforced.append(
                self.preferences.adjust_preference(
                    user_id, preference_type, value, delta, start=self.constants.preference_start
                )
            )
        logger.debug(f"Reinforced {len(reinforced)} preferences for {user_id} by {delta:+g}")
        return reinforced

    def retry_reinforcement_for(self, user_id: UUID, recommendation_id: UUID, rating: int) -> List[Preference]:
        """Re-run step 5 for an already-recorded rating."""
        recommendation = self._load(user_id, recommendation_id)
        return self.reinforce_preferences(user_id, recommendation, rating)
