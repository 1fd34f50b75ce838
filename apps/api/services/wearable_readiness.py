"""
Readiness Signal

Optional plug-in consumed by the recommendation synthesizer: "is this user
ready to train today?" with a 0-100 recovery score and short advice.

WearableReadinessProvider resolution order:
    1. today's wearable summary, scored with the daily recovery formula
    2. the last day of the stored recovery pattern
    3. ready with a neutral score of 75 and a "not enough data" note
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, List, Optional
from uuid import UUID

from services.activity_history import ActivityHistory
from services.analytics_types import PatternType, RecoveryPatternData
from services.pattern_extractors import daily_recovery_for
from services.pattern_store import PatternStore

logger = logging.getLogger(__name__)

DEFAULT_READINESS_SCORE = 75.0
EXCELLENT_RECOVERY = 90.0
POOR_RECOVERY = 50.0
POOR_SLEEP_QUALITY = 60.0
ELEVATED_RESTING_HR = 70.0
HIGH_STRESS = 70.0


@dataclass
class ReadinessSignal:
    ready: bool
    recovery_score: float
    recommendations: List[str] = field(default_factory=list)
    sleep_quality: Optional[float] = None
    resting_heart_rate: Optional[float] = None
    stress_level: Optional[float] = None
    average_sleep_minutes: Optional[float] = None
    source: str = "default"  # 'today' | 'recovery_pattern' | 'default'


class ReadinessProvider(ABC):

    @abstractmethod
    def is_ready_to_train(self, user_id: UUID) -> ReadinessSignal:
        pass


def _today_advice(ready: bool, score: float, sleep_quality: float, resting_hr: float, stress: float) -> List[str]:
    if ready:
        if score >= EXCELLENT_RECOVERY:
            return ["Excellent recovery. A good day for a high-intensity session"]
        return ["Good recovery. Fine for a normal training session"]

    advice = []
    if score < POOR_RECOVERY:
        advice.append("Low recovery. Consider a rest day or very light activity")
    else:
        advice.append("Moderate recovery. Reduce training intensity today")
    if sleep_quality < POOR_SLEEP_QUALITY:
        advice.append("Your sleep quality is low. Prioritize rest")
    if resting_hr > ELEVATED_RESTING_HR:
        advice.append("Your resting heart rate is elevated, which points to fatigue")
    if stress > HIGH_STRESS:
        advice.append("Your stress levels are high. Consider relaxation techniques")
    return advice


class WearableReadinessProvider(ReadinessProvider):

    def __init__(
        self,
        history: ActivityHistory,
        patterns: PatternStore,
        today: Optional[Callable[[], date]] = None,
    ):
        self.history = history
        self.patterns = patterns
        self._today = today or (lambda: datetime.now(timezone.utc).date())

    def is_ready_to_train(self, user_id: UUID) -> ReadinessSignal:
        today = self._today()
        recovery = self.patterns.get_pattern(user_id, PatternType.RECOVERY_PATTERN)
        recovery_data: Optional[RecoveryPatternData] = recovery.data if recovery else None
        average_sleep = recovery_data.sleep_patterns.average_duration if recovery_data else None

        summaries = [s for s in self.history.get_wearable_summaries(user_id, since=today) if s.day == today]
        if summaries:
            day = daily_recovery_for(summaries[0])
            return ReadinessSignal(
                ready=day.ready_to_train,
                recovery_score=round(day.recovery_score),
                recommendations=_today_advice(
                    day.ready_to_train, day.recovery_score, day.sleep_quality, day.resting_heart_rate, day.stress_level
                ),
                sleep_quality=day.sleep_quality,
                resting_heart_rate=day.resting_heart_rate,
                stress_level=day.stress_level,
                average_sleep_minutes=average_sleep,
                source="today",
            )

        if recovery_data and recovery_data.daily_recovery:
            last = recovery_data.daily_recovery[-1]
            logger.debug(f"No wearable data today for {user_id}; using recovery pattern from {last.day}")
            return ReadinessSignal(
                ready=last.ready_to_train,
                recovery_score=last.recovery_score,
                recommendations=list(recovery_data.recovery_recommendations),
                sleep_quality=last.sleep_quality,
                resting_heart_rate=last.resting_heart_rate,
                stress_level=last.stress_level,
                average_sleep_minutes=average_sleep,
                source="recovery_pattern",
            )

        return ReadinessSignal(
            ready=True,
            recovery_score=DEFAULT_READINESS_SCORE,
            recommendations=["Not enough data to determine your recovery state"],
            average_sleep_minutes=average_sleep,
        )
