"""
Pattern Analysis Service

Runs the pattern extractors for one user and writes their results through
the pattern store.

Failure policy:
- InsufficientDataError is a skip, never an error. It is logged at INFO and
  reported as a "skipped" outcome; nothing is written.
- The single-step methods (analyze_intensity_response, ...) let
  UpstreamReadFailure / PersistenceFailure propagate to their caller.
- The batch methods (analyze_workout_patterns, run_secondary_analyses,
  analyze_all) isolate each step: one axis failing is reported as a
  "failed" outcome and the remaining axes still run.

Secondary analyses (intensity, progression, mood, recovery) are launched
after the workout analysis as fire-and-forget jobs on a BackgroundRunner.
Their failures are logged by the runner and never reach the primary caller.
"""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.exceptions import AnalyticsError, InsufficientDataError
from services.activity_history import ActivityHistory, ProfileSource
from services.analytics_types import DEFAULT_CONSTANTS, AnalyticsConstants, Pattern, PatternType
from services.pattern_extractors import (
    Extraction,
    extract_intensity_response,
    extract_mood_correlation,
    extract_progression,
    extract_recovery_pattern,
    extract_stagnation,
    extract_timing,
    extract_workout_preference,
)
from services.pattern_store import PatternStore

logger = logging.getLogger(__name__)

# Upper bound on history pulled for the whole-history analyses.
PROGRESSION_HISTORY_LIMIT = 500
MOOD_HISTORY_LIMIT = 200


class OutcomeStatus(str, Enum):
    WRITTEN = "written"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class AnalysisOutcome:
    pattern_type: PatternType
    status: OutcomeStatus
    pattern: Optional[Pattern] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern_type": self.pattern_type.value,
            "status": self.status.value,
            "pattern": self.pattern.to_dict() if self.pattern else None,
            "reason": self.reason,
        }


# =============================================================================
# BACKGROUND RUNNERS
# =============================================================================

class BackgroundRunner(ABC):
    """Fire-and-forget job submission. Job failures are logged, never raised."""

    @abstractmethod
    def submit(self, name: str, fn: Callable, *args, **kwargs) -> None:
        pass

    def shutdown(self, wait: bool = True) -> None:
        pass


def _log_job_failure(name: str, error: BaseException) -> None:
    if isinstance(error, InsufficientDataError):
        logger.info(f"Background analysis {name} skipped: {error}")
    else:
        logger.error(f"Background analysis {name} failed: {error}", exc_info=error)


class ThreadPoolRunner(BackgroundRunner):

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="analytics")
        self._pending_lock = threading.Lock()
        self._pending = 0

    @property
    def pending(self) -> int:
        with self._pending_lock:
            return self._pending

    def submit(self, name, fn, *args, **kwargs):
        with self._pending_lock:
            self._pending += 1
        future = self._executor.submit(fn, *args, **kwargs)
        future.add_done_callback(lambda f: self._on_done(name, f))

    def _on_done(self, name: str, future: Future) -> None:
        with self._pending_lock:
            self._pending -= 1
        if future.cancelled():
            logger.warning(f"Background analysis {name} was cancelled")
            return
        error = future.exception()
        if error is not None:
            _log_job_failure(name, error)
        else:
            logger.debug(f"Background analysis {name} finished")

    def shutdown(self, wait=True):
        pending = self.pending
        if pending:
            action = "waiting for" if wait else "abandoning"
            logger.warning(f"Background runner shutting down, {action} {pending} in-flight analyses")
        self._executor.shutdown(wait=wait)
        logger.info("Background runner stopped")


class InlineRunner(BackgroundRunner):
    """Runs jobs immediately on the caller's thread (tests, Celery workers)."""

    def __init__(self):
        self.failures: List[str] = []

    def submit(self, name, fn, *args, **kwargs):
        try:
            fn(*args, **kwargs)
        except Exception as e:
            self.failures.append(name)
            _log_job_failure(name, e)


# =============================================================================
# SERVICE
# =============================================================================

class PatternAnalysisService:

    def __init__(
        self,
        history: ActivityHistory,
        patterns: PatternStore,
        constants: AnalyticsConstants = DEFAULT_CONSTANTS,
        runner: Optional[BackgroundRunner] = None,
        profiles: Optional[ProfileSource] = None,
    ):
        self.history = history
        self.patterns = patterns
        self.constants = constants
        self.runner = runner or InlineRunner()
        self.profiles = profiles

    # --- plumbing ---

    def _store(self, user_id: UUID, extraction: Extraction) -> Pattern:
        pattern = self.patterns.upsert_pattern(
            user_id, extraction.pattern_type, extraction.data, extraction.confidence
        )
        logger.info(
            f"Stored {extraction.pattern_type.value} pattern for {user_id} "
            f"(confidence {extraction.confidence:.0f})"
        )
        return pattern

    def _extract_and_store(
        self, user_id: UUID, pattern_type: PatternType, extract: Callable[[], Extraction]
    ) -> AnalysisOutcome:
        try:
            extraction = extract()
        except InsufficientDataError as e:
            logger.info(f"Skipping {pattern_type.value} analysis for {user_id}: {e}")
            return AnalysisOutcome(pattern_type, OutcomeStatus.SKIPPED, reason=str(e))
        return AnalysisOutcome(pattern_type, OutcomeStatus.WRITTEN, pattern=self._store(user_id, extraction))

    @staticmethod
    def _isolated(pattern_type: PatternType, user_id: UUID, step: Callable[[], List[AnalysisOutcome]]) -> List[AnalysisOutcome]:
        try:
            return step()
        except AnalyticsError as e:
            logger.error(f"{pattern_type.value} analysis failed for {user_id}: {e}", exc_info=True)
            return [AnalysisOutcome(pattern_type, OutcomeStatus.FAILED, reason=str(e))]

    def _recent_workouts(self, user_id: UUID):
        return self.history.get_workouts(user_id, limit=self.constants.workout_window, newest_first=True)

    def _user_timezone(self, user_id: UUID) -> Optional[ZoneInfo]:
        if self.profiles is None:
            return None
        profile = self.profiles.get_profile(user_id)
        if profile is None or not profile.timezone:
            return None
        try:
            return ZoneInfo(profile.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {profile.timezone!r} for {user_id}; classifying timing in UTC")
            return None

    # --- single steps ---

    def analyze_workout_preference(self, user_id: UUID) -> AnalysisOutcome:
        return self._extract_and_store(
            user_id,
            PatternType.WORKOUT_PREFERENCE,
            lambda: extract_workout_preference(self._recent_workouts(user_id), self.constants),
        )

    def analyze_timing(self, user_id: UUID) -> AnalysisOutcome:
        return self._extract_and_store(
            user_id,
            PatternType.TIMING,
            lambda: extract_timing(self._recent_workouts(user_id), self.constants, self._user_timezone(user_id)),
        )

    def analyze_intensity_response(self, user_id: UUID) -> AnalysisOutcome:
        return self._extract_and_store(
            user_id,
            PatternType.INTENSITY_RESPONSE,
            lambda: extract_intensity_response(self.history.get_intensity_responses(user_id), self.constants),
        )

    def analyze_progression(self, user_id: UUID) -> List[AnalysisOutcome]:
        """Progression pattern, plus a stagnation pattern when progress has stalled."""
        workouts = self.history.get_workouts(user_id, limit=PROGRESSION_HISTORY_LIMIT, newest_first=False)
        try:
            progression = extract_progression(workouts, self.constants)
        except InsufficientDataError as e:
            logger.info(f"Skipping progression analysis for {user_id}: {e}")
            return [AnalysisOutcome(PatternType.PROGRESSION, OutcomeStatus.SKIPPED, reason=str(e))]

        outcomes = [
            AnalysisOutcome(PatternType.PROGRESSION, OutcomeStatus.WRITTEN, pattern=self._store(user_id, progression))
        ]
        stagnation = extract_stagnation(progression)
        if stagnation is not None:
            outcomes.append(
                AnalysisOutcome(PatternType.STAGNATION, OutcomeStatus.WRITTEN, pattern=self._store(user_id, stagnation))
            )
        return outcomes

    def analyze_mood_correlation(self, user_id: UUID) -> AnalysisOutcome:
        def extract():
            moods = self.history.get_moods(user_id, limit=MOOD_HISTORY_LIMIT)
            workouts = self.history.get_workouts(user_id, limit=MOOD_HISTORY_LIMIT)
            return extract_mood_correlation(workouts, moods, self.constants)

        return self._extract_and_store(user_id, PatternType.MOOD_CORRELATION, extract)

    def analyze_recovery(self, user_id: UUID, today: Optional[datetime] = None) -> AnalysisOutcome:
        today = today or datetime.now(timezone.utc)
        since = (today - timedelta(days=self.constants.recovery_lookback_days)).date()
        return self._extract_and_store(
            user_id,
            PatternType.RECOVERY_PATTERN,
            lambda: extract_recovery_pattern(self.history.get_wearable_summaries(user_id, since=since), self.constants),
        )

    # --- batches ---

    def analyze_workout_patterns(self, user_id: UUID, run_secondary: bool = True) -> List[AnalysisOutcome]:
        """
        Workout preference and timing, then queue the secondary analyses.

        The secondary jobs run on the background runner; only the primary
        outcomes are returned.
        """
        outcomes = []
        outcomes += self._isolated(
            PatternType.WORKOUT_PREFERENCE, user_id, lambda: [self.analyze_workout_preference(user_id)]
        )
        outcomes += self._isolated(PatternType.TIMING, user_id, lambda: [self.analyze_timing(user_id)])
        if run_secondary:
            self.schedule_secondary_analyses(user_id)
        return outcomes

    def schedule_secondary_analyses(self, user_id: UUID) -> None:
        self.runner.submit(f"intensity_response:{user_id}", self.analyze_intensity_response, user_id)
        self.runner.submit(f"progression:{user_id}", self.analyze_progression, user_id)
        self.runner.submit(f"mood_correlation:{user_id}", self.analyze_mood_correlation, user_id)
        self.runner.submit(f"recovery_pattern:{user_id}", self.analyze_recovery, user_id)

    def run_secondary_analyses(self, user_id: UUID) -> List[AnalysisOutcome]:
        """Secondary analyses inline, each isolated from the others."""
        outcomes = []
        outcomes += self._isolated(
            PatternType.INTENSITY_RESPONSE, user_id, lambda: [self.analyze_intensity_response(user_id)]
        )
        outcomes += self._isolated(PatternType.PROGRESSION, user_id, lambda: self.analyze_progression(user_id))
        outcomes += self._isolated(
            PatternType.MOOD_CORRELATION, user_id, lambda: [self.analyze_mood_correlation(user_id)]
        )
        outcomes += self._isolated(PatternType.RECOVERY_PATTERN, user_id, lambda: [self.analyze_recovery(user_id)])
        return outcomes

    def analyze_all(self, user_id: UUID) -> List[AnalysisOutcome]:
        return self.analyze_workout_patterns(user_id, run_secondary=False) + self.run_secondary_analyses(user_id)
