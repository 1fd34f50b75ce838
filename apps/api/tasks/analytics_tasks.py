"""
Behavior Analytics Tasks

Queued and scheduled runs of the analytics engine.

Design:
    - Each task builds (once per worker process) a SQL-backed engine whose
      background runner is inline: inside a worker the secondary analyses
      simply run in the task.
    - Transient storage failures (PersistenceFailure, UpstreamReadFailure)
      are retried with backoff. Insufficient data is never an error.
    - The nightly refresh enqueues one task per user so one user's failure
      does not block others.
"""

from typing import Dict, Optional
from uuid import UUID

from celery import Task

from tasks import celery_app
from core.exceptions import InsufficientDataError, PersistenceFailure, UpstreamReadFailure
from services.engine import AnalyticsEngine, build_sql_engine
from services.pattern_analysis import InlineRunner, OutcomeStatus
import logging

logger = logging.getLogger(__name__)

RETRYABLE = (PersistenceFailure, UpstreamReadFailure)

_engine: Optional[AnalyticsEngine] = None


def get_task_engine() -> AnalyticsEngine:
    global _engine
    if _engine is None:
        from core.database import SessionLocal

        _engine = build_sql_engine(SessionLocal, runner=InlineRunner())
    return _engine


def _summarize(outcomes) -> Dict:
    return {
        "written": [o.pattern_type.value for o in outcomes if o.status == OutcomeStatus.WRITTEN],
        "skipped": [o.pattern_type.value for o in outcomes if o.status == OutcomeStatus.SKIPPED],
        "failed": [o.pattern_type.value for o in outcomes if o.status == OutcomeStatus.FAILED],
    }


@celery_app.task(
    name="tasks.analyze_user_patterns",
    bind=True,
    autoretry_for=RETRYABLE,
    retry_backoff=True,
    retry_backoff_max=120,
    max_retries=3,
)
def analyze_user_patterns(self: Task, user_id: str) -> Dict:
    """Full pattern analysis (primary and secondary axes) for one user."""
    outcomes = get_task_engine().analysis.analyze_all(UUID(user_id))
    summary = _summarize(outcomes)
    logger.info(
        f"Pattern analysis for {user_id}: {len(summary['written'])} written, "
        f"{len(summary['skipped'])} skipped, {len(summary['failed'])} failed"
    )
    return {"status": "success", "user_id": user_id, **summary}


@celery_app.task(
    name="tasks.run_secondary_analyses",
    bind=True,
    autoretry_for=RETRYABLE,
    retry_backoff=True,
    retry_backoff_max=120,
    max_retries=3,
)
def run_secondary_analyses(self: Task, user_id: str) -> Dict:
    """Intensity, progression, mood and recovery analyses only."""
    outcomes = get_task_engine().analysis.run_secondary_analyses(UUID(user_id))
    return {"status": "success", "user_id": user_id, **_summarize(outcomes)}


@celery_app.task(
    name="tasks.generate_user_recommendations",
    bind=True,
    autoretry_for=RETRYABLE,
    retry_backoff=True,
    retry_backoff_max=120,
    max_retries=3,
)
def generate_user_recommendations(self: Task, user_id: str, include_peers: bool = True) -> Dict:
    recommendations = get_task_engine().generate_recommendations(UUID(user_id), include_peers=include_peers)
    logger.info(f"Generated {len(recommendations)} recommendations for {user_id}")
    return {
        "status": "success",
        "user_id": user_id,
        "recommendation_ids": [str(r.id) for r in recommendations],
    }


@celery_app.task(
    name="tasks.build_user_cluster",
    bind=True,
    autoretry_for=RETRYABLE,
    retry_backoff=True,
    max_retries=2,
)
def build_user_cluster(self: Task, user_id: str, cluster_name: Optional[str] = None) -> Dict:
    try:
        cluster = get_task_engine().similarity.create_cluster(UUID(user_id), cluster_name=cluster_name)
    except InsufficientDataError as e:
        logger.info(f"No cluster built for {user_id}: {e}")
        return {"status": "skipped", "user_id": user_id, "reason": str(e)}

    return {
        "status": "success",
        "user_id": user_id,
        "cluster_id": str(cluster.id),
        "members": [str(m) for m in cluster.user_ids],
    }


@celery_app.task(
    name="tasks.reinforce_preferences",
    bind=True,
    autoretry_for=RETRYABLE,
    retry_backoff=True,
    retry_backoff_max=300,
    max_retries=5,
)
def reinforce_preferences(self: Task, user_id: str, recommendation_id: str, rating: int) -> Dict:
    """
    Re-apply preference reinforcement for feedback that is already recorded.

    Queued by the feedback endpoint when the preference store failed after
    the rating itself was saved.
    """
    reinforced = get_task_engine().feedback.retry_reinforcement_for(
        UUID(user_id), UUID(recommendation_id), rating
    )
    logger.info(f"Reinforced {len(reinforced)} preferences for {user_id} from {recommendation_id}")
    return {
        "status": "success",
        "user_id": user_id,
        "recommendation_id": recommendation_id,
        "reinforced": len(reinforced),
    }


@celery_app.task(name="tasks.refresh_all_user_patterns", bind=True, max_retries=0)
def refresh_all_user_patterns(self: Task) -> Dict:
    """
    Celery beat task: re-run pattern analysis for every user with patterns.
    Runs nightly via celerybeat_schedule.
    """
    try:
        user_ids = get_task_engine().patterns.users_with_patterns()
    except UpstreamReadFailure as e:
        logger.error(f"Pattern refresh could not list users: {e}")
        return {"status": "error", "error": str(e)}

    enqueued = 0
    for user_id in user_ids:
        try:
            analyze_user_patterns.delay(str(user_id))
            enqueued += 1
        except Exception as e:
            logger.warning(f"Could not enqueue pattern refresh for {user_id}: {e}")

    logger.info(f"Pattern refresh: {enqueued}/{len(user_ids)} users enqueued")
    return {"status": "success", "enqueued": enqueued, "total": len(user_ids)}
