"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from celery.schedules import crontab

# Schedule configuration
beat_schedule = {
    # Nightly pattern refresh - every day at 3 AM UTC
    'refresh-user-patterns': {
        'task': 'tasks.refresh_all_user_patterns',
        'schedule': crontab(hour=3, minute=0),
    },
}
