"""
Celery application configuration.

This module configures Celery to use Redis as both the message broker and result backend.
The worker runs the periodic sweep of expired auth rows; beat schedules it.
"""

from celery import Celery
from celery.schedules import crontab
from authcore.core.config import settings

# Create Celery instance
celery_app = Celery(
    "authcore_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL
)

# Configure Celery
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task behavior
    task_track_started=True,
    task_time_limit=300,  # 5 minutes max per task
    task_soft_time_limit=240,  # Warn at 4 minutes

    # Result backend
    result_expires=3600,  # Results expire after 1 hour

    # Worker behavior
    worker_prefetch_multiplier=1,  # Only fetch 1 task at a time

    # Periodic tasks
    beat_schedule={
        "cleanup-expired-auth-rows": {
            "task": "cleanup_expired_auth_rows",
            "schedule": crontab(minute=0),  # Hourly
        },
    },
)

# Auto-discover tasks from authcore.tasks
celery_app.autodiscover_tasks(["authcore"])
