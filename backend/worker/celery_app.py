"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Task routing to specialized queues
- Serialization and timezone settings
- Beat schedule for the due-execution poller and daily cleanup
"""

from celery import Celery
from celery.schedules import crontab

from app.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "formflow_automation",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

# Configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task routing: executions and housekeeping on separate queues
    task_routes={
        "worker.tasks.executions.*": {"queue": "executions"},
        "worker.tasks.maintenance.*": {"queue": "default"},
    },

    # Default queue
    task_default_queue="default",

    # Result expiration (24 hours)
    result_expires=86400,

    # Task execution limits; a turn can hold several node timeouts
    task_soft_time_limit=settings.EXECUTION_LEASE_SECONDS - 60,
    task_time_limit=settings.EXECUTION_LEASE_SECONDS,
    task_acks_late=True,
    worker_prefetch_multiplier=1,  # One task at a time per worker process

    # Retry
    task_reject_on_worker_lost=True,
    task_acks_on_failure_or_timeout=True,

    # Beat schedule for periodic tasks
    beat_schedule={
        "poll-due-executions": {
            "task": "worker.tasks.executions.poll_due_executions",
            "schedule": float(settings.SCHEDULER_POLL_SECONDS),
            "options": {"queue": "executions"},
        },
        "cleanup-old-executions": {
            "task": "worker.tasks.maintenance.cleanup_old_executions",
            "schedule": crontab(hour=3, minute=0),  # Daily at 3 AM
            "options": {"queue": "default"},
        },
    },

    # Task modules
    include=[
        "worker.tasks.executions",
        "worker.tasks.maintenance",
    ],
)
