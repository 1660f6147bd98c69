"""
Celery application and beat schedule for background synchronization.
"""
from datetime import timedelta
from typing import Any, Dict

from celery import Celery
from celery.schedules import crontab

from cardsync.core.config import Settings, get_settings

settings = get_settings()

SCHEDULED_SYNC_TASK = "cardsync.tasks.sync_tasks.run_scheduled_sync"


def build_beat_schedule(settings: Settings) -> Dict[str, Dict[str, Any]]:
    """Daily at SYNC_DAILY_TIME when set, otherwise every SYNC_INTERVAL_MINUTES."""
    if settings.SYNC_DAILY_TIME:
        hour, minute = (int(part) for part in settings.SYNC_DAILY_TIME.split(":"))
        schedule: Any = crontab(hour=hour, minute=minute)
    else:
        schedule = timedelta(minutes=settings.SYNC_INTERVAL_MINUTES)
    return {
        "scheduled-full-sync": {
            "task": SCHEDULED_SYNC_TASK,
            "schedule": schedule,
            "options": {"queue": "bulk-sync"},
        },
    }


celery_app = Celery(
    "cardsync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["cardsync.tasks.sync_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_routes={
        SCHEDULED_SYNC_TASK: {"queue": "bulk-sync"},
    },

    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=settings.SYNC_LEASE_TTL_SECONDS,
    task_soft_time_limit=max(settings.SYNC_LEASE_TTL_SECONDS - 300, 60),

    result_expires=3600,

    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    beat_schedule=build_beat_schedule(settings),
)

celery_app.conf.task_queues = {
    "bulk-sync": {
        "exchange": "bulk-sync",
        "routing_key": "bulk-sync",
    },
    "default": {
        "exchange": "default",
        "routing_key": "default",
    },
}
