"""Celery application configuration."""

from celery import Celery

from gitpulse.config import settings
from gitpulse.observability.logging import configure_logging
from workers.schedules import get_schedules

configure_logging()

# Create Celery app
app = Celery(
    "gitpulse",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "workers.tasks.sync",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=6 * 3600,  # Full history syncs can be long
    task_soft_time_limit=6 * 3600 - 300,
    worker_prefetch_multiplier=1,  # One sync per worker process at a time
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=86400,  # 24 hours
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = get_schedules()

if __name__ == "__main__":
    app.start()
