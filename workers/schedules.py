"""Celery beat schedules for periodic tasks."""

from celery.schedules import crontab

# Schedule definitions
# These are imported into celery_app.py

SCHEDULES = {
    # ========== Sync Tasks ==========

    # Auto-sync (mode and targets come from settings): every hour at minute 5
    "auto-sync-hourly": {
        "task": "workers.tasks.sync.run_auto_sync",
        "schedule": crontab(minute=5),
        "options": {"queue": "sync"},
    },

    # ========== Maintenance Tasks ==========

    # Re-classify files and rebuild category line counts: daily at 3 AM
    "refresh-line-counts-nightly": {
        "task": "workers.tasks.sync.refresh_line_counts",
        "schedule": crontab(minute=0, hour=3),
        "options": {"queue": "maintenance"},
    },
}


def get_schedules():
    """Get all schedules for Celery beat."""
    return SCHEDULES
