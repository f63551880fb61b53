"""Celery application configuration."""

from celery import Celery

from feedboard.config import get_settings

settings = get_settings()

app = Celery(
    "feedboard",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["feedboard.tasks.expiry"],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=120,
    task_soft_time_limit=90,
)

# Only used with SCHEDULER_BACKEND=celery; the web process sweeps otherwise
app.conf.beat_schedule = {
    "expire-overrides": {
        "task": "feedboard.tasks.expiry.expire_overrides_task",
        "schedule": settings.override_sweep_interval_seconds,
    },
    "expire-notes": {
        "task": "feedboard.tasks.expiry.expire_notes_task",
        "schedule": settings.note_sweep_interval_seconds,
    },
}
