from celery import Celery
from celery.schedules import crontab

from allocation.core.config import settings

celery_app = Celery(
    "allocation",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # Audit events are fire-and-forget; nobody reads their results
    task_ignore_result=True,
)

# ─── Scheduled tasks ──────────────────────────
celery_app.conf.beat_schedule = {
    "expire-ended-leases-daily": {
        "task": "allocation.services.lease_expiry.expire_ended_leases",
        "schedule": crontab(hour=0, minute=15),
    },
}

# Explicitly include task modules so the worker registers them on startup.
# autodiscover_tasks() only looks for a "tasks.py" file, which we don't use.
celery_app.conf.include = [
    "allocation.services.audit",
    "allocation.services.lease_expiry",
]
