"""
Celery application configuration.

Celery beat is the cross-process alternative to the in-process
DispatchTrigger: it fires one dispatch cycle every
ALERT_CHECK_INTERVAL_SECONDS. Redis is broker and backend.
"""
from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from app.core.config import settings
from app.core.logging import setup_logging

# Create Celery app
celery_app = Celery(
    "job_alerts",
    broker=settings.redis_url,
    backend=f"{settings.redis_url}/1" if settings.redis_url else None,  # Use different DB for results
)

# Configure Celery
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task settings
    task_track_started=True,
    task_time_limit=600,  # a direct-mode cycle can run long
    task_soft_time_limit=540,

    # Worker settings
    worker_prefetch_multiplier=1,
    task_acks_late=True,  # Ack after completion for reliability
    worker_concurrency=1,  # one dispatcher; the alert queue handles fan-out

    # Result settings
    result_expires=3600,  # Results expire after 1 hour

    # Beat schedule
    beat_schedule={
        "dispatch-job-alerts": {
            "task": "app.workers.tasks.dispatch_job_alerts",
            "schedule": float(settings.alert_check_interval_seconds),
        },
    },
)

# Auto-discover tasks from workers module
celery_app.autodiscover_tasks(["app.workers"])


@celery_setup_logging.connect
def _configure_logging(**kwargs):
    """Route Celery's own logging through structlog."""
    setup_logging()
