"""Celery application configuration for gallery delivery background tasks."""

from celery import Celery
from celery.schedules import crontab

from src.config import settings

celery = Celery("galleries")

celery.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_result_backend,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # --- Queue routing per job type ---
    task_routes={
        "src.modules.archive.tasks.finalize_order_delivery": {"queue": settings.finalize_job_queue},
        "src.modules.archive.tasks.release_stale_final_zip_flags": {"queue": "order-maintenance"},
        "src.modules.change_feed.tasks.process_change_feed": {"queue": "change-feed"},
        "src.modules.change_feed.tasks.cleanup_processed_events": {"queue": "change-feed"},
    },
    # --- Reliability settings ---
    task_default_retry_delay=60,
    task_max_retries=3,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24 hours
    # --- Broker transport options (Redis reliability) ---
    broker_transport_options={
        "max_retries": 10,
        "interval_start": 0.2,
        "interval_step": 0.5,
        "interval_max": 5.0,
        "retry_on_timeout": True,
        "visibility_timeout": 3600,
    },
    # --- Beat schedule ---
    beat_schedule={
        "process-order-change-feed": {
            "task": "src.modules.change_feed.tasks.process_change_feed",
            "schedule": settings.change_feed_poll_seconds,
        },
        "release-stale-final-zip-flags": {
            "task": "src.modules.archive.tasks.release_stale_final_zip_flags",
            "schedule": settings.final_zip_stale_sweep_seconds,
        },
        "cleanup-processed-events-daily": {
            "task": "src.modules.change_feed.tasks.cleanup_processed_events",
            "schedule": crontab(hour=3, minute=30),
        },
    },
)

celery.autodiscover_tasks([
    "src.modules.archive",
    "src.modules.change_feed",
])
