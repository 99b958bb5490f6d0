"""Celery application configuration."""

from celery import Celery
from celery.signals import worker_process_init

from app.core.config import settings
from app.core.logging_config import setup_logging

# Create Celery app
celery_app = Celery(
    "oneclicktag",
    broker=str(settings.redis_url),
    backend=str(settings.redis_url),
    include=[
        "app.workers.tasks.sync",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task safety limits
    task_time_limit=300,
    task_soft_time_limit=240,
    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Result backend settings (job status is polled by the dashboard)
    result_expires=24 * 3600,
    task_track_started=True,
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
    # Default queue name (must match worker -Q flag)
    task_default_queue="default",
    # One queue per destination so an Ads quota stall doesn't block GTM
    task_routes={
        "tasks.sync.gtm_*": {"queue": "gtm-sync"},
        "tasks.sync.ads_*": {"queue": "google-ads-sync"},
    },
)


@worker_process_init.connect
def _init_worker_logging(**_kwargs: object) -> None:
    setup_logging(debug=settings.debug)


# Task base class with common error handling
class BaseTask(celery_app.Task):  # type: ignore[misc, name-defined]
    """Base task class for sync jobs.

    Retries are driven explicitly by the handlers (quota cooldowns and
    transient-error backoff), not by ``autoretry_for``.
    """

    abstract = True
    max_retries = settings.sync_max_attempts - 1
    retry_backoff = True
    retry_backoff_max = 600  # Max 10 minutes between retries
    retry_jitter = True
