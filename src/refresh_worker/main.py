"""Celery application for the scheduled product refresh."""

from celery import Celery
from celery.schedules import crontab

from product_refresh.config import get_settings
from product_refresh.logging_config import configure_logging

settings = get_settings()
configure_logging()

# Create Celery app
app = Celery(
    "refresh_worker",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[
        "refresh_worker.tasks.refresh_products",
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
    task_time_limit=settings.refresh_lock_ttl_seconds,
    task_soft_time_limit=int(settings.refresh_run_deadline_seconds) + 30,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="refresh",
    task_routes={
        "refresh_worker.tasks.*": {"queue": "refresh"},
    },
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = {
    # Refresh the stalest products every hour
    "refresh-products": {
        "task": "refresh_worker.tasks.refresh_products.refresh_stale_products",
        "schedule": crontab(minute=settings.refresh_schedule_minute),
    },
}


def run() -> None:
    """Run the Celery worker."""
    app.worker_main(["worker", "--loglevel=info", "-Q", "refresh"])


if __name__ == "__main__":
    run()
