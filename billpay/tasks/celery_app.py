"""Celery application configuration."""
from celery import Celery

from billpay.config import get_settings

settings = get_settings()

celery_app = Celery(
    "billpay",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A sweep that dies mid-way is simply run again on the next beat
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    result_expires=3600,
    # One sweep at a time; overlapping sweeps would only contend on locks
    worker_prefetch_multiplier=1,
    worker_concurrency=1,
    task_routes={
        "billpay.tasks.reconciliation.*": {"queue": "reconciliation"},
    },
    beat_schedule={
        "reconcile-processing-transactions": {
            "task": "billpay.tasks.reconciliation.reconcile_processing_transactions",
            "schedule": settings.reconcile_interval_seconds,
        },
    },
)

celery_app.autodiscover_tasks(["billpay.tasks.reconciliation"])
