"""Celery configuration.

Usage:
    # Start a worker
    celery -A billing.tasks.celery_app worker -l info

    # Start beat scheduler
    celery -A billing.tasks.celery_app beat -l info
"""

from celery import Celery
from celery.schedules import crontab

from billing.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "billing_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "billing.tasks.subscriptions",
        "billing.tasks.transactions",
        "billing.tasks.payouts",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    task_default_retry_delay=60,
    task_max_retries=5,
    task_routes={
        "subscriptions.*": {"queue": "subscriptions"},
        "transactions.*": {"queue": "transactions"},
        "payouts.*": {"queue": "notifications"},
    },
    beat_schedule={
        "renew-expiring-subscriptions": {
            "task": "subscriptions.renew_expiring",
            "schedule": crontab(hour=0, minute=0),
        },
        "reconcile-pending-transactions": {
            "task": "transactions.reconcile_pending",
            "schedule": 600.0,
        },
    },
)
