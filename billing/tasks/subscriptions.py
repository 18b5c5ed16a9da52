"""Subscription lifecycle tasks.

For deployments that run renewals out of process instead of the in-process
scheduler (``RENEWAL_SCHEDULER_ENABLED=false``).
"""

import logging
from dataclasses import asdict

from billing.core.config import get_settings
from billing.db.engine import async_session_factory, close_db
from billing.gateway.client import GatewayClient
from billing.services.notification_service import NotificationDispatcher, build_dispatcher
from billing.services.renewal_service import RenewalService
from billing.tasks import run_async
from billing.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _renewal_service(notifier: NotificationDispatcher | None = None) -> RenewalService:
    settings = get_settings()
    return RenewalService(
        async_session_factory,
        GatewayClient(settings.gateway_config()),
        notifier=notifier,
        delay_seconds=settings.renewal_delay_seconds,
        window_hours=settings.renewal_window_hours,
        retention_months=settings.subscription_retention_months,
    )


@celery_app.task(name="subscriptions.renew_expiring")
def renew_expiring() -> dict:
    """Renew auto-renewing subscriptions expiring within the window.

    Returns:
        Renewal report counters
    """
    return run_async(_renew_expiring_async())


async def _renew_expiring_async() -> dict:
    dispatcher = build_dispatcher(get_settings())
    await dispatcher.start()
    try:
        report = await _renewal_service(dispatcher).run_once()
        return asdict(report)
    finally:
        await dispatcher.stop()
        await close_db()


@celery_app.task(name="subscriptions.purge_expired")
def purge_expired() -> dict:
    """Delete subscriptions expired longer than the retention window."""
    return run_async(_purge_expired_async())


async def _purge_expired_async() -> dict:
    try:
        purged = await _renewal_service().purge_expired()
        logger.info(f"[purge_expired] purged={purged}")
        return {"purged": purged}
    finally:
        await close_db()
