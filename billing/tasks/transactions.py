"""Pending transaction reconciliation.

Card payments whose callback never arrived stay ``pending``. This task polls
the gateway for records older than the configured age and applies the
reported status through the same idempotent path as callbacks.
"""

import logging
import time
from datetime import datetime, timedelta

from billing.core.config import get_settings
from billing.core.exceptions import BillingError
from billing.db.engine import async_session_factory, close_db
from billing.services.notification_service import NotificationDispatcher, build_dispatcher
from billing.services.payment_service import build_payment_engine
from billing.services.transaction_service import TransactionService
from billing.tasks import run_async
from billing.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="transactions.reconcile_pending")
def reconcile_pending(limit: int = 100) -> dict:
    """Poll the gateway for stale pending transactions.

    Args:
        limit: Maximum records per run

    Returns:
        Dict with counters
    """
    return run_async(_reconcile_pending_async(limit))


async def reconcile_stale(
    limit: int = 100,
    now: datetime | None = None,
    notifier: NotificationDispatcher | None = None,
) -> dict:
    """Reconcile stale pending records, one session per record."""
    settings = get_settings()
    cutoff = (now or datetime.utcnow()) - timedelta(minutes=settings.reconcile_pending_after_minutes)

    async with async_session_factory() as db:
        stale = await TransactionService(db).list_stale_pending(cutoff, limit=limit)
        transaction_ids = [record.id for record in stale]

    counters = {"checked": 0, "finalized": 0, "pending": 0, "errors": 0}
    for transaction_id in transaction_ids:
        counters["checked"] += 1
        async with async_session_factory() as db:
            engine = build_payment_engine(db, settings, notifier=notifier)
            record = await engine.transactions.get(transaction_id)
            if record is None:
                continue
            try:
                result = await engine.reconcile(record)
            except BillingError as e:
                # gateway unreachable or invalid response: stays pending
                counters["errors"] += 1
                logger.warning(f"[reconcile] transaction {transaction_id} not reconciled: {e.message}")
                continue
            if result.applied:
                counters["finalized"] += 1
            else:
                counters["pending"] += 1
    return counters


async def _reconcile_pending_async(limit: int, now: datetime | None = None) -> dict:
    start_time = time.time()
    dispatcher = build_dispatcher(get_settings())
    await dispatcher.start()
    try:
        counters = await reconcile_stale(limit, now=now, notifier=dispatcher)
        elapsed = time.time() - start_time
        logger.info(f"[reconcile_pending] {counters} elapsed={elapsed:.3f}s")
        return counters
    finally:
        await dispatcher.stop()
        await close_db()
