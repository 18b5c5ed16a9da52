"""Subscription Renewal Service - one pass over expiring auto-renewing subscriptions.

Each candidate is handled in its own session so one failure never aborts
the batch. Any renewal that does not succeed leaves auto-renewal off.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from billing.gateway.client import GatewayClient
from billing.models.subscription import PaymentMethod, UserSubscription
from billing.services.notification_service import NotificationDispatcher, get_dispatcher
from billing.services.payment_service import PaymentEngine
from billing.services.subscription_service import SubscriptionService
from billing.services.token_service import TokenService
from billing.utils.helpers import add_months

logger = logging.getLogger(__name__)


@dataclass
class RenewalReport:
    """Counters of one renewal pass."""

    processed: int = 0
    renewed: int = 0
    failed: int = 0
    skipped: int = 0
    purged: int = 0


class RenewalService:
    """Renews auto-renewing card subscriptions before they expire."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        gateway: GatewayClient,
        notifier: NotificationDispatcher | None = None,
        delay_seconds: float = 1.0,
        window_hours: int = 24,
        retention_months: int = 12,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.notifier = notifier or get_dispatcher()
        self.delay_seconds = delay_seconds
        self.window = timedelta(hours=window_hours)
        self.retention_months = retention_months

    async def run_once(self, now: datetime | None = None) -> RenewalReport:
        """Renew every candidate, then purge long-expired subscriptions."""
        now = now or datetime.utcnow()
        report = RenewalReport()

        async with self.session_factory() as db:
            candidates = await SubscriptionService(db).list_renewal_candidates(now, self.window)
            candidate_ids = [subscription.id for subscription in candidates]
        logger.info(f"Renewal pass: {len(candidate_ids)} subscriptions expiring within {self.window}")

        for index, subscription_id in enumerate(candidate_ids):
            if index and self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            report.processed += 1
            try:
                renewed = await self._renew(subscription_id)
            except Exception:
                logger.exception(f"Renewal of subscription {subscription_id} failed")
                renewed = False
            if renewed is None:
                report.skipped += 1
            elif renewed:
                report.renewed += 1
            else:
                report.failed += 1

        report.purged = await self.purge_expired(now)
        logger.info(
            f"Renewal pass done: processed={report.processed} renewed={report.renewed} "
            f"failed={report.failed} skipped={report.skipped} purged={report.purged}"
        )
        return report

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Delete subscriptions expired longer than the retention window."""
        cutoff = add_months(now or datetime.utcnow(), -self.retention_months)
        try:
            async with self.session_factory() as db:
                return await SubscriptionService(db).purge_expired(cutoff)
        except Exception:
            logger.exception("Purging expired subscriptions failed")
            return 0

    async def _renew(self, subscription_id: int) -> bool | None:
        """Renew one subscription.

        Returns:
            True when renewed, False when it failed, None when another pass
            already took it
        """
        async with self.session_factory() as db:
            subscriptions = SubscriptionService(db)
            subscription = await db.get(UserSubscription, subscription_id)
            if subscription is None or not await subscriptions.claim_for_renewal(subscription_id):
                logger.info(f"Subscription {subscription_id} already handled, skipping")
                return None

            user_id = subscription.user_id
            if subscription.payment_method != PaymentMethod.CARD:
                logger.info(f"Subscription {subscription_id}: wallet auto-renewal is not supported")
                return self._failed(subscription, "unsupported_payment_method")

            if subscription.subscription_price_id is None:
                logger.info(f"Subscription {subscription_id}: no price to renew with")
                return self._failed(subscription, "missing_price")
            plan_price = await subscriptions.get_plan_price(
                subscription.subscription_plan_id, subscription.subscription_price_id
            )
            if plan_price is None:
                logger.info(f"Subscription {subscription_id}: plan price no longer exists")
                return self._failed(subscription, "missing_price")

            token = await TokenService(db).latest_for_card(user_id, subscription.masked_pan)
            if token is None:
                logger.info(
                    f"No payment token found for user {user_id} with pan {subscription.masked_pan}"
                )
                return self._failed(subscription, "missing_token")

            engine = PaymentEngine(db, self.gateway, notifier=self.notifier)
            outcome = await engine.renew_subscription(subscription, plan_price, token)
            if not outcome.success:
                logger.info(
                    f"Payment failed for renewal of subscription {subscription_id}: {outcome.status.value}"
                )
                return False
            logger.info(
                f"Renewed subscription {subscription_id} for user {user_id} "
                f"as {outcome.data.get('subscription_id')}"
            )
            return True

    def _failed(self, subscription: UserSubscription, reason: str) -> bool:
        self.notifier.emit(
            "subscription_renewal",
            "Subscription renewal failed",
            level="error",
            user_id=subscription.user_id,
            previousSubscriptionId=subscription.id,
            reason=reason,
        )
        return False
