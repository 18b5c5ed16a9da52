"""Subscription Service - plans, prices and user subscription periods."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from billing.core.exceptions import NotFoundError, ValidationError
from billing.models.subscription import (
    PaymentMethod,
    SubscriptionPeriod,
    SubscriptionPlan,
    SubscriptionPrice,
    UserSubscription,
)
from billing.models.transaction import Transaction
from billing.models.wallet import Currency
from billing.utils.helpers import add_months, format_utc_datetime

logger = logging.getLogger(__name__)

HISTORY_SORT_FIELDS = ("created_at", "expired_at", "plan_name")
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class PlanPrice:
    """A plan joined with one of its prices."""

    plan_id: int
    plan_name: str
    period: SubscriptionPeriod
    price_id: int
    currency_id: int
    currency_code: str
    price: Decimal


def period_end(start: datetime, period: SubscriptionPeriod) -> datetime:
    """End of a subscription period starting at ``start``."""
    if period == SubscriptionPeriod.DAILY:
        return start + timedelta(days=1)
    if period == SubscriptionPeriod.MONTHLY:
        return add_months(start, 1)
    if period == SubscriptionPeriod.YEARLY:
        return add_months(start, 12)
    raise ValidationError(f"Unknown subscription plan period: {period}")


class SubscriptionService:
    """Service for subscription plans and user subscriptions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Plans
    # =========================================================================

    async def list_plans(self) -> list[dict[str, Any]]:
        """All plans with their prices."""
        plans = (
            await self.db.execute(select(SubscriptionPlan).order_by(SubscriptionPlan.created_at))
        ).scalars().all()
        prices = (
            await self.db.execute(
                select(SubscriptionPrice, Currency.code)
                .join(Currency, Currency.id == SubscriptionPrice.currency_id)
                .order_by(SubscriptionPrice.id)
            )
        ).all()

        by_plan: dict[int, list[dict[str, Any]]] = {}
        for price, code in prices:
            by_plan.setdefault(price.subscription_plan_id, []).append(
                {"id": price.id, "currency": code, "price": str(price.price)}
            )
        return [
            {
                "id": plan.id,
                "name": plan.name,
                "period": plan.period.value,
                "description": plan.description,
                "prices": by_plan.get(plan.id, []),
            }
            for plan in plans
        ]

    async def get_plan_price(self, plan_id: int, price_id: int) -> PlanPrice | None:
        """Resolve a plan/price pair; None if either is missing or they do not match."""
        result = await self.db.execute(
            select(SubscriptionPlan, SubscriptionPrice, Currency.code)
            .join(SubscriptionPrice, SubscriptionPrice.subscription_plan_id == SubscriptionPlan.id)
            .join(Currency, Currency.id == SubscriptionPrice.currency_id)
            .where(SubscriptionPlan.id == plan_id, SubscriptionPrice.id == price_id)
        )
        row = result.first()
        if row is None:
            return None
        plan, price, code = row
        return PlanPrice(
            plan_id=plan.id,
            plan_name=plan.name,
            period=plan.period,
            price_id=price.id,
            currency_id=price.currency_id,
            currency_code=code,
            price=Decimal(price.price),
        )

    # =========================================================================
    # User subscriptions
    # =========================================================================

    async def create_subscription(
        self,
        user_id: int,
        plan_id: int,
        price_id: int | None = None,
        is_auto_renewal: bool = False,
        payment_method: PaymentMethod | None = None,
        masked_pan: str | None = None,
        starts_at: datetime | None = None,
        commit: bool = True,
    ) -> UserSubscription:
        """Create one subscription period.

        The period starts at ``starts_at`` (default now) and lasts one plan
        period.

        Raises:
            NotFoundError: Plan does not exist
        """
        plan = await self.db.get(SubscriptionPlan, plan_id)
        if plan is None:
            raise NotFoundError(f"Subscription plan with ID {plan_id} not found")

        start = starts_at or datetime.utcnow()
        subscription = UserSubscription(
            user_id=user_id,
            subscription_plan_id=plan_id,
            subscription_price_id=price_id,
            is_auto_renewal=is_auto_renewal,
            payment_method=payment_method,
            masked_pan=masked_pan,
            expired_at=period_end(start, plan.period),
        )
        self.db.add(subscription)
        if commit:
            await self.db.commit()
            await self.db.refresh(subscription)
        else:
            await self.db.flush()
        logger.info(
            f"Subscription {subscription.id} created for user {user_id}: plan={plan_id} "
            f"until {subscription.expired_at} ({payment_method.value if payment_method else 'n/a'})"
        )
        return subscription

    async def delete_subscription(self, subscription_id: int) -> bool:
        result = await self.db.execute(
            delete(UserSubscription).where(UserSubscription.id == subscription_id)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def get_active_subscription(self, user_id: int) -> UserSubscription | None:
        """Latest subscription with ``expired_at`` in the future."""
        result = await self.db.execute(
            select(UserSubscription)
            .where(UserSubscription.user_id == user_id, UserSubscription.expired_at > datetime.utcnow())
            .order_by(UserSubscription.expired_at.desc())
        )
        return result.scalars().first()

    async def has_active_subscription(self, user_id: int) -> bool:
        return await self.get_active_subscription(user_id) is not None

    async def get_active_subscription_info(self, user_id: int) -> dict[str, Any]:
        subscription = await self.get_active_subscription(user_id)
        if subscription is None:
            return {"has_active_subscription": False}
        plan = await self.db.get(SubscriptionPlan, subscription.subscription_plan_id)
        return {
            "has_active_subscription": True,
            "subscription_id": subscription.id,
            "plan_id": subscription.subscription_plan_id,
            "plan_name": plan.name if plan else None,
            "period": plan.period.value if plan else None,
            "is_auto_renewal": subscription.is_auto_renewal,
            "payment_method": subscription.payment_method.value if subscription.payment_method else None,
            "masked_pan": subscription.masked_pan,
            "expires_at": format_utc_datetime(subscription.expired_at),
            "cancelled_at": format_utc_datetime(subscription.cancelled_at),
        }

    async def cancel_subscription(self, user_id: int) -> UserSubscription:
        """Turn auto-renewal off; access lasts until ``expired_at``.

        Raises:
            NotFoundError: No active subscription
        """
        subscription = await self.get_active_subscription(user_id)
        if subscription is None:
            raise NotFoundError("No active subscription found")
        subscription.is_auto_renewal = False
        subscription.cancelled_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(subscription)
        logger.info(f"Subscription {subscription.id} cancelled by user {user_id}")
        return subscription

    async def update_auto_renewal(self, user_id: int, enabled: bool) -> UserSubscription:
        """Switch auto-renewal of the active subscription.

        Raises:
            NotFoundError: No active subscription
        """
        subscription = await self.get_active_subscription(user_id)
        if subscription is None:
            raise NotFoundError("No active subscription found")
        subscription.is_auto_renewal = enabled
        if enabled:
            subscription.cancelled_at = None
        await self.db.commit()
        await self.db.refresh(subscription)
        return subscription

    async def list_history(
        self,
        user_id: int,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> dict[str, Any]:
        """Paged subscription history.

        Raises:
            ValidationError: Unknown sort field or order
        """
        if sort_by not in HISTORY_SORT_FIELDS:
            raise ValidationError(f"sort_by must be one of {', '.join(HISTORY_SORT_FIELDS)}")
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sort_order must be 'asc' or 'desc'")
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        sort_column = {
            "created_at": UserSubscription.created_at,
            "expired_at": UserSubscription.expired_at,
            "plan_name": SubscriptionPlan.name,
        }[sort_by]
        order = sort_column.asc() if sort_order == "asc" else sort_column.desc()

        total = (
            await self.db.execute(
                select(func.count()).select_from(UserSubscription).where(UserSubscription.user_id == user_id)
            )
        ).scalar_one()
        rows = (
            await self.db.execute(
                select(UserSubscription, SubscriptionPlan)
                .join(SubscriptionPlan, SubscriptionPlan.id == UserSubscription.subscription_plan_id)
                .where(UserSubscription.user_id == user_id)
                .order_by(order, UserSubscription.id.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            )
        ).all()

        now = datetime.utcnow()
        items = [
            {
                "id": subscription.id,
                "plan_name": plan.name,
                "period": plan.period.value,
                "is_auto_renewal": subscription.is_auto_renewal,
                "payment_method": subscription.payment_method.value if subscription.payment_method else None,
                "masked_pan": subscription.masked_pan,
                "created_at": format_utc_datetime(subscription.created_at),
                "expired_at": format_utc_datetime(subscription.expired_at),
                "cancelled_at": format_utc_datetime(subscription.cancelled_at),
                "is_active": subscription.expired_at > now,
            }
            for subscription, plan in rows
        ]
        return {
            "items": items,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        }

    async def get_plan_for_transaction(self, transaction: Transaction) -> PlanPrice | None:
        """Plan and price a subscription transaction was created for."""
        if transaction.subscription_plan_id is None or transaction.subscription_price_id is None:
            return None
        return await self.get_plan_price(
            transaction.subscription_plan_id, transaction.subscription_price_id
        )

    # =========================================================================
    # Renewal support
    # =========================================================================

    async def list_renewal_candidates(
        self,
        now: datetime,
        window: timedelta,
    ) -> list[UserSubscription]:
        """Auto-renewing subscriptions expiring in ``(now, now + window]``."""
        result = await self.db.execute(
            select(UserSubscription)
            .where(
                UserSubscription.is_auto_renewal == True,  # noqa: E712
                UserSubscription.expired_at > now,
                UserSubscription.expired_at <= now + window,
            )
            .order_by(UserSubscription.expired_at, UserSubscription.id)
        )
        return list(result.scalars().all())

    async def claim_for_renewal(self, subscription_id: int) -> bool:
        """Turn auto-renewal off if it is still on; True for the caller that did.

        The renewed period carries auto-renewal forward, so a period is
        charged for at most once even when two passes overlap.
        """
        result = await self.db.execute(
            update(UserSubscription)
            .where(UserSubscription.id == subscription_id, UserSubscription.is_auto_renewal == True)  # noqa: E712
            .values(is_auto_renewal=False)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def purge_expired(self, before: datetime) -> int:
        """Delete subscriptions that expired before ``before``.

        Transactions keep their audit rows; only the subscription link is
        left dangling.
        """
        result = await self.db.execute(
            delete(UserSubscription).where(UserSubscription.expired_at < before)
        )
        await self.db.commit()
        purged = result.rowcount or 0
        if purged:
            logger.info(f"Purged {purged} subscriptions expired before {before}")
        return purged
