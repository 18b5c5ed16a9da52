"""Korner Billing Service - Subscription models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class SubscriptionPeriod(str, Enum):
    """Billing period of a plan."""

    DAILY = "daily"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class PaymentMethod(str, Enum):
    """How a subscription is paid for."""

    WALLET = "wallet"
    CARD = "card"


class SubscriptionPlan(SQLModel, table=True):
    """Subscription plan (e.g. "Pro monthly")."""

    __tablename__ = "subscription_plans"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)
    period: SubscriptionPeriod = Field(default=SubscriptionPeriod.MONTHLY)
    description: dict[str, Any] | None = Field(
        default=None, sa_column=sa.Column(sa.JSON, nullable=True)
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SubscriptionPrice(SQLModel, table=True):
    """Price of a plan in one currency."""

    __tablename__ = "subscription_plans_prices"

    id: int | None = Field(default=None, primary_key=True)
    subscription_plan_id: int = Field(foreign_key="subscription_plans.id", index=True)
    currency_id: int = Field(foreign_key="currencies.id")
    price: Decimal = Field(sa_column=sa.Column(sa.DECIMAL(20, 2), nullable=False))
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class UserSubscription(SQLModel, table=True):
    """One paid subscription period of a user.

    A user keeps one row per period; a row is active while
    ``expired_at > now``. Cancelling only turns auto-renewal off, access
    lasts until ``expired_at``.
    """

    __tablename__ = "user_subscriptions"
    __table_args__ = (sa.Index("ix_user_subscriptions_renewal", "is_auto_renewal", "expired_at"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    subscription_plan_id: int = Field(foreign_key="subscription_plans.id")
    subscription_price_id: int | None = Field(default=None, foreign_key="subscription_plans_prices.id")
    is_auto_renewal: bool = Field(default=False)
    payment_method: PaymentMethod | None = Field(default=None)
    masked_pan: str | None = Field(default=None, max_length=32)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    expired_at: datetime = Field(index=True)
    cancelled_at: datetime | None = Field(default=None)
