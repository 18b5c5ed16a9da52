"""Korner Billing Service - Subscription schemas."""

from typing import Literal

from pydantic import BaseModel, Field


class SubscriptionPurchaseRequest(BaseModel):
    """Schema for buying a subscription period."""

    payment_type: Literal["wallet", "token", "card"]
    plan_id: int = Field(..., gt=0)
    price_id: int = Field(..., gt=0)
    email: str | None = Field(None, max_length=255, description="Required when payment_type is 'card'")
    token_id: int | None = Field(None, description="Required when payment_type is 'token'")
    success_url: str | None = None
    failure_url: str | None = None


class AutoRenewalUpdate(BaseModel):
    enabled: bool


class SubscriptionStateResponse(BaseModel):
    subscription_id: int
    is_auto_renewal: bool
    expires_at: str | None = None
    cancelled_at: str | None = None

