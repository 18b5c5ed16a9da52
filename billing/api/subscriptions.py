"""Korner Billing Service - Subscription API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from billing.api.deps import CurrentUserId, get_payment_engine, get_subscription_service
from billing.api.payment import callback_response
from billing.models.subscription import UserSubscription
from billing.schemas.payment import CallbackResponse, GatewayEnvelope, PaymentResponse
from billing.schemas.subscription import (
    AutoRenewalUpdate,
    SubscriptionPurchaseRequest,
    SubscriptionStateResponse,
)
from billing.services.payment_service import PaymentEngine
from billing.services.subscription_service import SubscriptionService
from billing.utils.helpers import format_utc_datetime

router = APIRouter(prefix="/api/subscriptions", tags=["Subscriptions"])


def _state(subscription: UserSubscription) -> SubscriptionStateResponse:
    return SubscriptionStateResponse(
        subscription_id=subscription.id,
        is_auto_renewal=subscription.is_auto_renewal,
        expires_at=format_utc_datetime(subscription.expired_at),
        cancelled_at=format_utc_datetime(subscription.cancelled_at),
    )


@router.get("/plans")
async def list_plans(
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> list[dict]:
    """Subscription plans with their prices."""
    return await service.list_plans()


@router.post("/purchase", response_model=PaymentResponse)
async def purchase_subscription(
    data: SubscriptionPurchaseRequest,
    user_id: CurrentUserId,
    engine: Annotated[PaymentEngine, Depends(get_payment_engine)],
) -> PaymentResponse:
    """Buy a subscription period with wallet, saved card token or card checkout."""
    outcome = await engine.purchase_subscription(
        user_id=user_id,
        payment_type=data.payment_type,
        plan_id=data.plan_id,
        price_id=data.price_id,
        email=data.email,
        token_id=data.token_id,
        success_url=data.success_url,
        failure_url=data.failure_url,
    )
    return PaymentResponse(**outcome.to_dict())


@router.post("/callback", response_model=CallbackResponse)
async def subscription_callback(
    envelope: GatewayEnvelope,
    engine: Annotated[PaymentEngine, Depends(get_payment_engine)],
) -> CallbackResponse:
    """Gateway callback for card subscription purchases (signature verified)."""
    result = await engine.handle_subscription_callback(envelope.model_dump())
    return callback_response(result)


@router.get("/active")
async def active_subscription(
    user_id: CurrentUserId,
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> dict:
    return await service.get_active_subscription_info(user_id)


@router.post("/cancel", response_model=SubscriptionStateResponse)
async def cancel_subscription(
    user_id: CurrentUserId,
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> SubscriptionStateResponse:
    """Stop auto-renewal; access lasts until the current period ends."""
    return _state(await service.cancel_subscription(user_id))


@router.patch("/auto-renewal", response_model=SubscriptionStateResponse)
async def update_auto_renewal(
    data: AutoRenewalUpdate,
    user_id: CurrentUserId,
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> SubscriptionStateResponse:
    return _state(await service.update_auto_renewal(user_id, data.enabled))


@router.get("/history")
async def subscription_history(
    user_id: CurrentUserId,
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    sort_by: Annotated[str, Query(pattern="^(created_at|expired_at|plan_name)$")] = "created_at",
    sort_order: Annotated[str, Query(pattern="^(asc|desc)$")] = "desc",
) -> dict:
    """Paged subscription history of the current user."""
    return await service.list_history(
        user_id, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order
    )
