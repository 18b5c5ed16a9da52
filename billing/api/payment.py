"""Korner Billing Service - Item purchase API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from billing.api.deps import CurrentUserId, get_payment_engine
from billing.schemas.payment import (
    CallbackResponse,
    GatewayEnvelope,
    PaymentResponse,
    PurchaseRequest,
)
from billing.services.payment_service import CallbackResult, PaymentEngine
from billing.utils.helpers import format_utc_datetime

router = APIRouter(prefix="/api/payment", tags=["Payment"])


def callback_response(result: CallbackResult) -> CallbackResponse:
    return CallbackResponse(
        transaction_id=result.transaction_id,
        order_id=result.order_id,
        status=result.status.value,
        applied=result.applied,
    )


@router.post("/purchase", response_model=PaymentResponse)
async def purchase_item(
    data: PurchaseRequest,
    user_id: CurrentUserId,
    engine: Annotated[PaymentEngine, Depends(get_payment_engine)],
) -> PaymentResponse:
    """Buy a marketplace item with wallet, saved card token or card checkout.

    Card checkout returns the gateway payment page in ``data``; the final
    status arrives by callback.
    """
    outcome = await engine.purchase(
        user_id=user_id,
        payment_type=data.payment_type,
        email=data.email,
        item_id=data.item_id,
        currency_id=data.currency_id,
        token_id=data.token_id,
        success_url=data.success_url,
        failure_url=data.failure_url,
    )
    return PaymentResponse(**outcome.to_dict())


@router.post("/callback", response_model=CallbackResponse)
async def payment_callback(
    envelope: GatewayEnvelope,
    engine: Annotated[PaymentEngine, Depends(get_payment_engine)],
) -> CallbackResponse:
    """Gateway callback for card item purchases (signature verified)."""
    result = await engine.handle_payment_callback(envelope.model_dump())
    return callback_response(result)


@router.get("/status/{transaction_id}", response_model=CallbackResponse)
async def payment_status(
    transaction_id: int,
    user_id: CurrentUserId,
    engine: Annotated[PaymentEngine, Depends(get_payment_engine)],
) -> CallbackResponse:
    """Poll the gateway for a transaction and apply the reported status."""
    result = await engine.check_status(user_id, transaction_id)
    return callback_response(result)


@router.get("/receipt/{order_id}")
async def payment_receipt(
    order_id: str,
    user_id: CurrentUserId,
    engine: Annotated[PaymentEngine, Depends(get_payment_engine)],
) -> Response:
    """Receipt PDF of a completed card payment."""
    content = await engine.fetch_receipt(user_id, order_id)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="receipt_{order_id}.pdf"'},
    )


@router.get("/purchases")
async def purchased_items(
    user_id: CurrentUserId,
    engine: Annotated[PaymentEngine, Depends(get_payment_engine)],
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    """Items the user has bought."""
    records = await engine.transactions.list_purchased_items(user_id, limit=limit, offset=offset)
    return {
        "items": [
            {
                "transaction_id": record.id,
                "item_id": record.item_id,
                "amount": str(record.amount),
                "currency_id": record.currency_id,
                "source": record.source.value,
                "purchased_at": format_utc_datetime(record.created_at),
            }
            for record in records
        ],
        "limit": limit,
        "offset": offset,
    }
