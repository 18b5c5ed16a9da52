"""Korner Billing Service - Wallet API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from billing.api.deps import CurrentUserId, get_ledger, get_payment_engine
from billing.api.payment import callback_response
from billing.schemas.payment import (
    BalanceCheckRequest,
    BalanceCheckResponse,
    BalancesResponse,
    CallbackResponse,
    GatewayEnvelope,
    PaymentResponse,
    TopUpRequest,
)
from billing.services.ledger_service import WalletLedger
from billing.services.payment_service import PaymentEngine

router = APIRouter(prefix="/api/wallet", tags=["Wallet"])


@router.post("/create", response_model=BalancesResponse)
async def create_wallet(
    user_id: CurrentUserId,
    ledger: Annotated[WalletLedger, Depends(get_ledger)],
) -> BalancesResponse:
    """Create the user's wallet (zero balance per currency). Idempotent."""
    await ledger.create_account(user_id)
    return BalancesResponse(user_id=user_id, balances=await ledger.get_balances(user_id))


@router.get("/balance", response_model=BalancesResponse)
async def get_balance(
    user_id: CurrentUserId,
    ledger: Annotated[WalletLedger, Depends(get_ledger)],
) -> BalancesResponse:
    """Balances of the current user in every currency."""
    return BalancesResponse(user_id=user_id, balances=await ledger.get_balances(user_id))


@router.post("/check", response_model=BalanceCheckResponse)
async def check_balance(
    data: BalanceCheckRequest,
    user_id: CurrentUserId,
    ledger: Annotated[WalletLedger, Depends(get_ledger)],
) -> BalanceCheckResponse:
    """Advisory balance check; only the debit itself is authoritative."""
    check = await ledger.check_balance(user_id, data.currency_id, data.amount)
    return BalanceCheckResponse(
        sufficient=check.sufficient,
        current_balance=check.current,
        required=data.amount,
    )


@router.post("/top-up", response_model=PaymentResponse)
async def top_up(
    data: TopUpRequest,
    user_id: CurrentUserId,
    engine: Annotated[PaymentEngine, Depends(get_payment_engine)],
) -> PaymentResponse:
    """Add funds by card checkout or saved card token."""
    outcome = await engine.top_up(
        user_id=user_id,
        amount=data.amount,
        email=data.email,
        payment_type=data.payment_type,
        currency_id=data.currency_id,
        token_id=data.token_id,
    )
    return PaymentResponse(**outcome.to_dict())


@router.post("/callback", response_model=CallbackResponse)
async def wallet_callback(
    envelope: GatewayEnvelope,
    engine: Annotated[PaymentEngine, Depends(get_payment_engine)],
) -> CallbackResponse:
    """Gateway callback for card top-ups (signature verified)."""
    result = await engine.handle_wallet_callback(envelope.model_dump())
    return callback_response(result)


@router.get("/transactions")
async def list_transactions(
    user_id: CurrentUserId,
    ledger: Annotated[WalletLedger, Depends(get_ledger)],
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    """Transaction history, newest first."""
    items = await ledger.list_transactions(user_id, limit=limit, offset=offset)
    return {"items": items, "limit": limit, "offset": offset}
