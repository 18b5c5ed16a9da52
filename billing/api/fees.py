"""Korner Billing Service - Platform fee API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from billing.api.deps import AdminUserId, CurrentUserId, get_fee_service
from billing.models.fee import PlatformFee
from billing.schemas.fee import (
    FeeCalculationRequest,
    FeeCalculationResponse,
    PlatformFeeCreate,
    PlatformFeeResponse,
    PlatformFeeUpdate,
)
from billing.services.fee_service import FeeService

router = APIRouter(prefix="/api/fees", tags=["Platform Fees"])


@router.post("/calculate", response_model=FeeCalculationResponse)
async def calculate_fee(
    data: FeeCalculationRequest,
    _: CurrentUserId,
    service: Annotated[FeeService, Depends(get_fee_service)],
) -> FeeCalculationResponse:
    """Platform fee and seller net amount for a gross amount."""
    breakdown = await service.calculate(data.amount, data.currency_id)
    return FeeCalculationResponse(
        original_amount=breakdown.original_amount,
        fee_amount=breakdown.fee_amount,
        final_amount=breakdown.final_amount,
        fee_percentage=breakdown.fee_percentage,
    )


@router.get("", response_model=list[PlatformFeeResponse])
async def list_active_fees(
    _: CurrentUserId,
    service: Annotated[FeeService, Depends(get_fee_service)],
) -> list[PlatformFee]:
    """Active fee rule of every currency."""
    return await service.list_active_fees()


@router.get("/history/{currency_id}", response_model=list[PlatformFeeResponse])
async def fee_history(
    currency_id: int,
    _: AdminUserId,
    service: Annotated[FeeService, Depends(get_fee_service)],
) -> list[PlatformFee]:
    """All rules of a currency, newest first.

    Only accessible by admin users.
    """
    return await service.fee_history(currency_id)


@router.post("", response_model=PlatformFeeResponse, status_code=status.HTTP_201_CREATED)
async def create_fee(
    data: PlatformFeeCreate,
    _: AdminUserId,
    service: Annotated[FeeService, Depends(get_fee_service)],
) -> PlatformFee:
    """Create a fee rule; the previous active rule of the currency is deactivated.

    Only accessible by admin users.
    """
    return await service.create_fee(
        currency_id=data.currency_id,
        fee_percentage=data.fee_percentage,
        min_fee_amount=data.min_fee_amount,
        max_fee_amount=data.max_fee_amount,
    )


@router.patch("/{fee_id}", response_model=PlatformFeeResponse)
async def update_fee(
    fee_id: int,
    data: PlatformFeeUpdate,
    _: AdminUserId,
    service: Annotated[FeeService, Depends(get_fee_service)],
) -> PlatformFee:
    """Update a fee rule.

    Only accessible by admin users.
    """
    return await service.update_fee(fee_id, data.model_dump(exclude_unset=True))
