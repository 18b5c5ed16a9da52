"""Korner Billing Service - Platform fee schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PlatformFeeBase(BaseModel):
    """Base platform fee schema."""

    fee_percentage: Decimal = Field(
        ...,
        ge=0,
        le=100,
        decimal_places=2,
        description="Fee percentage (0-100)",
    )
    min_fee_amount: Decimal | None = Field(None, ge=0, decimal_places=2)
    max_fee_amount: Decimal | None = Field(None, ge=0, decimal_places=2)

    @model_validator(mode="after")
    def check_bounds(self) -> "PlatformFeeBase":
        if (
            self.min_fee_amount is not None
            and self.max_fee_amount is not None
            and self.min_fee_amount > self.max_fee_amount
        ):
            raise ValueError("min_fee_amount must not exceed max_fee_amount")
        return self


class PlatformFeeCreate(PlatformFeeBase):
    """Schema for creating a fee rule (replaces the active one)."""

    currency_id: int = Field(..., gt=0)


class PlatformFeeUpdate(BaseModel):
    """Schema for updating a fee rule."""

    fee_percentage: Decimal | None = Field(None, ge=0, le=100, decimal_places=2)
    min_fee_amount: Decimal | None = Field(None, ge=0, decimal_places=2)
    max_fee_amount: Decimal | None = Field(None, ge=0, decimal_places=2)
    is_active: bool | None = None


class PlatformFeeResponse(PlatformFeeBase):
    """Schema for fee rule response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    currency_id: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


class FeeCalculationRequest(BaseModel):
    """Schema for fee calculation request."""

    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Gross amount")
    currency_id: int = Field(..., gt=0)


class FeeCalculationResponse(BaseModel):
    """Schema for fee calculation response."""

    original_amount: Decimal
    fee_amount: Decimal
    final_amount: Decimal
    fee_percentage: Decimal
