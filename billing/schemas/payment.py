"""Korner Billing Service - Payment, wallet and gateway schemas."""

from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class GatewayEnvelope(BaseModel):
    """Signed gateway callback body."""

    model_config = ConfigDict(extra="allow")

    data: str | None = None
    sign: str | None = None


class PurchaseRequest(BaseModel):
    """Schema for an item purchase."""

    payment_type: Literal["wallet", "token", "card"]
    email: str = Field(..., min_length=3, max_length=255)
    item_id: str = Field(..., min_length=1, max_length=64, description="Marketplace item (bar) ID")
    currency_id: int | None = Field(None, description="Fallback when the item currency is unknown")
    token_id: int | None = Field(None, description="Required when payment_type is 'token'")
    success_url: str | None = None
    failure_url: str | None = None


class TopUpRequest(BaseModel):
    """Schema for a wallet top-up."""

    payment_type: Literal["card", "token"] = "card"
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Top-up amount")
    email: str = Field(..., min_length=3, max_length=255)
    currency_id: int | None = None
    token_id: int | None = None


class PaymentResponse(BaseModel):
    """Result of a payment operation."""

    payment_type: str
    success: bool
    status: str
    transaction_id: int | None = None
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)


class CallbackResponse(BaseModel):
    """Acknowledgement returned to the gateway."""

    success: bool = True
    transaction_id: int
    order_id: str
    status: str
    applied: bool


class BalanceCheckRequest(BaseModel):
    currency_id: int
    amount: Decimal = Field(..., gt=0, decimal_places=2)


class BalanceCheckResponse(BaseModel):
    sufficient: bool
    current_balance: Decimal
    required: Decimal


class BalanceItem(BaseModel):
    currency_id: int
    currency_code: str
    balance: Decimal


class BalancesResponse(BaseModel):
    user_id: int
    balances: list[BalanceItem]


class SavedCard(BaseModel):
    """Stored card token (token value never exposed)."""

    id: int
    pan_masked: str | None = None
    amount: str | None = None
    expired_at: str | None = None
    created_at: str | None = None
