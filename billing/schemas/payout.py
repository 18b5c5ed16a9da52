"""Korner Billing Service - Payout request schemas."""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from billing.models.payout import ContactMethod, PayoutRequestStatus


class PayoutContext(BaseModel):
    """Where in the product the request was made."""

    source: str = Field(..., min_length=1, max_length=64)
    screen: str | None = Field(None, max_length=128)
    url: str | None = Field(None, max_length=1024)
    metadata: dict[str, Any] | None = None


class PayoutRequestCreate(BaseModel):
    """Schema for creating a payout request."""

    requester_name: str = Field(..., min_length=1, max_length=255)
    requester_email: str = Field(..., min_length=3, max_length=255)
    phone: str = Field(..., min_length=1, max_length=30)
    preferred_contact_method: ContactMethod
    context: PayoutContext
    amount: Decimal | None = Field(None, gt=0, decimal_places=2)
    currency_id: int | None = None


class PayoutStatusUpdate(BaseModel):
    """Schema for an admin status change."""

    status: PayoutRequestStatus
    admin_comment: str | None = Field(None, max_length=500)


class PayoutRequestCreated(BaseModel):
    payout_request_id: str
    status: PayoutRequestStatus
    created_at: str | None = None


class PayoutStatusUpdated(BaseModel):
    payout_request_id: str
    status: PayoutRequestStatus
    updated_at: str | None = None


class PaginatedPayoutRequests(BaseModel):
    """Paginated payout request list."""

    items: list[dict[str, Any]]
    total: int
    page: int
    page_size: int
