"""Korner Billing Service - Payout request models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class PayoutRequestStatus(str, Enum):
    """Payout request status."""

    CREATED = "created"
    IN_REVIEW = "inReview"
    PROCESSING = "processing"
    PAID = "paid"
    REJECTED = "rejected"
    CANCELED = "canceled"

    @property
    def is_final(self) -> bool:
        return self in (
            PayoutRequestStatus.PAID,
            PayoutRequestStatus.REJECTED,
            PayoutRequestStatus.CANCELED,
        )


class ContactMethod(str, Enum):
    """Preferred way to reach the requester."""

    EMAIL = "email"
    PHONE_CALL = "phoneCall"
    WHATSAPP = "whatsApp"
    TELEGRAM = "telegram"


class PayoutRequest(SQLModel, table=True):
    """Seller request to withdraw earnings, processed manually by admins.

    Attributes:
        requester_*: Contact details supplied with the request
        context_*: Where in the product the request was made
        telegram_alert_*: Delivery state of the admin alert
    """

    __tablename__ = "payout_requests"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    status: PayoutRequestStatus = Field(default=PayoutRequestStatus.CREATED, index=True)
    amount: Decimal | None = Field(
        default=None, sa_column=sa.Column(sa.DECIMAL(20, 2), nullable=True)
    )
    currency_id: int | None = Field(default=None)
    contact_method: ContactMethod = Field(default=ContactMethod.EMAIL)

    requester_name: str | None = Field(default=None, max_length=255)
    requester_email: str | None = Field(default=None, max_length=255, index=True)
    requester_phone: str | None = Field(default=None, max_length=64)

    context_source: str | None = Field(default=None, max_length=64)
    context_screen: str | None = Field(default=None, max_length=128)
    context_url: str | None = Field(default=None, max_length=1024)
    context_metadata: dict[str, Any] | None = Field(
        default=None, sa_column=sa.Column(sa.JSON, nullable=True)
    )

    telegram_alert_status: str = Field(default="pending", max_length=16)
    telegram_alert_attempts: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def public_id(self) -> str:
        return f"prq_{self.id}"


class PayoutRequestStatusHistory(SQLModel, table=True):
    """Audit row for every payout status change."""

    __tablename__ = "payout_request_status_history"

    id: int | None = Field(default=None, primary_key=True)
    payout_request_id: int = Field(foreign_key="payout_requests.id", index=True)
    from_status: PayoutRequestStatus | None = Field(default=None)
    to_status: PayoutRequestStatus
    changed_by_admin_id: int | None = Field(default=None)
    comment: str | None = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=datetime.utcnow)
