"""Korner Billing Service - Stored card token model."""

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class PaymentToken(SQLModel, table=True):
    """Gateway-issued recurring-charge token for a saved card.

    Append-only: a new row is written each time the gateway hands back a
    token, and repeat charges use the newest row for the card.
    """

    __tablename__ = "payment_tokens"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    token: str = Field(max_length=255, unique=True)
    pan_masked: str | None = Field(default=None, max_length=32, index=True)
    expired_at: datetime | None = Field(default=None)
    amount: Decimal | None = Field(
        default=None, sa_column=sa.Column(sa.DECIMAL(20, 2), nullable=True)
    )
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
