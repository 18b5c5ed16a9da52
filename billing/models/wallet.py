"""Korner Billing Service - Wallet models."""

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class Currency(SQLModel, table=True):
    """Currency supported by the platform wallet."""

    __tablename__ = "currencies"

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(max_length=8, unique=True, description="ISO code, e.g. KZT")
    name: str = Field(default="", max_length=64)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class WalletBalance(SQLModel, table=True):
    """Balance of one user in one currency.

    Mutated only through ``WalletLedger``; the amount never goes below zero
    because debits are conditional updates.
    """

    __tablename__ = "wallet_balances"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "currency_id", name="uq_wallet_user_currency"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    currency_id: int = Field(foreign_key="currencies.id", index=True)
    amount: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=sa.Column(sa.DECIMAL(20, 2), nullable=False, default=Decimal("0.00")),
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
