"""Korner Billing Service - Transaction record model.

A transaction is the durable record of one money movement attempt. It is
created ``pending`` before any gateway call or wallet mutation and moves to
exactly one terminal status afterwards.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class TransactionType(str, Enum):
    """Kind of money movement."""

    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"
    SUBSCRIPTION = "subscription"


class TransactionSource(str, Enum):
    """Where the money comes from."""

    WALLET = "wallet"
    CARD = "card"


class TransactionStatus(str, Enum):
    """Internal four-state status vocabulary."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class Transaction(SQLModel, table=True):
    """Transaction record.

    Attributes:
        id: Auto-increment primary key
        user_id: Owner of the transaction
        currency_id: Currency of ``amount``
        amount: Intended amount, never changed after creation
        type: deposit / withdraw / transfer / subscription
        source: wallet or card
        status: pending until finalized, then one terminal status
        order_id: Gateway order id, the idempotency key for callbacks
        payment_id: Gateway payment id
        transaction_data: Last decoded gateway payload
        user_subscription_id: Subscription created by this transaction, or the one
            a pending renewal renews
        subscription_plan_id: Plan being purchased or renewed
        subscription_price_id: Price tier being purchased or renewed
        item_id: Purchased marketplace item
        purchase_key: ``{user_id}:{item_id}`` while an item purchase is pending or
            completed, cleared when it fails; unique per buyer and item
        description: Free text shown in history
    """

    __tablename__ = "transactions"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    currency_id: int = Field(index=True)
    amount: Decimal = Field(sa_column=sa.Column(sa.DECIMAL(20, 2), nullable=False))
    type: TransactionType = Field(index=True)
    source: TransactionSource
    status: TransactionStatus = Field(default=TransactionStatus.PENDING, index=True)

    order_id: str | None = Field(default=None, max_length=64, unique=True, index=True)
    payment_id: str | None = Field(default=None, max_length=64, index=True)
    transaction_data: dict[str, Any] | None = Field(
        default=None, sa_column=sa.Column(sa.JSON, nullable=True)
    )

    user_subscription_id: int | None = Field(default=None, index=True)
    subscription_plan_id: int | None = Field(default=None)
    subscription_price_id: int | None = Field(default=None)
    item_id: str | None = Field(default=None, max_length=64, index=True)
    purchase_key: str | None = Field(default=None, max_length=96, unique=True, index=True)
    description: str | None = Field(default=None, max_length=255)

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return TransactionStatus(self.status).is_terminal
