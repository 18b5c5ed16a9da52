"""Korner Billing Service - Platform fee rule model."""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

CENT = Decimal("0.01")


class PlatformFee(SQLModel, table=True):
    """Platform fee rule for one currency.

    Rules are append-only: a new rule deactivates the previous one, so at
    most one rule per currency is active and the history stays queryable.

    Fee calculation:
    - fee = amount * fee_percentage / 100
    - raised to min_fee_amount / capped at max_fee_amount when configured
    - rounded half-up to 2 places after clamping
    """

    __tablename__ = "platform_fees"

    id: int | None = Field(default=None, primary_key=True)
    currency_id: int = Field(foreign_key="currencies.id", index=True)
    fee_percentage: Decimal = Field(sa_column=sa.Column(sa.DECIMAL(5, 2), nullable=False))
    min_fee_amount: Decimal | None = Field(
        default=None, sa_column=sa.Column(sa.DECIMAL(20, 2), nullable=True)
    )
    max_fee_amount: Decimal | None = Field(
        default=None, sa_column=sa.Column(sa.DECIMAL(20, 2), nullable=True)
    )
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def calculate_fee(self, amount: Decimal) -> Decimal:
        """Calculate the fee for ``amount``."""
        fee = amount * Decimal(self.fee_percentage) / Decimal("100")
        if self.min_fee_amount is not None and fee < self.min_fee_amount:
            fee = Decimal(self.min_fee_amount)
        if self.max_fee_amount is not None and fee > self.max_fee_amount:
            fee = Decimal(self.max_fee_amount)
        return fee.quantize(CENT, rounding=ROUND_HALF_UP)
