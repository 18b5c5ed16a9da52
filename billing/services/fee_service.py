"""Fee Service - platform fee rules and fee calculation."""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from billing.core.cache import Cache
from billing.core.exceptions import NotFoundError, ValidationError
from billing.models.fee import CENT, PlatformFee
from billing.models.wallet import Currency

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeeBreakdown:
    """Result of a fee calculation."""

    original_amount: Decimal
    fee_amount: Decimal
    final_amount: Decimal
    fee_percentage: Decimal

    def to_dict(self) -> dict[str, str]:
        return {
            "original_amount": str(self.original_amount),
            "fee_amount": str(self.fee_amount),
            "final_amount": str(self.final_amount),
            "fee_percentage": str(self.fee_percentage),
        }


def _fee_cache_key(currency_id: int) -> str:
    return f"platform_fee:active:{currency_id}"


def _fee_to_cache(fee: PlatformFee) -> dict[str, Any]:
    return {
        "id": fee.id,
        "currency_id": fee.currency_id,
        "fee_percentage": str(fee.fee_percentage),
        "min_fee_amount": str(fee.min_fee_amount) if fee.min_fee_amount is not None else None,
        "max_fee_amount": str(fee.max_fee_amount) if fee.max_fee_amount is not None else None,
        "is_active": fee.is_active,
    }


def _fee_from_cache(data: dict[str, Any]) -> PlatformFee:
    return PlatformFee(
        id=data["id"],
        currency_id=data["currency_id"],
        fee_percentage=Decimal(data["fee_percentage"]),
        min_fee_amount=Decimal(data["min_fee_amount"]) if data.get("min_fee_amount") is not None else None,
        max_fee_amount=Decimal(data["max_fee_amount"]) if data.get("max_fee_amount") is not None else None,
        is_active=data.get("is_active", True),
    )


class FeeService:
    """Service for platform fee rules.

    At most one rule per currency is active. A currency without a rule is
    charged no fee.
    """

    def __init__(self, db: AsyncSession, cache: Cache | None = None):
        self.db = db
        self.cache = cache or Cache()

    # =========================================================================
    # Calculation
    # =========================================================================

    async def calculate(self, amount: Decimal, currency_id: int) -> FeeBreakdown:
        """Calculate the platform fee for ``amount`` in ``currency_id``.

        Returns:
            FeeBreakdown with fee and final amount rounded half-up to 2 places
        """
        amount = Decimal(amount)
        fee_rule = await self.get_active_fee(currency_id)
        if fee_rule is None:
            return FeeBreakdown(
                original_amount=amount,
                fee_amount=Decimal("0.00"),
                final_amount=amount.quantize(CENT, rounding=ROUND_HALF_UP),
                fee_percentage=Decimal("0"),
            )

        fee_amount = fee_rule.calculate_fee(amount)
        final_amount = (amount - fee_amount).quantize(CENT, rounding=ROUND_HALF_UP)
        return FeeBreakdown(
            original_amount=amount,
            fee_amount=fee_amount,
            final_amount=final_amount,
            fee_percentage=Decimal(fee_rule.fee_percentage),
        )

    # =========================================================================
    # Rules
    # =========================================================================

    async def get_active_fee(self, currency_id: int) -> PlatformFee | None:
        """Get the active rule for a currency (read-through cached)."""
        cached = await self.cache.get(_fee_cache_key(currency_id))
        if cached:
            return _fee_from_cache(cached)

        result = await self.db.execute(
            select(PlatformFee)
            .where(PlatformFee.currency_id == currency_id, PlatformFee.is_active == True)  # noqa: E712
            .order_by(PlatformFee.created_at.desc(), PlatformFee.id.desc())
        )
        fee_rule = result.scalars().first()
        if fee_rule is not None:
            await self.cache.set(_fee_cache_key(currency_id), _fee_to_cache(fee_rule))
        return fee_rule

    async def list_active_fees(self) -> list[PlatformFee]:
        result = await self.db.execute(
            select(PlatformFee)
            .where(PlatformFee.is_active == True)  # noqa: E712
            .order_by(PlatformFee.currency_id)
        )
        return list(result.scalars().all())

    async def fee_history(self, currency_id: int) -> list[PlatformFee]:
        """All rules of a currency, newest first."""
        result = await self.db.execute(
            select(PlatformFee)
            .where(PlatformFee.currency_id == currency_id)
            .order_by(PlatformFee.created_at.desc(), PlatformFee.id.desc())
        )
        return list(result.scalars().all())

    async def create_fee(
        self,
        currency_id: int,
        fee_percentage: Decimal,
        min_fee_amount: Decimal | None = None,
        max_fee_amount: Decimal | None = None,
    ) -> PlatformFee:
        """Create a new active rule and deactivate the previous one.

        Both changes are committed together.

        Raises:
            NotFoundError: Unknown currency
            ValidationError: Invalid percentage or bounds
        """
        self._validate(fee_percentage, min_fee_amount, max_fee_amount)
        if await self.db.get(Currency, currency_id) is None:
            raise NotFoundError(f"Currency {currency_id} not found")

        now = datetime.utcnow()
        try:
            await self.db.execute(
                update(PlatformFee)
                .where(PlatformFee.currency_id == currency_id, PlatformFee.is_active == True)  # noqa: E712
                .values(is_active=False, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            fee_rule = PlatformFee(
                currency_id=currency_id,
                fee_percentage=Decimal(fee_percentage),
                min_fee_amount=min_fee_amount,
                max_fee_amount=max_fee_amount,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            self.db.add(fee_rule)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(fee_rule)
        await self.cache.delete(_fee_cache_key(currency_id))
        logger.info(
            f"Platform fee {fee_rule.id} active for currency {currency_id}: "
            f"{fee_rule.fee_percentage}% (min={min_fee_amount}, max={max_fee_amount})"
        )
        return fee_rule

    async def update_fee(self, fee_id: int, data: dict[str, Any]) -> PlatformFee:
        """Update percentage, bounds or active flag of a rule in place.

        Raises:
            NotFoundError: Rule does not exist
            ValidationError: Invalid values
        """
        fee_rule = await self.db.get(PlatformFee, fee_id)
        if fee_rule is None:
            raise NotFoundError(f"Platform fee {fee_id} not found")

        fee_percentage = data.get("fee_percentage", fee_rule.fee_percentage)
        min_fee_amount = data.get("min_fee_amount", fee_rule.min_fee_amount)
        max_fee_amount = data.get("max_fee_amount", fee_rule.max_fee_amount)
        self._validate(fee_percentage, min_fee_amount, max_fee_amount)

        if data.get("is_active") and not fee_rule.is_active:
            await self.db.execute(
                update(PlatformFee)
                .where(
                    PlatformFee.currency_id == fee_rule.currency_id,
                    PlatformFee.is_active == True,  # noqa: E712
                    PlatformFee.id != fee_id,
                )
                .values(is_active=False, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )

        for key in ("fee_percentage", "min_fee_amount", "max_fee_amount", "is_active"):
            if key in data:
                setattr(fee_rule, key, data[key])
        fee_rule.updated_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(fee_rule)
        await self.cache.delete(_fee_cache_key(fee_rule.currency_id))
        return fee_rule

    @staticmethod
    def _validate(
        fee_percentage: Decimal,
        min_fee_amount: Decimal | None,
        max_fee_amount: Decimal | None,
    ) -> None:
        if fee_percentage is None or not Decimal("0") <= Decimal(fee_percentage) <= Decimal("100"):
            raise ValidationError("Fee percentage must be between 0 and 100")
        if min_fee_amount is not None and Decimal(min_fee_amount) < 0:
            raise ValidationError("Minimum fee must not be negative")
        if max_fee_amount is not None and Decimal(max_fee_amount) < 0:
            raise ValidationError("Maximum fee must not be negative")
        if (
            min_fee_amount is not None
            and max_fee_amount is not None
            and Decimal(min_fee_amount) > Decimal(max_fee_amount)
        ):
            raise ValidationError("Minimum fee must not exceed maximum fee")
