"""Payment Token Service - stored recurring-charge card tokens."""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from billing.models.token import PaymentToken
from billing.utils.helpers import format_utc_datetime

logger = logging.getLogger(__name__)


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


def _parse_amount(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class TokenService:
    """Service for payment tokens (append-only)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def save_token(
        self,
        user_id: int,
        token: str,
        pan_masked: str | None = None,
        expired_at: Any = None,
        amount: Any = None,
        commit: bool = True,
    ) -> PaymentToken | None:
        """Store a token issued by the gateway.

        A token string that is already stored is not written again.
        """
        if not token:
            return None
        existing = (
            await self.db.execute(select(PaymentToken).where(PaymentToken.token == token))
        ).scalar_one_or_none()
        if existing is not None:
            return existing

        payment_token = PaymentToken(
            user_id=user_id,
            token=token,
            pan_masked=pan_masked,
            expired_at=_parse_datetime(expired_at),
            amount=_parse_amount(amount),
        )
        self.db.add(payment_token)
        try:
            if commit:
                await self.db.commit()
                await self.db.refresh(payment_token)
            else:
                await self.db.flush()
        except sa_exc.IntegrityError:
            await self.db.rollback()
            logger.info(f"Payment token for user {user_id} stored concurrently")
            return (
                await self.db.execute(select(PaymentToken).where(PaymentToken.token == token))
            ).scalar_one_or_none()
        logger.info(f"Payment token {payment_token.id} stored for user {user_id} ({pan_masked})")
        return payment_token

    async def get_token(self, token_id: int, user_id: int) -> PaymentToken | None:
        """Token by id, only if it belongs to the user."""
        result = await self.db.execute(
            select(PaymentToken).where(PaymentToken.id == token_id, PaymentToken.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def latest_for_card(self, user_id: int, pan_masked: str | None) -> PaymentToken | None:
        """Newest token of the user for a masked card number."""
        if not pan_masked:
            return None
        result = await self.db.execute(
            select(PaymentToken)
            .where(PaymentToken.user_id == user_id, PaymentToken.pan_masked == pan_masked)
            .order_by(PaymentToken.created_at.desc(), PaymentToken.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_tokens(self, user_id: int) -> list[dict[str, Any]]:
        """Saved cards of a user (token values are never returned)."""
        result = await self.db.execute(
            select(PaymentToken)
            .where(PaymentToken.user_id == user_id)
            .order_by(PaymentToken.created_at.desc(), PaymentToken.id.desc())
        )
        return [
            {
                "id": token.id,
                "pan_masked": token.pan_masked,
                "amount": str(token.amount) if token.amount is not None else None,
                "expired_at": format_utc_datetime(token.expired_at),
                "created_at": format_utc_datetime(token.created_at),
            }
            for token in result.scalars().all()
        ]
