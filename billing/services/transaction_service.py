"""Transaction Service - lifecycle of transaction records.

State machine: ``pending -> completed | failed | canceled``. A record is
written ``pending`` before anything else happens, and leaves ``pending``
at most once. The amount never changes after creation.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import exc as sa_exc
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from billing.core.exceptions import ConflictError, NotFoundError, ValidationError
from billing.models.transaction import (
    Transaction,
    TransactionSource,
    TransactionStatus,
    TransactionType,
)

logger = logging.getLogger(__name__)


def purchase_key(user_id: int, item_id: str | None) -> str | None:
    return f"{user_id}:{item_id}" if item_id else None


class TransactionService:
    """Service for transaction records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_pending(
        self,
        user_id: int,
        currency_id: int,
        amount: Decimal,
        type: TransactionType,
        source: TransactionSource,
        item_id: str | None = None,
        subscription_plan_id: int | None = None,
        subscription_price_id: int | None = None,
        user_subscription_id: int | None = None,
        description: str | None = None,
    ) -> Transaction:
        """Record the intent of a money movement and commit it.

        An item purchase claims the buyer's purchase key for that item. A
        second purchase of the same item cannot be recorded until the first
        one fails or is canceled.

        Raises:
            ConflictError: The item is already bought or being bought
        """
        if Decimal(amount) <= 0:
            raise ValidationError("Amount must be positive")
        record = Transaction(
            user_id=user_id,
            currency_id=currency_id,
            amount=Decimal(amount),
            type=type,
            source=source,
            status=TransactionStatus.PENDING,
            item_id=item_id,
            subscription_plan_id=subscription_plan_id,
            subscription_price_id=subscription_price_id,
            user_subscription_id=user_subscription_id,
            description=description,
            purchase_key=purchase_key(user_id, item_id) if type == TransactionType.WITHDRAW else None,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except sa_exc.IntegrityError:
            await self.db.rollback()
            logger.info(f"Purchase of item {item_id} by user {user_id} already in progress or completed")
            raise ConflictError("You have already purchased this item", {"item_id": item_id})
        await self.db.refresh(record)
        logger.info(
            f"Transaction {record.id} pending: user={user_id} {type.value}/{source.value} "
            f"amount={amount} currency={currency_id}"
        )
        return record

    async def get(self, transaction_id: int) -> Transaction | None:
        return await self.db.get(Transaction, transaction_id)

    async def get_for_user(self, transaction_id: int, user_id: int) -> Transaction:
        record = await self.db.get(Transaction, transaction_id)
        if record is None or record.user_id != user_id:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return record

    async def get_by_order_id(self, order_id: str, for_update: bool = False) -> Transaction | None:
        """Find a record by gateway order id.

        ``for_update`` locks the row so concurrent callbacks for the same
        order are processed one after the other.
        """
        query = select(Transaction).where(Transaction.order_id == order_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def attach_gateway_response(
        self,
        record: Transaction,
        order_id: str,
        payment_id: str | None,
        data: dict[str, Any],
    ) -> Transaction:
        """Store the gateway order id and response on a pending record."""
        record.order_id = order_id
        record.payment_id = payment_id
        record.transaction_data = data
        record.updated_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def finalize(
        self,
        record: Transaction,
        status: TransactionStatus,
        data: dict[str, Any] | None = None,
        user_subscription_id: int | None = None,
    ) -> Transaction:
        """Move a pending record to a terminal status and commit.

        Uses a conditional update so that two writers racing on the same
        record cannot both finalize it.

        Raises:
            ConflictError: The record is no longer pending
        """
        if not TransactionStatus(status).is_terminal:
            raise ValidationError(f"{status} is not a terminal status")

        values: dict[str, Any] = {"status": status, "updated_at": datetime.utcnow()}
        if data is not None:
            values["transaction_data"] = data
        if user_subscription_id is not None:
            values["user_subscription_id"] = user_subscription_id
        if status in (TransactionStatus.FAILED, TransactionStatus.CANCELED):
            values["purchase_key"] = None

        result = await self.db.execute(
            update(Transaction)
            .where(Transaction.id == record.id, Transaction.status == TransactionStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            await self.db.refresh(record)
            raise ConflictError(
                f"Transaction {record.id} is not pending",
                {"transaction_id": record.id},
            )
        await self.db.commit()
        await self.db.refresh(record)
        logger.info(f"Transaction {record.id} -> {status.value}")
        return record

    async def is_item_purchased(self, user_id: int, item_id: str) -> bool:
        """Whether the user owns the item or has a purchase of it in flight."""
        result = await self.db.execute(
            select(Transaction.id).where(Transaction.purchase_key == purchase_key(user_id, item_id))
        )
        return result.scalar_one_or_none() is not None

    async def list_stale_pending(self, older_than: datetime, limit: int = 100) -> list[Transaction]:
        """Pending card records with a gateway order id created before ``older_than``."""
        result = await self.db.execute(
            select(Transaction)
            .where(
                Transaction.status == TransactionStatus.PENDING,
                Transaction.source == TransactionSource.CARD,
                Transaction.order_id.is_not(None),
                Transaction.created_at < older_than,
            )
            .order_by(Transaction.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_purchased_items(self, user_id: int, limit: int = 50, offset: int = 0) -> list[Transaction]:
        """Completed item purchases of a user, newest first."""
        result = await self.db.execute(
            select(Transaction)
            .where(
                Transaction.user_id == user_id,
                Transaction.item_id.is_not(None),
                Transaction.type == TransactionType.WITHDRAW,
                Transaction.status == TransactionStatus.COMPLETED,
            )
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())
