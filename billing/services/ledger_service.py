"""Wallet Ledger - per-user, per-currency balances.

Every balance mutation and its ledger row are committed in one unit of
work. Debits are a single conditional UPDATE (``amount >= x``), so two
concurrent debits can never both spend the same funds; the advisory
``check_balance`` exists only for early user feedback.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import exc as sa_exc
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from billing.core.cache import Cache
from billing.core.exceptions import ConflictError, InsufficientFundsError, ValidationError
from billing.models.transaction import (
    Transaction,
    TransactionSource,
    TransactionStatus,
    TransactionType,
)
from billing.models.wallet import Currency, WalletBalance
from billing.utils.helpers import format_utc_datetime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceCheck:
    """Advisory balance check result."""

    sufficient: bool
    current: Decimal


def transactions_cache_pattern(user_id: int) -> str:
    return f"user_transactions:{user_id}:*"


class WalletLedger:
    """Service for wallet balances and their ledger rows."""

    def __init__(self, db: AsyncSession, cache: Cache | None = None):
        self.db = db
        self.cache = cache or Cache()

    # =========================================================================
    # Accounts
    # =========================================================================

    async def create_account(self, user_id: int) -> list[WalletBalance]:
        """Seed a zero balance for every active currency. Idempotent."""
        currency_ids = (
            await self.db.execute(select(Currency.id).where(Currency.is_active == True))  # noqa: E712
        ).scalars().all()
        existing = set(
            (
                await self.db.execute(
                    select(WalletBalance.currency_id).where(WalletBalance.user_id == user_id)
                )
            ).scalars().all()
        )
        missing = [currency_id for currency_id in currency_ids if currency_id not in existing]
        if missing:
            for currency_id in missing:
                self.db.add(
                    WalletBalance(user_id=user_id, currency_id=currency_id, amount=Decimal("0.00"))
                )
            try:
                await self.db.commit()
            except sa_exc.IntegrityError:
                # created concurrently by another request
                await self.db.rollback()
            logger.info(f"Wallet created for user {user_id}: {len(missing)} currencies seeded")
        return await self.get_balance_rows(user_id)

    async def get_balance_rows(self, user_id: int) -> list[WalletBalance]:
        result = await self.db.execute(
            select(WalletBalance)
            .where(WalletBalance.user_id == user_id)
            .order_by(WalletBalance.currency_id)
        )
        return list(result.scalars().all())

    async def get_balances(self, user_id: int) -> list[dict[str, Any]]:
        """Balances of a user with currency codes."""
        result = await self.db.execute(
            select(WalletBalance, Currency)
            .join(Currency, Currency.id == WalletBalance.currency_id)
            .where(WalletBalance.user_id == user_id)
            .order_by(WalletBalance.currency_id)
        )
        return [
            {
                "currency_id": balance.currency_id,
                "currency_code": currency.code,
                "balance": str(balance.amount),
            }
            for balance, currency in result.all()
        ]

    async def get_balance(self, user_id: int, currency_id: int) -> Decimal:
        """Current balance, zero when the wallet row does not exist yet."""
        result = await self.db.execute(
            select(WalletBalance.amount).where(
                WalletBalance.user_id == user_id,
                WalletBalance.currency_id == currency_id,
            )
        )
        amount = result.scalar_one_or_none()
        return Decimal(amount) if amount is not None else Decimal("0.00")

    async def check_balance(self, user_id: int, currency_id: int, amount: Decimal) -> BalanceCheck:
        """Advisory check. Not a guarantee: only ``debit`` decides."""
        current = await self.get_balance(user_id, currency_id)
        return BalanceCheck(sufficient=current >= Decimal(amount), current=current)

    # =========================================================================
    # Mutations
    # =========================================================================

    async def debit(
        self,
        user_id: int,
        currency_id: int,
        amount: Decimal,
        type: TransactionType = TransactionType.WITHDRAW,
        item_id: str | None = None,
        user_subscription_id: int | None = None,
        subscription_plan_id: int | None = None,
        subscription_price_id: int | None = None,
        description: str | None = None,
        record: Transaction | None = None,
    ) -> Transaction:
        """Atomically take ``amount`` from a wallet.

        The balance row is decremented only if it holds at least ``amount``.
        In the same commit either ``record`` (a pending transaction) is
        completed or a new completed wallet transaction is appended.

        Raises:
            ValidationError: amount is not positive
            InsufficientFundsError: balance too low or wallet missing (nothing changed)
            ConflictError: ``record`` is no longer pending (nothing changed)
        """
        amount = self._positive(amount)
        now = datetime.utcnow()

        result = await self.db.execute(
            update(WalletBalance)
            .where(
                WalletBalance.user_id == user_id,
                WalletBalance.currency_id == currency_id,
                WalletBalance.amount >= amount,
            )
            .values(amount=WalletBalance.amount - amount, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self._rollback(record)
            available = await self.get_balance(user_id, currency_id)
            logger.info(
                f"Debit refused for user {user_id}: required={amount} available={available} "
                f"currency={currency_id}"
            )
            raise InsufficientFundsError(required=amount, available=available)

        if record is not None:
            await self._complete_record(
                record, now, user_subscription_id=user_subscription_id
            )
            transaction_id = record.id
        else:
            ledger_row = Transaction(
                user_id=user_id,
                currency_id=currency_id,
                amount=amount,
                type=type,
                source=TransactionSource.WALLET,
                status=TransactionStatus.COMPLETED,
                item_id=item_id,
                user_subscription_id=user_subscription_id,
                subscription_plan_id=subscription_plan_id,
                subscription_price_id=subscription_price_id,
                description=description,
                created_at=now,
                updated_at=now,
            )
            self.db.add(ledger_row)
            await self.db.flush()
            transaction_id = ledger_row.id

        await self.db.commit()
        await self.invalidate_history(user_id)
        logger.info(f"Debited {amount} from user {user_id} currency {currency_id} (tx {transaction_id})")
        return await self._reload(transaction_id)

    async def credit(
        self,
        user_id: int,
        currency_id: int,
        amount: Decimal,
        type: TransactionType = TransactionType.DEPOSIT,
        source: TransactionSource = TransactionSource.WALLET,
        item_id: str | None = None,
        description: str | None = None,
        record: Transaction | None = None,
    ) -> Transaction:
        """Add ``amount`` to a wallet, creating the balance row if needed.

        In the same commit either ``record`` is completed or a new completed
        transaction is appended.

        Raises:
            ValidationError: amount is not positive
            ConflictError: ``record`` is no longer pending (nothing changed)
        """
        amount = self._positive(amount)

        for attempt in range(2):
            now = datetime.utcnow()
            try:
                result = await self.db.execute(
                    update(WalletBalance)
                    .where(
                        WalletBalance.user_id == user_id,
                        WalletBalance.currency_id == currency_id,
                    )
                    .values(amount=WalletBalance.amount + amount, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    self.db.add(WalletBalance(user_id=user_id, currency_id=currency_id, amount=amount))
                    await self.db.flush()

                if record is not None:
                    await self._complete_record(record, now)
                    transaction_id = record.id
                else:
                    ledger_row = Transaction(
                        user_id=user_id,
                        currency_id=currency_id,
                        amount=amount,
                        type=type,
                        source=source,
                        status=TransactionStatus.COMPLETED,
                        item_id=item_id,
                        description=description,
                        created_at=now,
                        updated_at=now,
                    )
                    self.db.add(ledger_row)
                    await self.db.flush()
                    transaction_id = ledger_row.id
                await self.db.commit()
                break
            except sa_exc.IntegrityError:
                # the balance row was inserted concurrently; retry as an update
                await self._rollback(record)
                if attempt == 1:
                    raise

        await self.invalidate_history(user_id)
        logger.info(f"Credited {amount} to user {user_id} currency {currency_id} (tx {transaction_id})")
        return await self._reload(transaction_id)

    async def _complete_record(
        self,
        record: Transaction,
        now: datetime,
        user_subscription_id: int | None = None,
    ) -> None:
        values: dict[str, Any] = {"status": TransactionStatus.COMPLETED, "updated_at": now}
        if user_subscription_id is not None:
            values["user_subscription_id"] = user_subscription_id
        result = await self.db.execute(
            update(Transaction)
            .where(Transaction.id == record.id, Transaction.status == TransactionStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self._rollback(record)
            raise ConflictError(
                f"Transaction {record.id} is not pending",
                {"transaction_id": record.id},
            )

    async def _rollback(self, record: Transaction | None) -> None:
        """Roll back and reload the caller's record, which rollback expires."""
        await self.db.rollback()
        if record is not None:
            await self.db.refresh(record)

    async def _reload(self, transaction_id: int) -> Transaction:
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    @staticmethod
    def _positive(amount: Decimal) -> Decimal:
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("Amount must be positive", {"amount": str(amount)})
        return amount

    # =========================================================================
    # History
    # =========================================================================

    async def list_transactions(
        self,
        user_id: int,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Paged transaction history, newest first (read-through cached)."""
        cache_key = f"user_transactions:{user_id}:{limit}:{offset}"
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return cached

        result = await self.db.execute(
            select(Transaction, Currency.code)
            .join(Currency, Currency.id == Transaction.currency_id, isouter=True)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        history = [self._history_entry(record, code) for record, code in result.all()]
        await self.cache.set(cache_key, history)
        return history

    async def invalidate_history(self, user_id: int) -> None:
        await self.cache.delete_pattern(transactions_cache_pattern(user_id))

    @staticmethod
    def _history_entry(record: Transaction, currency_code: str | None) -> dict[str, Any]:
        data = record.transaction_data or {}
        payer_info = data.get("payer_info") or {}
        entry: dict[str, Any] = {
            "id": record.id,
            "currency_id": record.currency_id,
            "currency_code": currency_code,
            "amount": str(record.amount),
            "type": record.type.value,
            "source": record.source.value,
            "status": record.status.value,
            "item_id": record.item_id,
            "description": record.description,
            "created_at": format_utc_datetime(record.created_at),
            "payment": None,
        }
        if record.payment_id:
            entry["payment"] = {
                "pan": payer_info.get("pan_masked") or "****",
                "receipt": {"payment_id": record.payment_id, "order_id": record.order_id or ""},
            }
        return entry
