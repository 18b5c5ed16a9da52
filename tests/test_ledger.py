"""Tests for wallet balances, transaction records and platform fees."""

import asyncio
from decimal import Decimal

import pytest
from sqlmodel import select

from billing.core.exceptions import (
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from billing.models.transaction import (
    Transaction,
    TransactionSource,
    TransactionStatus,
    TransactionType,
)
from billing.models.wallet import WalletBalance
from billing.services.fee_service import FeeService
from billing.services.ledger_service import WalletLedger
from billing.services.transaction_service import TransactionService

from .conftest import BUYER_ID, KZT, USD


class TestWalletLedger:
    """Test balance mutations."""

    @pytest.mark.asyncio
    async def test_create_account_is_idempotent(self, db, catalog):
        ledger = WalletLedger(db)

        first = await ledger.create_account(BUYER_ID)
        second = await ledger.create_account(BUYER_ID)

        assert [row.currency_id for row in first] == [KZT, USD]
        assert [row.id for row in second] == [row.id for row in first]
        assert all(row.amount == 0 for row in second)

    @pytest.mark.asyncio
    async def test_missing_wallet_reads_zero(self, db, catalog):
        assert await WalletLedger(db).get_balance(BUYER_ID, KZT) == Decimal("0")

    @pytest.mark.asyncio
    async def test_debit_appends_completed_record(self, db, catalog, fund):
        await fund(BUYER_ID, "1000")
        ledger = WalletLedger(db)

        record = await ledger.debit(BUYER_ID, KZT, Decimal("250.50"), item_id="bar-9")

        assert record.status == TransactionStatus.COMPLETED
        assert record.source == TransactionSource.WALLET
        assert record.type == TransactionType.WITHDRAW
        assert record.amount == Decimal("250.50")
        assert await ledger.get_balance(BUYER_ID, KZT) == Decimal("749.50")

    @pytest.mark.asyncio
    async def test_debit_exact_balance(self, db, catalog, fund):
        await fund(BUYER_ID, "100")
        ledger = WalletLedger(db)

        await ledger.debit(BUYER_ID, KZT, Decimal("100"))

        assert await ledger.get_balance(BUYER_ID, KZT) == Decimal("0")

    @pytest.mark.asyncio
    async def test_insufficient_debit_changes_nothing(self, db, catalog, fund):
        await fund(BUYER_ID, "100")
        ledger = WalletLedger(db)

        with pytest.raises(InsufficientFundsError) as exc_info:
            await ledger.debit(BUYER_ID, KZT, Decimal("100.01"))

        assert exc_info.value.details["required"] == "100.01"
        assert Decimal(exc_info.value.details["available"]) == Decimal("100")
        assert await ledger.get_balance(BUYER_ID, KZT) == Decimal("100")
        rows = (await db.execute(select(Transaction))).scalars().all()
        assert rows == []

    @pytest.mark.asyncio
    async def test_debit_without_wallet(self, db, catalog):
        with pytest.raises(InsufficientFundsError):
            await WalletLedger(db).debit(BUYER_ID, KZT, Decimal("1"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-5"])
    async def test_non_positive_amounts_are_rejected(self, db, catalog, fund, amount):
        await fund(BUYER_ID, "100")
        ledger = WalletLedger(db)

        with pytest.raises(ValidationError):
            await ledger.debit(BUYER_ID, KZT, Decimal(amount))
        with pytest.raises(ValidationError):
            await ledger.credit(BUYER_ID, KZT, Decimal(amount))

    @pytest.mark.asyncio
    async def test_credit_creates_wallet_row(self, db, catalog):
        ledger = WalletLedger(db)

        record = await ledger.credit(BUYER_ID, USD, Decimal("12.34"), source=TransactionSource.CARD)

        assert record.type == TransactionType.DEPOSIT
        assert record.status == TransactionStatus.COMPLETED
        assert await ledger.get_balance(BUYER_ID, USD) == Decimal("12.34")

    @pytest.mark.asyncio
    async def test_debit_completes_pending_record(self, db, catalog, fund):
        await fund(BUYER_ID, "500")
        record = await TransactionService(db).create_pending(
            BUYER_ID, KZT, Decimal("200"), TransactionType.WITHDRAW, TransactionSource.WALLET
        )

        completed = await WalletLedger(db).debit(BUYER_ID, KZT, Decimal("200"), record=record)

        assert completed.id == record.id
        assert completed.status == TransactionStatus.COMPLETED
        count = (await db.execute(select(Transaction.id))).scalars().all()
        assert len(count) == 1

    @pytest.mark.asyncio
    async def test_debit_refuses_finalized_record(self, db, catalog, fund):
        await fund(BUYER_ID, "500")
        transactions = TransactionService(db)
        record = await transactions.create_pending(
            BUYER_ID, KZT, Decimal("200"), TransactionType.WITHDRAW, TransactionSource.WALLET
        )
        await transactions.finalize(record, TransactionStatus.CANCELED)
        ledger = WalletLedger(db)

        with pytest.raises(ConflictError):
            await ledger.debit(BUYER_ID, KZT, Decimal("200"), record=record)

        assert await ledger.get_balance(BUYER_ID, KZT) == Decimal("500")
        assert record.status == TransactionStatus.CANCELED

    @pytest.mark.asyncio
    async def test_concurrent_debits_never_overdraw(self, session_factory, db, catalog, fund):
        await fund(BUYER_ID, "1000")

        async def spend() -> Transaction:
            async with session_factory() as session:
                return await WalletLedger(session).debit(BUYER_ID, KZT, Decimal("600"))

        results = await asyncio.gather(spend(), spend(), return_exceptions=True)

        succeeded = [result for result in results if isinstance(result, Transaction)]
        refused = [result for result in results if isinstance(result, InsufficientFundsError)]
        assert len(succeeded) == 1
        assert len(refused) == 1
        async with session_factory() as session:
            balance = await WalletLedger(session).get_balance(BUYER_ID, KZT)
        assert balance == Decimal("400")

    @pytest.mark.asyncio
    async def test_balances_with_currency_codes(self, db, catalog, fund):
        await fund(BUYER_ID, "10", currency_id=USD)

        balances = await WalletLedger(db).get_balances(BUYER_ID)

        assert len(balances) == 1
        assert balances[0]["currency_id"] == USD
        assert balances[0]["currency_code"] == "USD"
        assert Decimal(balances[0]["balance"]) == Decimal("10")

    @pytest.mark.asyncio
    async def test_history_newest_first(self, db, catalog, fund):
        await fund(BUYER_ID, "1000")
        ledger = WalletLedger(db)
        first = await ledger.debit(BUYER_ID, KZT, Decimal("10"))
        second = await ledger.credit(BUYER_ID, KZT, Decimal("5"))

        history = await ledger.list_transactions(BUYER_ID)

        assert [entry["id"] for entry in history] == [second.id, first.id]
        assert history[0]["currency_code"] == "KZT"
        assert history[0]["created_at"].endswith("Z")
        assert history[0]["payment"] is None


class TestTransactionService:
    """Test the transaction state machine."""

    @pytest.mark.asyncio
    async def test_created_pending(self, db, catalog):
        record = await TransactionService(db).create_pending(
            BUYER_ID, KZT, Decimal("99"), TransactionType.DEPOSIT, TransactionSource.CARD
        )

        assert record.id is not None
        assert record.status == TransactionStatus.PENDING
        assert record.order_id is None

    @pytest.mark.asyncio
    async def test_amount_must_be_positive(self, db, catalog):
        with pytest.raises(ValidationError):
            await TransactionService(db).create_pending(
                BUYER_ID, KZT, Decimal("0"), TransactionType.DEPOSIT, TransactionSource.CARD
            )

    @pytest.mark.asyncio
    async def test_finalize_once(self, db, catalog):
        transactions = TransactionService(db)
        record = await transactions.create_pending(
            BUYER_ID, KZT, Decimal("99"), TransactionType.DEPOSIT, TransactionSource.CARD
        )

        await transactions.finalize(record, TransactionStatus.FAILED, data={"reason": "declined"})

        with pytest.raises(ConflictError):
            await transactions.finalize(record, TransactionStatus.COMPLETED)
        assert record.status == TransactionStatus.FAILED
        assert record.transaction_data == {"reason": "declined"}
        assert record.amount == Decimal("99")

    @pytest.mark.asyncio
    async def test_finalize_to_pending_is_invalid(self, db, catalog):
        transactions = TransactionService(db)
        record = await transactions.create_pending(
            BUYER_ID, KZT, Decimal("99"), TransactionType.DEPOSIT, TransactionSource.CARD
        )

        with pytest.raises(ValidationError):
            await transactions.finalize(record, TransactionStatus.PENDING)

    @pytest.mark.asyncio
    async def test_concurrent_finalize_has_one_winner(self, session_factory, db, catalog):
        record = await TransactionService(db).create_pending(
            BUYER_ID, KZT, Decimal("99"), TransactionType.DEPOSIT, TransactionSource.CARD
        )

        async def finalize(status: TransactionStatus) -> Transaction:
            async with session_factory() as session:
                transactions = TransactionService(session)
                own = await transactions.get(record.id)
                return await transactions.finalize(own, status)

        results = await asyncio.gather(
            finalize(TransactionStatus.COMPLETED),
            finalize(TransactionStatus.FAILED),
            return_exceptions=True,
        )

        assert sum(isinstance(result, Transaction) for result in results) == 1
        assert sum(isinstance(result, ConflictError) for result in results) == 1

    @pytest.mark.asyncio
    async def test_get_for_user_hides_other_users(self, db, catalog):
        transactions = TransactionService(db)
        record = await transactions.create_pending(
            BUYER_ID, KZT, Decimal("99"), TransactionType.DEPOSIT, TransactionSource.CARD
        )

        with pytest.raises(NotFoundError):
            await transactions.get_for_user(record.id, user_id=BUYER_ID + 100)

    @pytest.mark.asyncio
    async def test_order_id_lookup(self, db, catalog):
        transactions = TransactionService(db)
        record = await transactions.create_pending(
            BUYER_ID, KZT, Decimal("99"), TransactionType.DEPOSIT, TransactionSource.CARD
        )
        await transactions.attach_gateway_response(record, "pay_1700000000000", "pay-1", {"success": True})

        found = await transactions.get_by_order_id("pay_1700000000000")

        assert found.id == record.id
        assert found.payment_id == "pay-1"
        assert await transactions.get_by_order_id("pay_0") is None


class TestFeeService:
    """Test platform fee rules and calculation (5%, min 10, max 200 on KZT)."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "amount, fee, net",
        [
            ("500", "25.00", "475.00"),
            ("100", "10.00", "90.00"),
            ("10000", "200.00", "9800.00"),
            ("333.33", "16.67", "316.66"),
        ],
    )
    async def test_calculate(self, db, catalog, amount, fee, net):
        breakdown = await FeeService(db).calculate(Decimal(amount), KZT)

        assert breakdown.fee_amount == Decimal(fee)
        assert breakdown.final_amount == Decimal(net)
        assert breakdown.fee_percentage == Decimal("5")

    @pytest.mark.asyncio
    async def test_no_rule_means_no_fee(self, db, catalog):
        breakdown = await FeeService(db).calculate(Decimal("80"), USD)

        assert breakdown.fee_amount == Decimal("0")
        assert breakdown.final_amount == Decimal("80")

    @pytest.mark.asyncio
    async def test_half_up_rounding(self, db, catalog):
        fees = FeeService(db)
        await fees.create_fee(USD, Decimal("5"))

        breakdown = await fees.calculate(Decimal("10.10"), USD)

        assert breakdown.fee_amount == Decimal("0.51")
        assert breakdown.final_amount == Decimal("9.59")

    @pytest.mark.asyncio
    async def test_new_rule_replaces_active_one(self, session_factory, db, catalog):
        rule = await FeeService(db).create_fee(KZT, Decimal("7.50"))

        async with session_factory() as session:
            fees = FeeService(session)
            active = await fees.list_active_fees()
            history = await fees.fee_history(KZT)
            breakdown = await fees.calculate(Decimal("1000"), KZT)

        assert [fee.id for fee in active] == [rule.id]
        assert len(history) == 2
        assert [fee.is_active for fee in history] == [True, False]
        assert breakdown.fee_amount == Decimal("75.00")

    @pytest.mark.asyncio
    async def test_invalid_bounds(self, db, catalog):
        fees = FeeService(db)

        with pytest.raises(ValidationError):
            await fees.create_fee(KZT, Decimal("5"), min_fee_amount=Decimal("50"), max_fee_amount=Decimal("10"))
        with pytest.raises(ValidationError):
            await fees.create_fee(KZT, Decimal("101"))
        with pytest.raises(NotFoundError):
            await fees.create_fee(99, Decimal("5"))

    @pytest.mark.asyncio
    async def test_update_rule(self, db, catalog):
        fees = FeeService(db)
        rule = await fees.get_active_fee(KZT)

        await fees.update_fee(rule.id, {"max_fee_amount": None})

        breakdown = await fees.calculate(Decimal("10000"), KZT)
        assert breakdown.fee_amount == Decimal("500.00")
