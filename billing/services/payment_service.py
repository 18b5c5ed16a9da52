"""Payment Engine - orchestrates purchases, top-ups and subscription payments.

Funding sources:
- wallet: atomic debit of the buyer's wallet, no gateway round trip
- token: synchronous gateway charge of a stored card token
- card: hosted checkout; the final status arrives later by callback

Every attempt starts with a pending transaction record. Gateway failures
leave it pending for reconciliation; signature failures abort before any
decoded data is used. Callbacks are idempotent: a record that already left
``pending`` is acknowledged without repeating side effects.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from billing.core.cache import Cache
from billing.core.config import Settings, get_settings
from billing.core.exceptions import (
    ConflictError,
    ForbiddenError,
    GatewayError,
    InsufficientFundsError,
    IntegrityError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from billing.gateway import protocol
from billing.gateway.client import GatewayClient, GatewayResult
from billing.gateway.protocol import GatewayPayload
from billing.models.subscription import PaymentMethod, UserSubscription
from billing.models.token import PaymentToken
from billing.models.transaction import (
    Transaction,
    TransactionSource,
    TransactionStatus,
    TransactionType,
)
from billing.models.wallet import Currency
from billing.services.directory_client import DirectoryClient, ItemInfo
from billing.services.fee_service import FeeService
from billing.services.ledger_service import WalletLedger
from billing.services.notification_service import NotificationDispatcher, get_dispatcher
from billing.services.subscription_service import PlanPrice, SubscriptionService
from billing.services.token_service import TokenService
from billing.services.transaction_service import TransactionService

logger = logging.getLogger(__name__)

PAYMENT_TYPES = ("wallet", "token", "card")
CALLBACK_TYPES = {
    "payment": TransactionType.WITHDRAW,
    "wallet": TransactionType.DEPOSIT,
    "subscription": TransactionType.SUBSCRIPTION,
}
UNAVAILABLE_MESSAGE = "This content is temporarily unavailable for purchase. Please contact the owner."


@dataclass
class PaymentOutcome:
    """Result returned to the caller of a payment operation."""

    payment_type: str
    success: bool
    status: TransactionStatus
    transaction_id: int | None = None
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment_type": self.payment_type,
            "success": self.success,
            "status": self.status.value,
            "transaction_id": self.transaction_id,
            "message": self.message,
            "data": self.data,
        }


@dataclass(frozen=True)
class CallbackResult:
    """Outcome of processing a gateway callback or status poll."""

    transaction_id: int
    order_id: str
    status: TransactionStatus
    applied: bool


class PaymentEngine:
    """Service orchestrating money movements."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: GatewayClient,
        directory: DirectoryClient | None = None,
        notifier: NotificationDispatcher | None = None,
        cache: Cache | None = None,
        default_currency_id: int = 1,
    ):
        self.db = db
        self.gateway = gateway
        self.directory = directory
        self.notifier = notifier or get_dispatcher()
        self.default_currency_id = default_currency_id

        self.transactions = TransactionService(db)
        self.ledger = WalletLedger(db, cache)
        self.fees = FeeService(db, cache)
        self.subscriptions = SubscriptionService(db)
        self.tokens = TokenService(db)

    # =========================================================================
    # Item purchase
    # =========================================================================

    async def purchase(
        self,
        user_id: int,
        payment_type: str,
        email: str,
        item_id: str,
        currency_id: int | None = None,
        token_id: int | None = None,
        success_url: str | None = None,
        failure_url: str | None = None,
    ) -> PaymentOutcome:
        """Buy a marketplace item.

        Raises:
            ValidationError: Missing/inconsistent fields or item not purchasable
            NotFoundError: Item or payment token not found
            ForbiddenError: Seller unresolvable or without an active subscription
            ConflictError: Item already purchased by this user
            InsufficientFundsError: Wallet balance too low
            GatewayError: Gateway unreachable (record stays pending)
            IntegrityError: Gateway response signature mismatch
        """
        if not payment_type or not email or not item_id:
            raise ValidationError("Missing required fields: payment_type, email, item_id")
        self._check_payment_type(payment_type, token_id)

        item = await self._get_item(item_id)
        seller_id = await self._resolve_seller(item)
        price, currency_code = self._item_price(item)
        currency_id = await self._resolve_currency(currency_code, currency_id)

        if await self.transactions.is_item_purchased(user_id, item_id):
            raise ConflictError("You have already purchased this item", {"item_id": item_id})

        if payment_type == "wallet":
            return await self._purchase_with_wallet(
                user_id, seller_id, item_id, price, currency_id, currency_code
            )

        if payment_type == "token":
            token = await self.tokens.get_token(token_id, user_id)  # type: ignore[arg-type]
            if token is None:
                raise NotFoundError("Payment token not found or doesn't belong to user")
            record = await self.transactions.create_pending(
                user_id=user_id,
                currency_id=currency_id,
                amount=price,
                type=TransactionType.WITHDRAW,
                source=TransactionSource.CARD,
                item_id=item_id,
                description=f"Item {item_id}",
            )
            result = await self._charge_token(record, token.token, price, "Korner item purchase")
            outcome = await self._settle_token_charge(record, result)
            if outcome.success:
                await self._credit_seller(seller_id, record, price, currency_id, item_id)
            self._emit_item_purchase(user_id, item_id, "token", price, currency_code, outcome)
            return outcome

        record = await self.transactions.create_pending(
            user_id=user_id,
            currency_id=currency_id,
            amount=price,
            type=TransactionType.WITHDRAW,
            source=TransactionSource.CARD,
            item_id=item_id,
            description=f"Item {item_id}",
        )
        config = self.gateway.config
        outcome = await self._checkout(
            record,
            email=email,
            callback_path="/api/payment/callback",
            success_url=success_url
            or f"{config.frontend_url}/bars/{item_id}?transactionId={record.id}",
            failure_url=failure_url
            or f"{config.frontend_url}/bar/purchase/{item_id}?transactionId={record.id}",
            description="Korner item purchase",
        )
        self._emit_item_purchase(user_id, item_id, "card", price, currency_code, outcome)
        return outcome

    async def _purchase_with_wallet(
        self,
        user_id: int,
        seller_id: int,
        item_id: str,
        price: Decimal,
        currency_id: int,
        currency_code: str,
    ) -> PaymentOutcome:
        check = await self.ledger.check_balance(user_id, currency_id, price)
        if not check.sufficient:
            raise InsufficientFundsError(
                required=price,
                available=check.current,
                message=f"Insufficient balance. Current balance: {check.current}, Required: {price}",
            )

        record = await self.transactions.create_pending(
            user_id=user_id,
            currency_id=currency_id,
            amount=price,
            type=TransactionType.WITHDRAW,
            source=TransactionSource.WALLET,
            item_id=item_id,
            description=f"Item {item_id}",
        )
        transaction_id = record.id
        try:
            await self.ledger.debit(user_id, currency_id, price, item_id=item_id, record=record)
        except InsufficientFundsError:
            await self.transactions.finalize(record, TransactionStatus.FAILED)
            self.notifier.emit(
                "item_purchase",
                "Item purchase failed: insufficient balance",
                level="error",
                user_id=user_id,
                itemId=item_id,
                paymentType="wallet",
                transactionId=transaction_id,
            )
            raise

        remaining = await self.ledger.get_balance(user_id, currency_id)
        credited = await self._credit_seller(seller_id, record, price, currency_id, item_id)
        outcome = PaymentOutcome(
            payment_type="wallet",
            success=True,
            status=TransactionStatus.COMPLETED,
            transaction_id=transaction_id,
            message="Item purchased from wallet",
            data={
                "transaction_id": transaction_id,
                "amount_deducted": str(price),
                "remaining_balance": str(remaining),
                "item_id": item_id,
                "currency_code": currency_code,
                "seller_credited": credited,
            },
        )
        self._emit_item_purchase(user_id, item_id, "wallet", price, currency_code, outcome)
        return outcome

    async def _credit_seller(
        self,
        seller_id: int | None,
        buyer_record: Transaction,
        price: Decimal,
        currency_id: int,
        item_id: str,
    ) -> bool:
        """Credit the seller's net amount after a successful buyer payment.

        Runs as its own unit of work after the buyer side is committed. A
        failure does not undo the buyer payment: it is logged with everything
        needed for manual reconciliation and emitted as an event.
        """
        buyer_transaction_id = buyer_record.id
        buyer_id = buyer_record.user_id
        if seller_id is None:
            logger.error(
                f"Seller credit skipped, owner unknown: buyer_tx={buyer_transaction_id} item={item_id}"
            )
            return False

        net_amount = price
        try:
            breakdown = await self.fees.calculate(price, currency_id)
            net_amount = breakdown.final_amount
            if net_amount <= 0:
                logger.info(f"Seller net amount is zero for item {item_id}, nothing to credit")
                return True
            await self.ledger.credit(
                seller_id,
                currency_id,
                net_amount,
                type=TransactionType.DEPOSIT,
                source=buyer_record.source,
                item_id=item_id,
                description=f"Sale of item {item_id} (buyer tx {buyer_transaction_id})",
            )
            return True
        except Exception as e:
            await self.db.rollback()
            logger.error(
                f"RECONCILE seller credit failed: seller={seller_id} buyer={buyer_id} "
                f"buyer_tx={buyer_transaction_id} item={item_id} amount={net_amount} "
                f"currency={currency_id}: {e}"
            )
            self.notifier.emit(
                "seller_credit_failed",
                "Seller credit failed after buyer payment",
                level="error",
                user_id=seller_id,
                buyerId=buyer_id,
                buyerTransactionId=buyer_transaction_id,
                itemId=item_id,
                amount=str(net_amount),
                currencyId=currency_id,
                error=str(e),
            )
            return False

    # =========================================================================
    # Wallet top-up
    # =========================================================================

    async def top_up(
        self,
        user_id: int,
        amount: Decimal,
        email: str,
        payment_type: str = "card",
        currency_id: int | None = None,
        token_id: int | None = None,
    ) -> PaymentOutcome:
        """Add funds to the wallet by card (hosted checkout) or stored token."""
        if not payment_type or not amount or not email:
            raise ValidationError("Missing required fields: payment_type, amount, email")
        if payment_type not in ("card", "token"):
            raise ValidationError("Invalid payment_type. Must be 'token' or 'card'")
        if payment_type == "token" and not token_id:
            raise ValidationError("token_id is required when payment_type is 'token'")
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("Amount must be positive")
        currency_id = currency_id or self.default_currency_id

        token = None
        if payment_type == "token":
            token = await self.tokens.get_token(token_id, user_id)  # type: ignore[arg-type]
            if token is None:
                raise NotFoundError("Payment token not found or doesn't belong to user")

        record = await self.transactions.create_pending(
            user_id=user_id,
            currency_id=currency_id,
            amount=amount,
            type=TransactionType.DEPOSIT,
            source=TransactionSource.CARD,
            description="Wallet top-up",
        )

        if token is not None:
            result = await self._charge_token(record, token.token, amount, "Korner wallet top-up")
            await self.transactions.attach_gateway_response(
                record, result.order_id, result.payment_id, result.transaction_data()
            )
            if result.charged:
                await self.ledger.credit(
                    user_id, currency_id, amount, source=TransactionSource.CARD, record=record
                )
                outcome = PaymentOutcome(
                    payment_type="token",
                    success=True,
                    status=TransactionStatus.COMPLETED,
                    transaction_id=record.id,
                    message="Token top-up payment was successful",
                    data=self._gateway_data(result),
                )
            else:
                status = await self._finalize_declined(record, result)
                outcome = PaymentOutcome(
                    payment_type="token",
                    success=False,
                    status=status,
                    transaction_id=record.id,
                    message=(
                        "Token top-up payment is being processed"
                        if status == TransactionStatus.PENDING
                        else "Token top-up payment failed"
                    ),
                    data=self._gateway_data(result),
                )
        else:
            config = self.gateway.config
            outcome = await self._checkout(
                record,
                email=email,
                callback_path="/api/wallet/callback",
                success_url=f"{config.frontend_url}/finances?transactionId={record.id}",
                failure_url=f"{config.frontend_url}/failure?transactionId={record.id}",
                description="Korner wallet top-up",
            )

        self.notifier.emit(
            "wallet_top_up",
            f"Wallet top-up {'successful' if outcome.success else 'failed'}",
            level="info" if outcome.success else "error",
            user_id=user_id,
            paymentType=payment_type,
            amount=str(amount),
            currencyId=currency_id,
            transactionId=outcome.transaction_id,
        )
        return outcome

    # =========================================================================
    # Subscription purchase
    # =========================================================================

    async def purchase_subscription(
        self,
        user_id: int,
        payment_type: str,
        plan_id: int,
        price_id: int,
        email: str | None = None,
        token_id: int | None = None,
        success_url: str | None = None,
        failure_url: str | None = None,
    ) -> PaymentOutcome:
        """Buy a subscription period.

        Raises:
            ValidationError: Missing fields
            NotFoundError: Plan/price or payment token not found
            InsufficientFundsError: Wallet balance too low
            GatewayError: Gateway unreachable (record stays pending)
            IntegrityError: Gateway response signature mismatch
        """
        if not payment_type or not plan_id or not price_id:
            raise ValidationError("Missing required fields: payment_type, plan_id, price_id")
        self._check_payment_type(payment_type, token_id)
        if payment_type == "card" and not email:
            raise ValidationError("email is required when payment_type is 'card'")

        plan_price = await self.subscriptions.get_plan_price(plan_id, price_id)
        if plan_price is None:
            raise NotFoundError("Subscription plan or price not found")

        if payment_type == "wallet":
            outcome = await self._subscribe_with_wallet(user_id, plan_price)
        elif payment_type == "token":
            token = await self.tokens.get_token(token_id, user_id)  # type: ignore[arg-type]
            if token is None:
                raise NotFoundError("Payment token not found or doesn't belong to user")
            record = await self._pending_subscription_record(user_id, plan_price, TransactionSource.CARD)
            result = await self._charge_token(
                record, token.token, plan_price.price, f"Korner subscription {plan_price.plan_name}"
            )
            outcome = await self._settle_subscription_charge(
                record, result, plan_price, masked_pan=token.pan_masked
            )
        else:
            record = await self._pending_subscription_record(user_id, plan_price, TransactionSource.CARD)
            config = self.gateway.config
            outcome = await self._checkout(
                record,
                email=email,  # type: ignore[arg-type]
                callback_path="/api/subscriptions/callback",
                success_url=success_url or f"{config.frontend_url}/success?transactionId={record.id}",
                failure_url=failure_url or f"{config.frontend_url}/failure?transactionId={record.id}",
                description=f"Korner subscription {plan_price.plan_name}",
            )

        self.notifier.emit(
            "subscription_purchase",
            f"Subscription purchase {'successful' if outcome.success else 'failed'}",
            level="info" if outcome.success else "error",
            user_id=user_id,
            planId=plan_price.plan_id,
            priceId=plan_price.price_id,
            paymentType=payment_type,
            amount=str(plan_price.price),
            currency=plan_price.currency_code,
            transactionId=outcome.transaction_id,
            subscriptionId=outcome.data.get("subscription_id"),
        )
        return outcome

    async def renew_subscription(
        self,
        subscription: UserSubscription,
        plan_price: PlanPrice,
        token: PaymentToken,
    ) -> PaymentOutcome:
        """Charge the next period of a card subscription with a stored token.

        On success the next period starts when the current one expires.
        """
        user_id = subscription.user_id
        starts_at = subscription.expired_at
        masked_pan = subscription.masked_pan
        record = await self._pending_subscription_record(
            user_id, plan_price, TransactionSource.CARD, renews_subscription_id=subscription.id
        )
        result = await self._charge_token(
            record, token.token, plan_price.price, f"Korner subscription renewal {plan_price.plan_name}"
        )
        outcome = await self._settle_subscription_charge(
            record, result, plan_price, masked_pan=masked_pan, starts_at=starts_at
        )
        self.notifier.emit(
            "subscription_renewal",
            f"Subscription renewal {'successful' if outcome.success else 'failed'}",
            level="info" if outcome.success else "error",
            user_id=user_id,
            previousSubscriptionId=subscription.id,
            subscriptionId=outcome.data.get("subscription_id"),
            planId=plan_price.plan_id,
            amount=str(plan_price.price),
            currency=plan_price.currency_code,
            transactionId=outcome.transaction_id,
        )
        return outcome

    async def _pending_subscription_record(
        self,
        user_id: int,
        plan_price: PlanPrice,
        source: TransactionSource,
        renews_subscription_id: int | None = None,
    ) -> Transaction:
        return await self.transactions.create_pending(
            user_id=user_id,
            currency_id=plan_price.currency_id,
            amount=plan_price.price,
            type=TransactionType.SUBSCRIPTION,
            source=source,
            subscription_plan_id=plan_price.plan_id,
            subscription_price_id=plan_price.price_id,
            user_subscription_id=renews_subscription_id,
            description=f"Subscription {plan_price.plan_name}",
        )

    async def _subscribe_with_wallet(self, user_id: int, plan_price: PlanPrice) -> PaymentOutcome:
        check = await self.ledger.check_balance(user_id, plan_price.currency_id, plan_price.price)
        if not check.sufficient:
            raise InsufficientFundsError(
                required=plan_price.price,
                available=check.current,
                message=(
                    f"Insufficient balance. Current balance: {check.current} {plan_price.currency_code}, "
                    f"Required: {plan_price.price} {plan_price.currency_code}"
                ),
            )

        record = await self._pending_subscription_record(user_id, plan_price, TransactionSource.WALLET)
        subscription = await self.subscriptions.create_subscription(
            user_id=user_id,
            plan_id=plan_price.plan_id,
            price_id=plan_price.price_id,
            is_auto_renewal=True,
            payment_method=PaymentMethod.WALLET,
        )
        subscription_id = subscription.id
        try:
            await self.ledger.debit(
                user_id,
                plan_price.currency_id,
                plan_price.price,
                type=TransactionType.SUBSCRIPTION,
                user_subscription_id=subscription_id,
                record=record,
            )
        except InsufficientFundsError:
            await self.subscriptions.delete_subscription(subscription_id)
            await self.transactions.finalize(record, TransactionStatus.FAILED)
            raise

        remaining = await self.ledger.get_balance(user_id, plan_price.currency_id)
        return PaymentOutcome(
            payment_type="wallet",
            success=True,
            status=TransactionStatus.COMPLETED,
            transaction_id=record.id,
            message="Subscription purchased from wallet",
            data={
                "subscription_id": subscription_id,
                "transaction_id": record.id,
                "amount_deducted": str(plan_price.price),
                "currency": plan_price.currency_code,
                "remaining_balance": str(remaining),
            },
        )

    async def _settle_subscription_charge(
        self,
        record: Transaction,
        result: GatewayResult,
        plan_price: PlanPrice,
        masked_pan: str | None,
        starts_at: Any = None,
    ) -> PaymentOutcome:
        """Finalize a synchronous subscription charge.

        On success the new subscription and the completed record are
        committed together.
        """
        await self.transactions.attach_gateway_response(
            record, result.order_id, result.payment_id, result.transaction_data()
        )
        if not result.charged:
            status = await self._finalize_declined(record, result)
            return PaymentOutcome(
                payment_type="token",
                success=False,
                status=status,
                transaction_id=record.id,
                message="Token payment failed",
                data=self._gateway_data(result),
            )

        subscription = await self.subscriptions.create_subscription(
            user_id=record.user_id,
            plan_id=plan_price.plan_id,
            price_id=plan_price.price_id,
            is_auto_renewal=True,
            payment_method=PaymentMethod.CARD,
            masked_pan=masked_pan or result.payload.pan_masked,
            starts_at=starts_at,
            commit=False,
        )
        subscription_id = subscription.id
        await self.transactions.finalize(
            record, TransactionStatus.COMPLETED, user_subscription_id=subscription_id
        )
        return PaymentOutcome(
            payment_type="token",
            success=True,
            status=TransactionStatus.COMPLETED,
            transaction_id=record.id,
            message="Token payment was successful and subscription created",
            data={**self._gateway_data(result), "subscription_id": subscription_id},
        )

    # =========================================================================
    # Gateway round trips
    # =========================================================================

    async def _charge_token(
        self,
        record: Transaction,
        token: str,
        amount: Decimal,
        description: str,
    ) -> GatewayResult:
        transaction_id = record.id
        try:
            return await self.gateway.charge_recurrent(token, amount, description)
        except (GatewayError, IntegrityError) as e:
            self._emit_payment_error(record.user_id, transaction_id, "token", e)
            raise

    async def _settle_token_charge(self, record: Transaction, result: GatewayResult) -> PaymentOutcome:
        await self.transactions.attach_gateway_response(
            record, result.order_id, result.payment_id, result.transaction_data()
        )
        if result.charged:
            await self.transactions.finalize(record, TransactionStatus.COMPLETED)
            status, success, message = TransactionStatus.COMPLETED, True, "Token payment was successful"
        else:
            status = await self._finalize_declined(record, result)
            success, message = False, "Token payment failed"
        return PaymentOutcome(
            payment_type="token",
            success=success,
            status=status,
            transaction_id=record.id,
            message=message,
            data=self._gateway_data(result),
        )

    async def _finalize_declined(self, record: Transaction, result: GatewayResult) -> TransactionStatus:
        """Finalize a charge that did not go through.

        A reported status that maps to ``pending`` leaves the record pending;
        one that maps to ``completed`` without the charge going through is
        treated as failed.
        """
        status = result.status
        if status == TransactionStatus.PENDING:
            return status
        if status == TransactionStatus.COMPLETED:
            status = TransactionStatus.FAILED
        await self.transactions.finalize(record, status)
        return status

    async def _checkout(
        self,
        record: Transaction,
        email: str,
        callback_path: str,
        success_url: str,
        failure_url: str,
        description: str,
    ) -> PaymentOutcome:
        """Create a hosted checkout for a pending record."""
        transaction_id = record.id
        config = self.gateway.config
        try:
            result = await self.gateway.create_charge(
                amount=record.amount,
                email=email,
                callback_url=f"{config.callback_base_url}{callback_path}",
                success_url=success_url,
                failure_url=failure_url,
                description=description,
            )
        except (GatewayError, IntegrityError) as e:
            self._emit_payment_error(record.user_id, transaction_id, "card", e)
            raise

        await self.transactions.attach_gateway_response(
            record, result.order_id, result.payment_id, result.transaction_data()
        )
        status = TransactionStatus.PENDING
        if not result.success:
            status = result.status if result.status.is_terminal else TransactionStatus.FAILED
            if status == TransactionStatus.COMPLETED:
                status = TransactionStatus.FAILED
            await self.transactions.finalize(record, status)
        return PaymentOutcome(
            payment_type="card",
            success=result.success,
            status=status,
            transaction_id=transaction_id,
            message="Payment was created" if result.success else "Payment failed",
            data={**self._gateway_data(result), "order_id": result.order_id},
        )

    @staticmethod
    def _gateway_data(result: GatewayResult) -> dict[str, Any]:
        return {
            "payment_id": result.payment_id,
            "order_id": result.order_id,
            "data": result.payload.raw,
        }

    # =========================================================================
    # Callbacks and status polling
    # =========================================================================

    async def handle_payment_callback(self, envelope: dict[str, Any]) -> CallbackResult:
        """Callback for item purchases paid by card."""
        return await self.handle_callback(envelope, kind="payment")

    async def handle_wallet_callback(self, envelope: dict[str, Any]) -> CallbackResult:
        """Callback for wallet top-ups."""
        return await self.handle_callback(envelope, kind="wallet")

    async def handle_subscription_callback(self, envelope: dict[str, Any]) -> CallbackResult:
        """Callback for subscription purchases paid by card."""
        return await self.handle_callback(envelope, kind="subscription")

    async def handle_callback(self, envelope: dict[str, Any], kind: str = "payment") -> CallbackResult:
        """Process a signed gateway callback.

        The signature is verified before anything is decoded. Only
        ``operation_status == "success"`` completes a payment. The side
        effect follows the record's type, whichever endpoint received it.

        Raises:
            IntegrityError: Signature mismatch
            ValidationError: Undecodable payload or callback without order id
            NotFoundError: Unknown order id
        """
        try:
            payload = protocol.verify(envelope, self.gateway.config.secret_key)
        except GatewayError as e:
            raise ValidationError("Malformed gateway callback", e.details) from e
        if not payload.order_id:
            raise ValidationError("Callback without order_id")
        record = await self.transactions.get_by_order_id(payload.order_id)
        if record is None:
            raise NotFoundError("Transaction not found", {"order_id": payload.order_id})
        if CALLBACK_TYPES[kind] != record.type:
            logger.warning(
                f"{kind} callback for {record.type.value} transaction {record.id} ({payload.order_id})"
            )
        logger.info(
            f"Gateway {kind} callback for {payload.order_id}: operation_status={payload.operation_status}"
        )
        return await self.apply_gateway_outcome(record, payload, completed=payload.is_success)

    async def check_status(self, user_id: int, transaction_id: int) -> CallbackResult:
        """Poll the gateway for a user's transaction and apply the result."""
        record = await self.transactions.get_for_user(transaction_id, user_id)
        return await self.reconcile(record)

    async def reconcile(self, record: Transaction) -> CallbackResult:
        """Poll the gateway for a pending record and apply the reported status.

        Raises:
            ValidationError: Record has no gateway order id
            GatewayError: Gateway unreachable (record stays pending)
        """
        if not record.order_id:
            raise ValidationError("Transaction has no gateway order id")
        if record.is_terminal:
            return CallbackResult(record.id, record.order_id, record.status, applied=False)
        result = await self.gateway.charge_status(record.order_id)
        payload = result.payload
        return await self.apply_gateway_outcome(
            record, payload, completed=payload.status == TransactionStatus.COMPLETED
        )

    async def apply_gateway_outcome(
        self,
        record: Transaction,
        payload: GatewayPayload,
        completed: bool,
    ) -> CallbackResult:
        """Apply a verified gateway outcome to a record exactly once."""
        transaction_id = record.id
        order_id = record.order_id or payload.order_id or ""
        if record.is_terminal:
            logger.info(f"Transaction {transaction_id} already {record.status.value}, callback ignored")
            return CallbackResult(transaction_id, order_id, record.status, applied=False)

        data = {**payload.raw}
        try:
            if completed:
                if payload.recurrent_token:
                    await self.tokens.save_token(
                        record.user_id,
                        payload.recurrent_token,
                        pan_masked=payload.pan_masked,
                        expired_at=payload.payment_date,
                        amount=payload.amount,
                    )
                if record.type == TransactionType.SUBSCRIPTION:
                    await self._complete_subscription(record, payload, data)
                elif record.type == TransactionType.DEPOSIT:
                    await self.transactions.attach_gateway_response(
                        record, order_id, self._payment_id(record, payload), data
                    )
                    await self.ledger.credit(
                        record.user_id,
                        record.currency_id,
                        record.amount,
                        source=TransactionSource.CARD,
                        record=record,
                    )
                else:
                    await self.transactions.finalize(
                        record, TransactionStatus.COMPLETED, data=data
                    )
                    if record.item_id:
                        await self._credit_item_seller(record)
                status = TransactionStatus.COMPLETED
            else:
                status = payload.status
                if status == TransactionStatus.COMPLETED:
                    # completion is only signalled by operation_status == "success"
                    status = TransactionStatus.PENDING
                if status == TransactionStatus.PENDING:
                    await self.transactions.attach_gateway_response(
                        record, order_id, self._payment_id(record, payload), data
                    )
                    return CallbackResult(transaction_id, order_id, status, applied=False)
                await self.transactions.finalize(record, status, data=data)
        except ConflictError:
            # finalized concurrently by another callback or poll
            await self.db.refresh(record)
            logger.info(f"Transaction {transaction_id} finalized concurrently, callback ignored")
            return CallbackResult(transaction_id, order_id, record.status, applied=False)

        self.notifier.emit(
            "payment_callback",
            f"Transaction {transaction_id} {status.value}",
            level="info" if status == TransactionStatus.COMPLETED else "error",
            user_id=record.user_id,
            transactionId=transaction_id,
            orderId=order_id,
            type=record.type.value,
            status=status.value,
        )
        return CallbackResult(transaction_id, order_id, status, applied=True)

    async def _complete_subscription(
        self,
        record: Transaction,
        payload: GatewayPayload,
        data: dict[str, Any],
    ) -> None:
        """Create the paid subscription and complete the record in one commit.

        A renewal record carries the subscription it renews; the new period
        then starts when that one expires.
        """
        plan_price = await self.subscriptions.get_plan_for_transaction(record)
        if plan_price is None:
            logger.error(f"Subscription transaction {record.id} has no plan/price, completing without subscription")
            await self.transactions.finalize(record, TransactionStatus.COMPLETED, data=data)
            return
        subscription = await self.subscriptions.create_subscription(
            user_id=record.user_id,
            plan_id=plan_price.plan_id,
            price_id=plan_price.price_id,
            is_auto_renewal=True,
            payment_method=PaymentMethod.CARD,
            masked_pan=payload.pan_masked,
            starts_at=await self._renewal_start(record),
            commit=False,
        )
        await self.transactions.finalize(
            record,
            TransactionStatus.COMPLETED,
            data=data,
            user_subscription_id=subscription.id,
        )

    async def _renewal_start(self, record: Transaction) -> datetime | None:
        if record.user_subscription_id is None:
            return None
        renewed = await self.db.get(UserSubscription, record.user_subscription_id)
        return renewed.expired_at if renewed is not None else None

    async def _credit_item_seller(self, record: Transaction) -> None:
        item = await self.directory.get_item(record.item_id) if self.directory else None
        seller_id = None
        if item is not None and item.profile_id:
            seller_id = await self.directory.get_profile_user_id(item.profile_id)  # type: ignore[union-attr]
        await self._credit_seller(
            seller_id, record, Decimal(record.amount), record.currency_id, record.item_id  # type: ignore[arg-type]
        )

    @staticmethod
    def _payment_id(record: Transaction, payload: GatewayPayload) -> str | None:
        return record.payment_id or payload.payment_id

    # =========================================================================
    # Receipts
    # =========================================================================

    async def fetch_receipt(self, user_id: int, order_id: str) -> bytes:
        """Receipt PDF of a completed card payment of the user.

        Raises:
            NotFoundError: Unknown order id
            ForbiddenError: Transaction belongs to another user
            ValidationError: Payment not completed
        """
        record = await self.transactions.get_by_order_id(order_id)
        if record is None:
            raise NotFoundError("Transaction not found", {"order_id": order_id})
        if record.user_id != user_id:
            raise ForbiddenError("Access denied: this transaction does not belong to you")
        if record.status != TransactionStatus.COMPLETED or not record.payment_id:
            raise ValidationError("Receipt is only available for completed card payments")
        return await self.gateway.fetch_receipt(record.payment_id, order_id)

    # =========================================================================
    # Preconditions
    # =========================================================================

    @staticmethod
    def _check_payment_type(payment_type: str, token_id: int | None) -> None:
        if payment_type not in PAYMENT_TYPES:
            raise ValidationError("Invalid payment_type. Must be 'wallet', 'token', or 'card'")
        if payment_type == "token" and not token_id:
            raise ValidationError("token_id is required when payment_type is 'token'")

    async def _get_item(self, item_id: str) -> ItemInfo:
        if self.directory is None:
            raise InternalError("Directory service is not configured")
        item = await self.directory.get_item(item_id)
        if item is None:
            raise NotFoundError("Item not found", {"item_id": item_id})
        if not item.is_monetized:
            raise ValidationError("Item is not monetized and cannot be purchased")
        return item

    async def _resolve_seller(self, item: ItemInfo) -> int:
        """Owner of the item; must hold an active subscription."""
        owner_id = None
        if item.profile_id:
            owner_id = await self.directory.get_profile_user_id(item.profile_id)  # type: ignore[union-attr]
        if owner_id is None:
            raise ForbiddenError(UNAVAILABLE_MESSAGE, {"item_id": item.id})
        if not await self.subscriptions.has_active_subscription(owner_id):
            raise ForbiddenError(UNAVAILABLE_MESSAGE, {"item_id": item.id})
        return owner_id

    @staticmethod
    def _item_price(item: ItemInfo) -> tuple[Decimal, str]:
        details = item.monetized_details
        if details is None or not details.price or not details.currency_code:
            raise ValidationError("Item monetization details are incomplete")
        if details.price <= 0:
            raise ValidationError("Item price must be positive")
        return Decimal(details.price), details.currency_code

    async def _resolve_currency(self, currency_code: str, currency_id: int | None) -> int:
        result = await self.db.execute(select(Currency.id).where(Currency.code == currency_code.upper()))
        resolved = result.scalar_one_or_none()
        if resolved is not None:
            return resolved
        return currency_id or self.default_currency_id

    # =========================================================================
    # Events
    # =========================================================================

    def _emit_item_purchase(
        self,
        user_id: int,
        item_id: str,
        payment_type: str,
        amount: Decimal,
        currency: str,
        outcome: PaymentOutcome,
    ) -> None:
        self.notifier.emit(
            "item_purchase",
            f"Item purchase {'successful' if outcome.success else 'failed'}",
            level="info" if outcome.success else "error",
            user_id=user_id,
            itemId=item_id,
            paymentType=payment_type,
            amount=str(amount),
            currency=currency,
            transactionId=outcome.transaction_id,
            paymentId=outcome.data.get("payment_id"),
            status=outcome.status.value,
        )

    def _emit_payment_error(self, user_id: int, transaction_id: int | None, payment_type: str, error: Exception) -> None:
        logger.error(f"Gateway error for transaction {transaction_id} ({payment_type}): {error}")
        self.notifier.emit(
            "payment_error",
            "Payment gateway error",
            level="error",
            user_id=user_id,
            transactionId=transaction_id,
            paymentType=payment_type,
            error=str(error),
            errorType=type(error).__name__,
        )


def build_payment_engine(
    db: AsyncSession,
    settings: Settings | None = None,
    notifier: NotificationDispatcher | None = None,
) -> PaymentEngine:
    """Engine wired from application settings."""
    settings = settings or get_settings()
    return PaymentEngine(
        db,
        gateway=GatewayClient(settings.gateway_config()),
        directory=DirectoryClient(
            settings.main_service_url, timeout_seconds=settings.main_service_timeout_seconds
        ),
        notifier=notifier,
        cache=Cache(ttl_seconds=settings.cache_ttl_seconds),
        default_currency_id=settings.default_currency_id,
    )
