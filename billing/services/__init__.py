"""Services module - business logic layer."""

from billing.services.directory_client import DirectoryClient
from billing.services.fee_service import FeeBreakdown, FeeService
from billing.services.ledger_service import BalanceCheck, WalletLedger
from billing.services.notification_service import NotificationDispatcher
from billing.services.payment_service import CallbackResult, PaymentEngine, PaymentOutcome
from billing.services.payout_service import PayoutService
from billing.services.renewal_service import RenewalReport, RenewalService
from billing.services.subscription_service import PlanPrice, SubscriptionService
from billing.services.telegram_service import TelegramService
from billing.services.token_service import TokenService
from billing.services.transaction_service import TransactionService

__all__ = [
    "DirectoryClient",
    "FeeBreakdown",
    "FeeService",
    "BalanceCheck",
    "WalletLedger",
    "NotificationDispatcher",
    "CallbackResult",
    "PaymentEngine",
    "PaymentOutcome",
    "PayoutService",
    "RenewalReport",
    "RenewalService",
    "PlanPrice",
    "SubscriptionService",
    "TelegramService",
    "TokenService",
    "TransactionService",
]
