"""Models module - SQLModel database entities."""

from billing.models.fee import PlatformFee
from billing.models.payout import (
    ContactMethod,
    PayoutRequest,
    PayoutRequestStatus,
    PayoutRequestStatusHistory,
)
from billing.models.subscription import (
    PaymentMethod,
    SubscriptionPeriod,
    SubscriptionPlan,
    SubscriptionPrice,
    UserSubscription,
)
from billing.models.token import PaymentToken
from billing.models.transaction import (
    Transaction,
    TransactionSource,
    TransactionStatus,
    TransactionType,
)
from billing.models.wallet import Currency, WalletBalance

__all__ = [
    # Transaction
    "Transaction",
    "TransactionType",
    "TransactionSource",
    "TransactionStatus",
    # Wallet
    "Currency",
    "WalletBalance",
    # Fee
    "PlatformFee",
    # Subscription
    "SubscriptionPlan",
    "SubscriptionPrice",
    "SubscriptionPeriod",
    "UserSubscription",
    "PaymentMethod",
    # Token
    "PaymentToken",
    # Payout
    "PayoutRequest",
    "PayoutRequestStatus",
    "PayoutRequestStatusHistory",
    "ContactMethod",
]
