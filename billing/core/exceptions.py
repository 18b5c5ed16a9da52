"""Korner Billing Service - Custom exceptions."""

from decimal import Decimal
from typing import Any


class BillingError(Exception):
    """Base exception for all billing errors."""

    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(BillingError):
    """Input validation failed."""

    status_code = 400


class NotFoundError(BillingError):
    """Plan, price, token, item or transaction does not exist."""

    status_code = 404


class ForbiddenError(BillingError):
    """Counterparty is not allowed to take part in the operation."""

    status_code = 403


class ConflictError(BillingError):
    """Operation conflicts with existing state (e.g. item already purchased)."""

    status_code = 409


class InsufficientFundsError(BillingError):
    """Wallet balance is lower than the requested debit."""

    status_code = 400

    def __init__(
        self,
        required: Decimal | None = None,
        available: Decimal | None = None,
        message: str = "Insufficient balance",
    ) -> None:
        details = {}
        if required is not None:
            details["required"] = str(required)
        if available is not None:
            details["available"] = str(available)
        super().__init__(message, details)


class IntegrityError(BillingError):
    """Gateway signature verification failed."""

    status_code = 400


class GatewayError(BillingError):
    """Payment gateway unreachable, timed out or returned a malformed response."""

    status_code = 502


class InternalError(BillingError):
    """Storage or other internal failure."""

    status_code = 500
