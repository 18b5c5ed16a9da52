"""Core module - configuration, cache and exceptions."""

from billing.core.config import GatewayConfig, Settings, get_settings
from billing.core.exceptions import (
    BillingError,
    ConflictError,
    ForbiddenError,
    GatewayError,
    InsufficientFundsError,
    IntegrityError,
    InternalError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    # Config
    "Settings",
    "GatewayConfig",
    "get_settings",
    # Exceptions
    "BillingError",
    "ValidationError",
    "NotFoundError",
    "ForbiddenError",
    "ConflictError",
    "InsufficientFundsError",
    "IntegrityError",
    "GatewayError",
    "InternalError",
]
