"""Common FastAPI dependencies for API endpoints.

Authentication happens upstream: the API gateway validates the session and
forwards the caller as ``X-User-Id`` (and ``X-User-Role`` for admins).
"""

from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from billing.core.cache import Cache
from billing.core.config import get_settings
from billing.core.exceptions import BillingError, ForbiddenError
from billing.db.engine import get_db
from billing.services.fee_service import FeeService
from billing.services.ledger_service import WalletLedger
from billing.services.payment_service import PaymentEngine, build_payment_engine
from billing.services.payout_service import PayoutService
from billing.services.subscription_service import SubscriptionService
from billing.services.token_service import TokenService

ADMIN_ROLES = ("admin", "super_admin")


class UnauthorizedError(BillingError):
    """Caller identity missing."""

    status_code = 401


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> int:
    """Authenticated user id forwarded by the API gateway."""
    if not x_user_id or not x_user_id.isdigit():
        raise UnauthorizedError("Authentication required")
    return int(x_user_id)


async def require_admin(
    user_id: Annotated[int, Depends(get_current_user_id)],
    x_user_role: Annotated[str | None, Header()] = None,
) -> int:
    """Admin user id; other roles are rejected."""
    if x_user_role not in ADMIN_ROLES:
        raise ForbiddenError("Admin access required")
    return user_id


def get_cache() -> Cache:
    return Cache(ttl_seconds=get_settings().cache_ttl_seconds)


def get_payment_engine(db: Annotated[AsyncSession, Depends(get_db)]) -> PaymentEngine:
    """Create PaymentEngine instance."""
    return build_payment_engine(db)


def get_ledger(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[Cache, Depends(get_cache)],
) -> WalletLedger:
    return WalletLedger(db, cache)


def get_fee_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[Cache, Depends(get_cache)],
) -> FeeService:
    return FeeService(db, cache)


def get_subscription_service(db: Annotated[AsyncSession, Depends(get_db)]) -> SubscriptionService:
    return SubscriptionService(db)


def get_token_service(db: Annotated[AsyncSession, Depends(get_db)]) -> TokenService:
    return TokenService(db)


def get_payout_service(db: Annotated[AsyncSession, Depends(get_db)]) -> PayoutService:
    return PayoutService(db)


CurrentUserId = Annotated[int, Depends(get_current_user_id)]
AdminUserId = Annotated[int, Depends(require_admin)]
