"""Payout Request Service - seller withdrawal requests handled by admins.

Payouts are not executed here: a request is recorded, admins are alerted and
the status is moved by hand. Every status change leaves a history row, and
``paid``, ``rejected`` and ``canceled`` are final.
"""

import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from billing.core.exceptions import ConflictError, NotFoundError, ValidationError
from billing.models.payout import (
    ContactMethod,
    PayoutRequest,
    PayoutRequestStatus,
    PayoutRequestStatusHistory,
)
from billing.utils.helpers import format_utc_datetime

logger = logging.getLogger(__name__)

PUBLIC_ID_PATTERN = re.compile(r"^prq_(\d+)$")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def parse_public_id(public_id: str) -> int:
    """``prq_<id>`` -> id.

    Raises:
        ValidationError: Malformed id
    """
    match = PUBLIC_ID_PATTERN.match(public_id or "")
    if not match:
        raise ValidationError("Invalid payout request ID format", {"payout_request_id": public_id})
    return int(match.group(1))


class PayoutService:
    """Service for payout requests."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        user_id: int,
        requester_name: str,
        requester_email: str,
        requester_phone: str,
        contact_method: ContactMethod,
        context_source: str,
        context_screen: str | None = None,
        context_url: str | None = None,
        context_metadata: dict[str, Any] | None = None,
        amount: Decimal | None = None,
        currency_id: int | None = None,
    ) -> PayoutRequest:
        """Record a new payout request in status ``created``."""
        if amount is not None and Decimal(amount) <= 0:
            raise ValidationError("Amount must be positive")

        request = PayoutRequest(
            user_id=user_id,
            status=PayoutRequestStatus.CREATED,
            amount=Decimal(amount) if amount is not None else None,
            currency_id=currency_id,
            contact_method=contact_method,
            requester_name=requester_name,
            requester_email=requester_email,
            requester_phone=requester_phone,
            context_source=context_source,
            context_screen=context_screen or None,
            context_url=context_url or None,
            context_metadata=context_metadata or None,
        )
        self.db.add(request)
        await self.db.commit()
        await self.db.refresh(request)
        logger.info(f"Payout request {request.public_id} created by user {user_id}")
        return request

    async def get(self, request_id: int) -> PayoutRequest:
        request = await self.db.get(PayoutRequest, request_id)
        if request is None:
            raise NotFoundError("Payout request not found", {"payout_request_id": f"prq_{request_id}"})
        return request

    async def list_requests(
        self,
        status: PayoutRequestStatus | None = None,
        user_id: int | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[PayoutRequest], int]:
        """List payout requests with pagination, newest first.

        Returns:
            Tuple of (requests, total_count)
        """
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)

        query = select(PayoutRequest)
        if status:
            query = query.where(PayoutRequest.status == status)
        if user_id:
            query = query.where(PayoutRequest.user_id == user_id)
        if date_from:
            query = query.where(PayoutRequest.created_at >= date_from)
        if date_to:
            query = query.where(PayoutRequest.created_at <= date_to)

        # Count total
        count_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar() or 0

        # Paginate
        query = query.order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def update_status(
        self,
        request_id: int,
        status: PayoutRequestStatus,
        admin_id: int | None = None,
        comment: str | None = None,
    ) -> tuple[PayoutRequest, PayoutRequestStatus]:
        """Move a request to ``status`` and write the history row.

        Returns:
            Tuple of (updated request, previous status)

        Raises:
            NotFoundError: Unknown request
            ConflictError: Request is already in a final status
        """
        request = await self.get(request_id)
        previous = request.status
        if previous.is_final and previous != status:
            raise ConflictError(
                f"Payout request {request.public_id} is already {previous.value}",
                {"status": previous.value},
            )

        request.status = status
        request.updated_at = datetime.utcnow()
        self.db.add(
            PayoutRequestStatusHistory(
                payout_request_id=request_id,
                from_status=previous,
                to_status=status,
                changed_by_admin_id=admin_id,
                comment=comment,
            )
        )
        await self.db.commit()
        await self.db.refresh(request)
        logger.info(
            f"Payout request {request.public_id}: {previous.value} -> {status.value} (admin {admin_id})"
        )
        return request, previous

    async def status_history(self, request_id: int) -> list[PayoutRequestStatusHistory]:
        result = await self.db.execute(
            select(PayoutRequestStatusHistory)
            .where(PayoutRequestStatusHistory.payout_request_id == request_id)
            .order_by(PayoutRequestStatusHistory.created_at, PayoutRequestStatusHistory.id)
        )
        return list(result.scalars().all())

    async def record_alert(self, request_id: int, sent: bool) -> None:
        """Store the outcome of one admin alert attempt."""
        request = await self.get(request_id)
        request.telegram_alert_attempts += 1
        request.telegram_alert_status = "sent" if sent else "failed"
        await self.db.commit()

    # ============ Serialization ============

    @staticmethod
    def to_list_item(request: PayoutRequest) -> dict[str, Any]:
        return {
            "payout_request_id": request.public_id,
            "status": request.status.value,
            "created_at": format_utc_datetime(request.created_at),
            "requester": {
                "user_id": request.user_id,
                "name": request.requester_name,
                "email": request.requester_email,
                "phone": request.requester_phone,
                "preferred_contact_method": request.contact_method.value,
            },
            "context": {
                "source": request.context_source,
                "screen": request.context_screen,
            },
        }

    @classmethod
    def to_details(
        cls,
        request: PayoutRequest,
        history: list[PayoutRequestStatusHistory] | None = None,
    ) -> dict[str, Any]:
        details = cls.to_list_item(request)
        details["updated_at"] = format_utc_datetime(request.updated_at)
        details["amount"] = str(request.amount) if request.amount is not None else None
        details["currency_id"] = request.currency_id
        details["context"]["url"] = request.context_url
        details["context"]["metadata"] = request.context_metadata
        details["telegram_alert"] = {
            "status": request.telegram_alert_status,
            "attempts": request.telegram_alert_attempts,
        }
        details["status_history"] = [
            {
                "from_status": entry.from_status.value if entry.from_status else None,
                "to_status": entry.to_status.value,
                "changed_by_admin_id": entry.changed_by_admin_id,
                "comment": entry.comment,
                "created_at": format_utc_datetime(entry.created_at),
            }
            for entry in history or []
        ]
        return details
