"""Korner Billing Service - Payout request API endpoints."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from billing.api.deps import AdminUserId, CurrentUserId, get_payout_service
from billing.models.payout import PayoutRequestStatus
from billing.schemas.payout import (
    PaginatedPayoutRequests,
    PayoutRequestCreate,
    PayoutRequestCreated,
    PayoutStatusUpdate,
    PayoutStatusUpdated,
)
from billing.services.payout_service import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    PayoutService,
    parse_public_id,
)
from billing.tasks.payouts import trigger_payout_alert
from billing.utils.helpers import format_utc_datetime

router = APIRouter(prefix="/api/payout-requests", tags=["Payout Requests"])


@router.post("", response_model=PayoutRequestCreated, status_code=status.HTTP_201_CREATED)
async def create_payout_request(
    data: PayoutRequestCreate,
    user_id: CurrentUserId,
    service: Annotated[PayoutService, Depends(get_payout_service)],
) -> PayoutRequestCreated:
    """Ask for a payout of earnings; admins are alerted."""
    request = await service.create(
        user_id=user_id,
        requester_name=data.requester_name,
        requester_email=data.requester_email,
        requester_phone=data.phone,
        contact_method=data.preferred_contact_method,
        context_source=data.context.source,
        context_screen=data.context.screen,
        context_url=data.context.url,
        context_metadata=data.context.metadata,
        amount=data.amount,
        currency_id=data.currency_id,
    )
    trigger_payout_alert(request.id)
    return PayoutRequestCreated(
        payout_request_id=request.public_id,
        status=request.status,
        created_at=format_utc_datetime(request.created_at),
    )


@router.get("", response_model=PaginatedPayoutRequests)
async def list_payout_requests(
    _: AdminUserId,
    service: Annotated[PayoutService, Depends(get_payout_service)],
    status_filter: Annotated[PayoutRequestStatus | None, Query(alias="status")] = None,
    requester_user_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = DEFAULT_PAGE_SIZE,
) -> PaginatedPayoutRequests:
    """List payout requests with filters.

    Only accessible by admin users.
    """
    requests, total = await service.list_requests(
        status=status_filter,
        user_id=requester_user_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        page_size=page_size,
    )
    return PaginatedPayoutRequests(
        items=[service.to_list_item(request) for request in requests],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{payout_request_id}")
async def get_payout_request(
    payout_request_id: str,
    _: AdminUserId,
    service: Annotated[PayoutService, Depends(get_payout_service)],
) -> dict:
    """Payout request details with status history.

    Only accessible by admin users.
    """
    request_id = parse_public_id(payout_request_id)
    request = await service.get(request_id)
    history = await service.status_history(request_id)
    return service.to_details(request, history)


@router.patch("/{payout_request_id}/status", response_model=PayoutStatusUpdated)
async def update_payout_status(
    payout_request_id: str,
    data: PayoutStatusUpdate,
    admin_id: AdminUserId,
    service: Annotated[PayoutService, Depends(get_payout_service)],
) -> PayoutStatusUpdated:
    """Move a payout request to a new status.

    Only accessible by admin users. Final statuses cannot change.
    """
    request_id = parse_public_id(payout_request_id)
    request, previous = await service.update_status(
        request_id, data.status, admin_id=admin_id, comment=data.admin_comment
    )
    if previous != request.status:
        trigger_payout_alert(request.id, from_status=previous, comment=data.admin_comment)
    return PayoutStatusUpdated(
        payout_request_id=request.public_id,
        status=request.status,
        updated_at=format_utc_datetime(request.updated_at),
    )
