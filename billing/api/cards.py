"""Korner Billing Service - Saved card API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends

from billing.api.deps import CurrentUserId, get_token_service
from billing.schemas.payment import SavedCard
from billing.services.token_service import TokenService

router = APIRouter(prefix="/api/cards", tags=["Cards"])


@router.get("", response_model=list[SavedCard])
async def list_cards(
    user_id: CurrentUserId,
    service: Annotated[TokenService, Depends(get_token_service)],
) -> list[dict]:
    """Cards saved for token payments, newest first."""
    return await service.list_tokens(user_id)
