"""Directory Client - lookups against the main (profile/content) service.

Every lookup returns ``None`` on any failure. Callers treat ``None`` as
"cannot be resolved" and block the purchase.
"""

import logging
from decimal import Decimal
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from billing.utils.helpers import ensure_protocol

logger = logging.getLogger(__name__)


class MonetizedDetails(BaseModel):
    """Price of a purchasable item."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    price: Decimal | None = None
    currency_code: str | None = Field(default=None, alias="currencyCode")


class ItemInfo(BaseModel):
    """Purchasable item (a "bar") as returned by the main service."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: str
    profile_id: str | None = None
    is_monetized: bool = False
    monetized_details: MonetizedDetails | None = None


class ProfileInfo(BaseModel):
    """Profile as returned by the main service."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: str
    user_id: int | None = None
    name: str | None = None


class DirectoryClient:
    """Client for the main service's internal API."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = ensure_protocol(base_url)
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def _get(self, path: str) -> dict[str, Any] | None:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(path)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Main service request {path} failed: {e}")
            return None
        return data if isinstance(data, dict) else None

    async def get_item(self, item_id: str) -> ItemInfo | None:
        data = await self._get(f"/internal/bars/{item_id}")
        if data is None:
            return None
        try:
            return ItemInfo.model_validate(data.get("bar") or data)
        except PydanticValidationError as e:
            logger.error(f"Malformed item {item_id} from main service: {e}")
            return None

    async def get_profile(self, profile_id: str) -> ProfileInfo | None:
        data = await self._get(f"/internal/profiles/{profile_id}")
        if data is None:
            return None
        try:
            return ProfileInfo.model_validate(data.get("profile") or data)
        except PydanticValidationError as e:
            logger.error(f"Malformed profile {profile_id} from main service: {e}")
            return None

    async def get_profile_user_id(self, profile_id: str) -> int | None:
        """User id owning a profile."""
        data = await self._get(f"/internal/profiles/{profile_id}/user-id")
        if data is None:
            return None
        user_id = data.get("userId", data.get("user_id"))
        try:
            return int(user_id) if user_id is not None else None
        except (TypeError, ValueError):
            logger.error(f"Malformed user id for profile {profile_id}: {user_id!r}")
            return None
