"""Tests for stored card tokens."""

from datetime import datetime
from decimal import Decimal

import pytest

from billing.services.token_service import TokenService

from .conftest import BUYER_ID, PAN, SELLER_ID


class TestTokenService:
    """Test saving and looking up recurring-charge tokens."""

    @pytest.mark.asyncio
    async def test_save_parses_gateway_fields(self, db):
        token = await TokenService(db).save_token(
            BUYER_ID, "tok-1", pan_masked=PAN, expired_at="2027-01-31T00:00:00Z", amount="500.00"
        )

        assert token.expired_at == datetime(2027, 1, 31)
        assert token.amount == Decimal("500.00")

    @pytest.mark.asyncio
    async def test_unparseable_fields_are_dropped(self, db):
        token = await TokenService(db).save_token(BUYER_ID, "tok-1", expired_at="soon", amount="n/a")

        assert token.expired_at is None
        assert token.amount is None

    @pytest.mark.asyncio
    async def test_duplicate_token_is_not_stored_twice(self, db):
        service = TokenService(db)

        first = await service.save_token(BUYER_ID, "tok-1", pan_masked=PAN)
        second = await service.save_token(BUYER_ID, "tok-1", pan_masked=PAN)

        assert second.id == first.id
        assert len(await service.list_tokens(BUYER_ID)) == 1

    @pytest.mark.asyncio
    async def test_empty_token_is_ignored(self, db):
        assert await TokenService(db).save_token(BUYER_ID, "") is None

    @pytest.mark.asyncio
    async def test_latest_for_card(self, db, save_card):
        await save_card(token="tok-old")
        newest = await save_card(token="tok-new")
        await save_card(token="tok-other", pan_masked="510000******9999")

        token = await TokenService(db).latest_for_card(BUYER_ID, PAN)

        assert token.id == newest.id
        assert await TokenService(db).latest_for_card(BUYER_ID, None) is None
        assert await TokenService(db).latest_for_card(SELLER_ID, PAN) is None

    @pytest.mark.asyncio
    async def test_get_token_checks_owner(self, db, save_card):
        token = await save_card()
        service = TokenService(db)

        assert (await service.get_token(token.id, BUYER_ID)).token == "tok-1"
        assert await service.get_token(token.id, SELLER_ID) is None

    @pytest.mark.asyncio
    async def test_list_hides_token_values(self, db, save_card):
        await save_card()

        [card] = await TokenService(db).list_tokens(BUYER_ID)

        assert card["pan_masked"] == PAN
        assert "token" not in card
