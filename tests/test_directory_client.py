"""Tests for main service lookups."""

from decimal import Decimal

import httpx
import pytest

from billing.services.directory_client import DirectoryClient


def client_for(handler) -> DirectoryClient:
    return DirectoryClient("main.test", transport=httpx.MockTransport(handler))


class TestDirectoryClient:
    """Test item and profile resolution against the main service."""

    def test_bare_host_gets_scheme(self):
        assert DirectoryClient("main.test:3001/").base_url == "http://main.test:3001"

    @pytest.mark.asyncio
    async def test_get_item(self, directory):
        item = await directory.get_item("bar-1")

        assert item.id == "bar-1"
        assert item.profile_id == "profile-1"
        assert item.is_monetized
        assert item.monetized_details.price == Decimal("500")
        assert item.monetized_details.currency_code == "KZT"

    @pytest.mark.asyncio
    async def test_numeric_ids_are_strings(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"bar": {"id": 15, "profile_id": 7, "is_monetized": False}})

        item = await client_for(handler).get_item("15")

        assert item.id == "15"
        assert item.profile_id == "7"
        assert item.monetized_details is None

    @pytest.mark.asyncio
    async def test_get_profile(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/internal/profiles/profile-1"
            return httpx.Response(200, json={"profile": {"id": "profile-1", "user_id": 2, "name": "Seller"}})

        profile = await client_for(handler).get_profile("profile-1")

        assert profile.user_id == 2
        assert profile.name == "Seller"

    @pytest.mark.asyncio
    async def test_get_profile_user_id(self, directory):
        assert await directory.get_profile_user_id("profile-1") == 2
        assert await directory.get_profile_user_id("profile-unknown") is None

    @pytest.mark.asyncio
    async def test_missing_item(self, directory):
        assert await directory.get_item("bar-404") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, json={"error": "boom"}),
            httpx.Response(200, content=b"<html>"),
            httpx.Response(200, json=["not", "an", "object"]),
            httpx.Response(200, json={"bar": {"profile_id": "p"}}),
        ],
    )
    async def test_failures_resolve_to_none(self, response):
        assert await client_for(lambda request: response).get_item("bar-1") is None

    @pytest.mark.asyncio
    async def test_unreachable_service(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        client = client_for(handler)

        assert await client.get_item("bar-1") is None
        assert await client.get_profile("profile-1") is None
        assert await client.get_profile_user_id("profile-1") is None

    @pytest.mark.asyncio
    async def test_malformed_user_id(self):
        client = client_for(lambda request: httpx.Response(200, json={"userId": "abc"}))

        assert await client.get_profile_user_id("profile-1") is None
