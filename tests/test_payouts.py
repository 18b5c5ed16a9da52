"""Tests for payout requests and their Telegram alerts."""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest

from billing.core.exceptions import ConflictError, NotFoundError, ValidationError
from billing.models.payout import ContactMethod, PayoutRequestStatus
from billing.services.payout_service import PayoutService, parse_public_id
from billing.services.telegram_service import TelegramService
from billing.tasks import payouts as payout_tasks

from .conftest import SELLER_ID


class FakeTelegram:
    """Bot API double recording sent messages."""

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.messages: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.messages.append(body)
        if not self.ok:
            return httpx.Response(400, json={"ok": False, "description": "Bad Request: chat not found"})
        return httpx.Response(200, json={"ok": True, "result": {"message_id": len(self.messages)}})

    def service(self) -> TelegramService:
        return TelegramService(bot_token="123:abc", chat_id="-100500", transport=httpx.MockTransport(self.handler))


async def create_request(service: PayoutService, user_id: int = SELLER_ID, **overrides):
    values = {
        "user_id": user_id,
        "requester_name": "Aigerim",
        "requester_email": "aigerim@example.com",
        "requester_phone": "+77010000000",
        "contact_method": ContactMethod.TELEGRAM,
        "context_source": "wallet",
        "context_screen": "earnings",
    }
    values.update(overrides)
    return await service.create(**values)


class TestPublicIds:
    """Test payout request public ids."""

    def test_parse(self):
        assert parse_public_id("prq_42") == 42

    @pytest.mark.parametrize("public_id", ["42", "prq_", "prq_x1", "req_1", ""])
    def test_malformed(self, public_id):
        with pytest.raises(ValidationError):
            parse_public_id(public_id)


class TestPayoutService:
    """Test the payout request lifecycle."""

    @pytest.mark.asyncio
    async def test_create(self, db):
        request = await create_request(PayoutService(db), amount=Decimal("1500.00"), currency_id=1)

        assert request.public_id == f"prq_{request.id}"
        assert request.status == PayoutRequestStatus.CREATED
        assert request.amount == Decimal("1500.00")
        assert request.telegram_alert_status == "pending"

    @pytest.mark.asyncio
    async def test_amount_must_be_positive(self, db):
        with pytest.raises(ValidationError):
            await create_request(PayoutService(db), amount=Decimal("0"))

    @pytest.mark.asyncio
    async def test_list_filters_and_pages(self, db):
        service = PayoutService(db)
        first = await create_request(service)
        second = await create_request(service, user_id=5)
        third = await create_request(service)
        await service.update_status(third.id, PayoutRequestStatus.IN_REVIEW, admin_id=99)

        everything, total = await service.list_requests()
        by_status, _ = await service.list_requests(status=PayoutRequestStatus.IN_REVIEW)
        by_user, user_total = await service.list_requests(user_id=SELLER_ID)
        page, paged_total = await service.list_requests(page=2, page_size=2)
        future, _ = await service.list_requests(date_from=datetime.utcnow() + timedelta(days=1))

        assert total == 3
        assert {request.id for request in everything} == {first.id, second.id, third.id}
        assert [request.id for request in by_status] == [third.id]
        assert user_total == 2
        assert {request.id for request in by_user} == {first.id, third.id}
        assert paged_total == 3
        assert len(page) == 1
        assert future == []

    @pytest.mark.asyncio
    async def test_status_changes_are_recorded(self, db):
        service = PayoutService(db)
        request = await create_request(service)

        await service.update_status(request.id, PayoutRequestStatus.IN_REVIEW, admin_id=99)
        updated, previous = await service.update_status(
            request.id, PayoutRequestStatus.PAID, admin_id=99, comment="Sent by bank transfer"
        )

        assert previous == PayoutRequestStatus.IN_REVIEW
        assert updated.status == PayoutRequestStatus.PAID
        history = await service.status_history(request.id)
        assert [(entry.from_status, entry.to_status) for entry in history] == [
            (PayoutRequestStatus.CREATED, PayoutRequestStatus.IN_REVIEW),
            (PayoutRequestStatus.IN_REVIEW, PayoutRequestStatus.PAID),
        ]
        assert history[1].comment == "Sent by bank transfer"
        assert history[1].changed_by_admin_id == 99

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "final", [PayoutRequestStatus.PAID, PayoutRequestStatus.REJECTED, PayoutRequestStatus.CANCELED]
    )
    async def test_final_status_cannot_change(self, db, final):
        service = PayoutService(db)
        request = await create_request(service)
        await service.update_status(request.id, final)

        with pytest.raises(ConflictError):
            await service.update_status(request.id, PayoutRequestStatus.PROCESSING)

        same, previous = await service.update_status(request.id, final, comment="note")
        assert same.status == final
        assert previous == final
        assert len(await service.status_history(request.id)) == 2

    @pytest.mark.asyncio
    async def test_unknown_request(self, db):
        with pytest.raises(NotFoundError):
            await PayoutService(db).update_status(404, PayoutRequestStatus.PAID)

    @pytest.mark.asyncio
    async def test_record_alert(self, db):
        service = PayoutService(db)
        request = await create_request(service)

        await service.record_alert(request.id, sent=False)
        await service.record_alert(request.id, sent=True)

        request = await service.get(request.id)
        assert request.telegram_alert_attempts == 2
        assert request.telegram_alert_status == "sent"

    @pytest.mark.asyncio
    async def test_details(self, db):
        service = PayoutService(db)
        request = await create_request(service, context_metadata={"balance": "1500"})
        await service.update_status(request.id, PayoutRequestStatus.IN_REVIEW, admin_id=99)

        details = service.to_details(await service.get(request.id), await service.status_history(request.id))

        assert details["payout_request_id"] == request.public_id
        assert details["requester"]["preferred_contact_method"] == "telegram"
        assert details["context"] == {
            "source": "wallet",
            "screen": "earnings",
            "url": None,
            "metadata": {"balance": "1500"},
        }
        assert details["status_history"][0]["to_status"] == "inReview"


class TestTelegramService:
    """Test admin alert formatting and delivery."""

    @pytest.mark.asyncio
    async def test_new_request_message_escapes_html(self, db):
        request = await create_request(PayoutService(db), requester_name="<b>Eve</b>", amount=Decimal("10.00"))

        text = TelegramService(bot_token="", chat_id="").format_payout_request_message(request)

        assert "&lt;b&gt;Eve&lt;/b&gt;" in text
        assert f"<code>{request.public_id}</code>" in text
        assert "10.00" in text
        assert "wallet / earnings" in text

    @pytest.mark.asyncio
    async def test_status_change_message(self, db):
        service = PayoutService(db)
        request = await create_request(service)
        request, previous = await service.update_status(request.id, PayoutRequestStatus.REJECTED)

        text = TelegramService(bot_token="", chat_id="").format_status_change_message(
            request, previous, comment="IBAN & name mismatch"
        )

        assert "created → rejected" in text
        assert "IBAN &amp; name mismatch" in text

    @pytest.mark.asyncio
    async def test_send_message(self):
        telegram = FakeTelegram()

        result = await telegram.service().send_message("hello")

        assert result["ok"]
        assert telegram.messages == [
            {"chat_id": "-100500", "text": "hello", "parse_mode": "HTML", "disable_notification": False}
        ]

    @pytest.mark.asyncio
    async def test_api_error_returns_none(self):
        assert await FakeTelegram(ok=False).service().send_message("hello") is None

    @pytest.mark.asyncio
    async def test_disabled_without_credentials(self):
        service = TelegramService(bot_token="", chat_id="")

        assert not service.enabled
        assert await service.send_message("hello") is None


class TestPayoutAlerts:
    """Test the alert task body against the test database."""

    @pytest.fixture(autouse=True)
    def use_test_sessions(self, monkeypatch, session_factory):
        @asynccontextmanager
        async def get_session():
            async with session_factory() as session:
                yield session
                await session.commit()

        monkeypatch.setattr(payout_tasks, "get_session", get_session)

    @pytest.mark.asyncio
    async def test_new_request_alert_is_recorded(self, db, session_factory):
        request = await create_request(PayoutService(db))
        telegram = FakeTelegram()

        sent = await payout_tasks.send_payout_alert(request.id, telegram=telegram.service())

        assert sent
        assert request.public_id in telegram.messages[0]["text"]
        async with session_factory() as session:
            stored = await PayoutService(session).get(request.id)
        assert stored.telegram_alert_status == "sent"
        assert stored.telegram_alert_attempts == 1

    @pytest.mark.asyncio
    async def test_failed_alert_is_recorded(self, db, session_factory):
        request = await create_request(PayoutService(db))

        sent = await payout_tasks.send_payout_alert(request.id, telegram=FakeTelegram(ok=False).service())

        assert not sent
        async with session_factory() as session:
            stored = await PayoutService(session).get(request.id)
        assert stored.telegram_alert_status == "failed"

    @pytest.mark.asyncio
    async def test_status_change_alert_is_not_tracked(self, db, session_factory):
        service = PayoutService(db)
        request = await create_request(service)
        await service.update_status(request.id, PayoutRequestStatus.IN_REVIEW)
        telegram = FakeTelegram()

        sent = await payout_tasks.send_payout_alert(
            request.id, from_status="created", comment="Checking", telegram=telegram.service()
        )

        assert sent
        assert "created → inReview" in telegram.messages[0]["text"]
        async with session_factory() as session:
            stored = await PayoutService(session).get(request.id)
        assert stored.telegram_alert_attempts == 0

    def test_trigger_swallows_broker_errors(self, monkeypatch):
        def broken_delay(**kwargs):
            raise ConnectionError("broker unavailable")

        monkeypatch.setattr(payout_tasks, "send_alert_task", SimpleNamespace(delay=broken_delay))

        payout_tasks.trigger_payout_alert(1)
