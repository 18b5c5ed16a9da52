"""Tests for the gateway wire protocol, status mapping and HTTP client."""

import base64
import json
from dataclasses import replace
from decimal import Decimal

import httpx
import pytest

from billing.core.exceptions import GatewayError, IntegrityError
from billing.gateway import protocol
from billing.gateway.client import GatewayClient
from billing.gateway.status import map_gateway_status
from billing.models.transaction import TransactionStatus

from .conftest import SECRET


class TestSignedEnvelope:
    """Test signing and verification of gateway envelopes."""

    def test_verify_accepts_own_envelope(self):
        envelope = protocol.build_request({"order_id": "pay_1", "amount": 500}, SECRET)

        payload = protocol.verify(envelope, SECRET)

        assert payload.order_id == "pay_1"
        assert payload.raw == {"order_id": "pay_1", "amount": 500}

    def test_sign_is_hex_hmac_sha512(self):
        envelope = protocol.build_request({"order_id": "pay_1"}, SECRET)

        assert len(envelope["sign"]) == 128
        int(envelope["sign"], 16)

    def test_data_is_base64_compact_json(self):
        envelope = protocol.build_request({"a": 1, "b": "x"}, SECRET)

        assert base64.b64decode(envelope["data"]) == b'{"a":1,"b":"x"}'

    def test_flipped_data_bit_is_rejected(self):
        envelope = protocol.build_request({"order_id": "pay_1", "amount": 500}, SECRET)
        raw = bytearray(base64.b64decode(envelope["data"]))
        raw[-3] ^= 0x01
        envelope["data"] = base64.b64encode(bytes(raw)).decode("ascii")

        with pytest.raises(IntegrityError):
            protocol.verify(envelope, SECRET)

    def test_wrong_secret_is_rejected(self):
        envelope = protocol.build_request({"order_id": "pay_1"}, "another-secret")

        with pytest.raises(IntegrityError):
            protocol.verify(envelope, SECRET)

    @pytest.mark.parametrize("envelope", [{}, {"data": "e30="}, {"sign": "abc"}, {"data": "", "sign": ""}])
    def test_missing_parts_are_rejected(self, envelope):
        with pytest.raises(IntegrityError):
            protocol.verify(envelope, SECRET)

    def test_signed_garbage_is_a_gateway_error(self):
        data = base64.b64encode(b"not json").decode("ascii")
        envelope = {"data": data, "sign": protocol.sign(data, SECRET)}

        with pytest.raises(GatewayError):
            protocol.verify(envelope, SECRET)

    def test_numeric_ids_are_read_as_strings(self):
        envelope = protocol.build_request(
            {"order_id": "pay_1", "payment_id": 98765, "payer_info": {"pan_masked": "4400****1234"}},
            SECRET,
        )

        payload = protocol.verify(envelope, SECRET)

        assert payload.payment_id == "98765"
        assert payload.pan_masked == "4400****1234"

    def test_only_operation_success_completes(self):
        success = protocol.verify(
            protocol.build_request({"order_id": "pay_1", "operation_status": "success"}, SECRET), SECRET
        )
        paid_only = protocol.verify(
            protocol.build_request({"order_id": "pay_1", "payment_status": "paid"}, SECRET), SECRET
        )

        assert success.is_success
        assert not paid_only.is_success
        assert paid_only.status == TransactionStatus.COMPLETED


class TestOrderIds:
    """Test gateway order id generation."""

    def test_prefix_and_millis(self):
        order_id = protocol.generate_order_id()

        prefix, millis = order_id.split("_")
        assert prefix == "pay"
        assert millis.isdigit() and len(millis) >= 13

    def test_strictly_increasing(self):
        ids = [protocol.generate_order_id(protocol.RECURRENT_PREFIX) for _ in range(50)]

        millis = [int(order_id.split("_")[1]) for order_id in ids]
        assert millis == sorted(set(millis))


class TestStatusMap:
    """Test normalization of gateway statuses."""

    @pytest.mark.parametrize(
        "status, expected",
        [
            ("success", TransactionStatus.COMPLETED),
            ("withdraw", TransactionStatus.COMPLETED),
            ("PAID", TransactionStatus.COMPLETED),
            ("declined", TransactionStatus.FAILED),
            ("error", TransactionStatus.FAILED),
            ("cancelled", TransactionStatus.CANCELED),
            ("canceled", TransactionStatus.CANCELED),
            ("processing", TransactionStatus.PENDING),
            (" waiting ", TransactionStatus.PENDING),
        ],
    )
    def test_known_statuses(self, status, expected):
        assert map_gateway_status(status) == expected

    @pytest.mark.parametrize("status", [None, "", "refund_in_progress", "something-new"])
    def test_unknown_statuses_stay_pending(self, status):
        assert map_gateway_status(status) == TransactionStatus.PENDING


class TestGatewayClient:
    """Test the gateway HTTP client against the in-memory gateway."""

    @pytest.mark.asyncio
    async def test_create_charge_sends_signed_request(self, gateway, fake_gateway):
        result = await gateway.create_charge(
            amount=Decimal("500.00"),
            email="buyer@example.com",
            callback_url="https://billing.test/api/payment/callback",
            success_url="https://app.test/ok",
            failure_url="https://app.test/fail",
        )

        path, payload = fake_gateway.requests[0]
        assert path == "/payment/create"
        assert payload["amount"] == 500
        assert payload["items"][0]["amount_sum"] == 500
        assert payload["create_recurrent_profile"] is True
        assert result.success
        assert result.order_id == payload["order_id"]
        assert result.payment_id == "pay-1"
        assert result.payload.payment_page_url == "https://pay.test/pay-1"

    @pytest.mark.asyncio
    async def test_bearer_is_base64_api_key(self, gateway_config):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["authorization"] = request.headers["Authorization"]
            envelope = protocol.build_request({"order_id": "x"}, SECRET)
            return httpx.Response(200, json={"success": True, "payment_id": "1", **envelope})

        client = GatewayClient(gateway_config, transport=httpx.MockTransport(handler))
        await client.charge_recurrent("tok-1", Decimal("10"))

        expected = base64.b64encode(b"test-api-key").decode("ascii")
        assert seen["authorization"] == f"Bearer {expected}"

    @pytest.mark.asyncio
    async def test_status_query(self, gateway, fake_gateway):
        fake_gateway.status_payload = {"payment_status": "withdraw"}

        result = await gateway.charge_status("pay_123")

        _, payload = fake_gateway.requests[0]
        assert payload == {"order_id": "pay_123"}
        assert result.status == TransactionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_status_query_in_test_mode(self, gateway_config, fake_gateway):
        client = GatewayClient(
            replace(gateway_config, test_mode=True), transport=httpx.MockTransport(fake_gateway.handler)
        )

        await client.charge_status("pay_123")

        _, payload = fake_gateway.requests[0]
        assert payload == {"test_mode": 1, "order_id": "pay_123"}

    @pytest.mark.asyncio
    async def test_tampered_response_raises_integrity_error(self, gateway, fake_gateway):
        fake_gateway.tamper = True

        with pytest.raises(IntegrityError):
            await gateway.charge_recurrent("tok-1", Decimal("100"))

    @pytest.mark.asyncio
    async def test_success_without_payment_id_is_invalid(self, gateway_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": True, **protocol.build_request({"order_id": "x"}, SECRET)})

        client = GatewayClient(gateway_config, transport=httpx.MockTransport(handler))

        with pytest.raises(GatewayError, match="Invalid API response"):
            await client.charge_recurrent("tok-1", Decimal("100"))

    @pytest.mark.asyncio
    async def test_missing_envelope_is_invalid(self, gateway_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"success": True, "payment_id": "1"})

        client = GatewayClient(gateway_config, transport=httpx.MockTransport(handler))

        with pytest.raises(GatewayError):
            await client.charge_status("pay_1")

    @pytest.mark.asyncio
    async def test_http_error_status(self, gateway_config):
        client = GatewayClient(
            gateway_config, transport=httpx.MockTransport(lambda request: httpx.Response(503))
        )

        with pytest.raises(GatewayError) as exc_info:
            await client.charge_status("pay_1")

        assert exc_info.value.details["status_code"] == 503

    @pytest.mark.asyncio
    async def test_unreachable_gateway(self, gateway, fake_gateway):
        fake_gateway.error = httpx.ConnectError("connection refused")

        with pytest.raises(GatewayError):
            await gateway.charge_status("pay_1")

    @pytest.mark.asyncio
    async def test_timeout(self, gateway, fake_gateway):
        fake_gateway.error = httpx.ReadTimeout("timed out")

        with pytest.raises(GatewayError, match="timed out"):
            await gateway.charge_status("pay_1")

    @pytest.mark.asyncio
    async def test_fetch_receipt(self, gateway, fake_gateway):
        content = await gateway.fetch_receipt("pay-9", "pay_123")

        assert content == fake_gateway.receipt
        assert fake_gateway.requests[0] == ("/payment/receipt", {"payment_id": "pay-9", "order_id": "pay_123"})

    @pytest.mark.asyncio
    async def test_declined_recurrent_is_a_result(self, gateway, fake_gateway):
        fake_gateway.recurrent_success = False
        fake_gateway.recurrent_payload = {"payment_status": "error", "operation_status": "error"}

        result = await gateway.charge_recurrent("tok-1", Decimal("100"))

        assert not result.charged
        assert result.status == TransactionStatus.FAILED
        assert json.loads(json.dumps(result.transaction_data()))["success"] is False
