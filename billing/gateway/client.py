"""Payment gateway HTTP client.

Four operations are supported: charge-create (hosted checkout),
charge-status, charge-recurrent (stored token) and receipt-fetch. Transport
problems surface as ``GatewayError``; a declined payment is a normal
result carrying the decoded payload.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import httpx

from billing.core.config import GatewayConfig
from billing.core.exceptions import GatewayError
from billing.gateway import protocol
from billing.gateway.protocol import GatewayPayload
from billing.models.transaction import TransactionStatus

logger = logging.getLogger(__name__)

MERCHANT_TERM_URL = "https://korner.pro/app/offer/payment-terms"


@dataclass
class GatewayResult:
    """Verified and decoded gateway response."""

    success: bool
    order_id: str
    payload: GatewayPayload
    payment_id: str | None = None
    response: dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> TransactionStatus:
        return self.payload.status

    @property
    def charged(self) -> bool:
        """Whether a synchronous token charge went through."""
        if not self.success:
            return False
        payment_status = (self.payload.payment_status or "").lower()
        return payment_status in ("success", "withdraw") or self.payload.operation_status == "success"

    def transaction_data(self) -> dict[str, Any]:
        """Payload stored on the transaction record."""
        return {"success": self.success, "payment_id": self.payment_id, **self.payload.raw}


def _amount(value: Decimal) -> int | float:
    value = Decimal(value)
    return int(value) if value == value.to_integral_value() else float(value)


class GatewayClient:
    """Async client for the card payment gateway."""

    def __init__(
        self,
        config: GatewayConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport

    # =========================================================================
    # Operations
    # =========================================================================

    async def create_charge(
        self,
        amount: Decimal,
        email: str,
        callback_url: str,
        success_url: str,
        failure_url: str,
        description: str = "Korner",
    ) -> GatewayResult:
        """Create a hosted checkout charge (also issues a recurring token on success)."""
        order_id = protocol.generate_order_id(protocol.PAY_PREFIX)
        value = _amount(amount)
        payload = {
            "amount": value,
            "currency": self.config.currency,
            "order_id": order_id,
            "description": description,
            "payment_type": "pay",
            "payment_method": "ecom",
            "email": email,
            "success_url": success_url,
            "failure_url": failure_url,
            "callback_url": callback_url,
            "merchant_term_url": MERCHANT_TERM_URL,
            "payment_lifetime": self.config.payment_lifetime,
            "create_recurrent_profile": True,
            "recurrent_profile_lifetime": self.config.recurrent_profile_lifetime,
            "lang": self.config.lang,
            "items": [
                {
                    "merchant_id": self.config.merchant_id,
                    "service_id": self.config.service_id,
                    "merchant_name": self.config.merchant_name,
                    "name": description,
                    "quantity": 1,
                    "amount_one_pcs": value,
                    "amount_sum": value,
                }
            ],
        }
        response = await self._post("/payment/create", payload)
        return self._result(order_id, response, require_payment_id=True)

    async def charge_status(self, order_id: str) -> GatewayResult:
        """Query the status of a previously created charge."""
        payload: dict[str, Any] = {"order_id": order_id}
        if self.config.test_mode:
            payload = {"test_mode": 1, **payload}
        response = await self._post("/payment/status", payload)
        return self._result(order_id, response, require_payment_id=False)

    async def charge_recurrent(
        self,
        token: str,
        amount: Decimal,
        description: str = "Korner recurrent payment",
    ) -> GatewayResult:
        """Charge a stored card token synchronously."""
        order_id = protocol.generate_order_id(protocol.RECURRENT_PREFIX)
        payload = {
            "token": token,
            "amount": _amount(amount),
            "order_id": order_id,
            "description": description,
        }
        response = await self._post("/payment/recurrent", payload)
        return self._result(order_id, response, require_payment_id=True)

    async def fetch_receipt(self, payment_id: str, order_id: str) -> bytes:
        """Download the PDF receipt of a completed payment."""
        body = protocol.build_request(
            {"payment_id": payment_id, "order_id": order_id}, self.config.secret_key
        )
        response = await self._send("/payment/receipt", body)
        if not response.content:
            raise GatewayError("Empty receipt response", {"order_id": order_id})
        return response.content

    # =========================================================================
    # Transport
    # =========================================================================

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {protocol.bearer_token(self.config.api_key)}",
            "Content-Type": "application/json",
        }

    async def _send(self, path: str, body: dict[str, str]) -> httpx.Response:
        url = f"{self.config.api_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(url, json=body, headers=self._headers())
                response.raise_for_status()
                return response
        except httpx.TimeoutException as e:
            logger.warning(f"Gateway timeout on {path}")
            raise GatewayError("Gateway request timed out", {"path": path}) from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"Gateway HTTP {e.response.status_code} on {path}")
            raise GatewayError(
                "Gateway returned an error status",
                {"path": path, "status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"Gateway request failed on {path}: {e}")
            raise GatewayError("Gateway request failed", {"path": path, "error": str(e)}) from e

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        body = protocol.build_request(payload, self.config.secret_key)
        response = await self._send(path, body)
        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError("Gateway response is not JSON", {"path": path}) from e
        if not isinstance(data, dict):
            raise GatewayError("Invalid API response", {"path": path})
        return data

    def _result(
        self,
        order_id: str,
        response: dict[str, Any],
        require_payment_id: bool,
    ) -> GatewayResult:
        if "success" not in response or not response.get("data") or not response.get("sign"):
            raise GatewayError("Invalid API response", {"order_id": order_id})
        success = bool(response["success"])
        payment_id = response.get("payment_id")
        if require_payment_id and success and payment_id is None:
            raise GatewayError("Invalid API response", {"order_id": order_id})

        # IntegrityError propagates: nothing in an unverified response is used
        payload = protocol.verify(response, self.config.secret_key)
        if payment_id is None and payload.payment_id is not None:
            payment_id = payload.payment_id
        return GatewayResult(
            success=success,
            order_id=payload.order_id or order_id,
            payload=payload,
            payment_id=str(payment_id) if payment_id is not None else None,
            response=response,
        )
