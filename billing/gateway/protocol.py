"""Payment gateway wire protocol.

Every request and response is an envelope ``{"data": ..., "sign": ...}``:

- ``data``: base64 of the JSON payload
- ``sign``: hex HMAC-SHA512 of the base64 string, keyed with the shared secret

Verification always happens before decoding; nothing from ``data`` is
trusted until the signature matches.
"""

import base64
import binascii
import hashlib
import hmac
import json
import threading
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from billing.core.exceptions import GatewayError, IntegrityError
from billing.gateway.status import map_gateway_status
from billing.models.transaction import TransactionStatus

PAY_PREFIX = "pay"
RECURRENT_PREFIX = "recurrent"


# ============ Payload Schemas ============


class PayerInfo(BaseModel):
    """Card holder details reported by the gateway."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    pan_masked: str | None = None
    holder: str | None = None
    email: str | None = None
    phone: str | None = None


class GatewayPayload(BaseModel):
    """Decoded gateway response or callback payload.

    Only the fields the engine acts on are typed; everything else is kept in
    ``raw`` for the transaction record.
    """

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    order_id: str | None = None
    payment_id: str | None = None
    operation_id: str | None = None
    payment_type: str | None = None
    operation_type: str | None = None
    payment_status: str | None = None
    operation_status: str | None = None
    recurrent_token: str | None = None
    amount: Any = None
    amount_initial: Any = None
    created_date: str | None = None
    payment_date: str | None = None
    payment_page_url: str | None = None
    payer_info: PayerInfo | None = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @property
    def pan_masked(self) -> str | None:
        return self.payer_info.pan_masked if self.payer_info else None

    @property
    def is_success(self) -> bool:
        """Callback completion trigger: only ``operation_status == "success"``."""
        return self.operation_status == "success"

    @property
    def status(self) -> TransactionStatus:
        """Normalized status, operation status first."""
        return map_gateway_status(self.operation_status or self.payment_status)


# ============ Signing ============


def encode(payload: dict[str, Any]) -> str:
    """Serialize a payload to compact JSON and base64-encode it."""
    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def sign(data: str, secret_key: str) -> str:
    """Hex HMAC-SHA512 of the base64 ``data`` string."""
    return hmac.new(
        secret_key.encode("utf-8"),
        data.encode("utf-8"),
        hashlib.sha512,
    ).hexdigest()


def build_request(payload: dict[str, Any], secret_key: str) -> dict[str, str]:
    """Build the signed request envelope."""
    data = encode(payload)
    return {"data": data, "sign": sign(data, secret_key)}


def bearer_token(api_key: str) -> str:
    """Authorization bearer value: base64 of the API key."""
    return base64.b64encode(api_key.encode("utf-8")).decode("ascii")


def verify_signature(data: str, signature: str, secret_key: str) -> bool:
    expected = sign(data, secret_key)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii", "replace"))


def decode(data: str) -> GatewayPayload:
    """Decode a base64 JSON payload. Call only after ``verify_signature``."""
    try:
        raw = json.loads(base64.b64decode(data, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise GatewayError("Undecodable gateway payload", {"error": str(e)}) from e
    if not isinstance(raw, dict):
        raise GatewayError("Gateway payload is not an object")
    try:
        payload = GatewayPayload.model_validate(raw)
    except PydanticValidationError as e:
        raise GatewayError("Malformed gateway payload", {"error": str(e)}) from e
    payload.raw = raw
    return payload


def verify(envelope: dict[str, Any], secret_key: str) -> GatewayPayload:
    """Verify an envelope's signature and decode its payload.

    Raises:
        IntegrityError: ``data``/``sign`` missing or the signature does not match
        GatewayError: signature matches but the payload cannot be decoded
    """
    data = envelope.get("data")
    signature = envelope.get("sign")
    if not isinstance(data, str) or not isinstance(signature, str) or not data or not signature:
        raise IntegrityError("Missing gateway data or signature")
    if not verify_signature(data, signature, secret_key):
        raise IntegrityError("Invalid gateway signature")
    return decode(data)


# ============ Order IDs ============

_order_id_lock = threading.Lock()
_last_order_ms = 0


def generate_order_id(prefix: str = PAY_PREFIX) -> str:
    """Generate ``<prefix>_<epoch-ms>``.

    Values are strictly increasing within the process: a second call in the
    same millisecond takes the next millisecond.
    """
    global _last_order_ms
    with _order_id_lock:
        now_ms = int(time.time() * 1000)
        _last_order_ms = max(now_ms, _last_order_ms + 1)
        return f"{prefix}_{_last_order_ms}"

