"""Payment gateway module - signed wire protocol and HTTP client."""

from billing.gateway.client import GatewayClient, GatewayResult
from billing.gateway.protocol import (
    GatewayPayload,
    build_request,
    decode,
    encode,
    generate_order_id,
    sign,
    verify,
)
from billing.gateway.status import map_gateway_status

__all__ = [
    "GatewayClient",
    "GatewayResult",
    "GatewayPayload",
    "build_request",
    "decode",
    "encode",
    "generate_order_id",
    "sign",
    "verify",
    "map_gateway_status",
]
