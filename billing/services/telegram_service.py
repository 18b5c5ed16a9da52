"""Telegram Bot Service - admin alerts for payout requests."""

import logging
from html import escape
from typing import Any

import httpx

from billing.core.config import get_settings
from billing.models.payout import PayoutRequest, PayoutRequestStatus

logger = logging.getLogger(__name__)


class TelegramService:
    """Service for sending Telegram notifications."""

    BASE_URL = "https://api.telegram.org/bot{token}/{method}"

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Telegram service.

        Args:
            bot_token: Telegram bot token. If not provided, uses config.
            chat_id: Admin chat. If not provided, uses config.
            transport: Optional httpx transport (tests)
        """
        settings = get_settings()
        self.bot_token = bot_token if bot_token is not None else settings.telegram_bot_token
        self.chat_id = chat_id if chat_id is not None else settings.telegram_chat_id
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def send_message(
        self,
        text: str,
        parse_mode: str = "HTML",
        disable_notification: bool = False,
    ) -> dict[str, Any] | None:
        """Send a text message to the admin chat.

        Returns:
            Telegram API response or None on error
        """
        if not self.enabled:
            logger.warning("Telegram bot token or chat not configured, skipping notification")
            return None

        url = self.BASE_URL.format(token=self.bot_token, method="sendMessage")
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_notification": disable_notification,
        }

        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(url, json=payload)
                result = response.json()

                if not result.get("ok"):
                    logger.error(
                        "Telegram API error: %s",
                        result.get("description", "Unknown error"),
                    )
                    return None

                return result
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Telegram request failed: %s", e)
            return None

    # ============ Notification Templates ============

    def format_payout_request_message(self, request: PayoutRequest) -> str:
        """Format new payout request alert."""
        msg = f"""💸 <b>New payout request</b> <code>{request.public_id}</code>

👤 <b>User:</b> {request.user_id}
📛 <b>Name:</b> {escape(request.requester_name or "-")}
📧 <b>Email:</b> {escape(request.requester_email or "-")}
📞 <b>Phone:</b> {escape(request.requester_phone or "-")}
💬 <b>Contact via:</b> {request.contact_method.value}
"""
        if request.amount is not None:
            msg += f"""💵 <b>Amount:</b> {request.amount}
"""
        if request.context_source:
            msg += f"""
🧭 <b>Source:</b> {escape(request.context_source)}"""
            if request.context_screen:
                msg += f" / {escape(request.context_screen)}"
        return msg

    def format_status_change_message(
        self,
        request: PayoutRequest,
        from_status: PayoutRequestStatus | None,
        comment: str | None = None,
    ) -> str:
        """Format payout status change alert."""
        previous = from_status.value if from_status else "-"
        msg = f"""🔄 <b>Payout request</b> <code>{request.public_id}</code>

<b>Status:</b> {previous} → {request.status.value}
"""
        if comment:
            msg += f"""
📝 <b>Comment:</b>
{escape(comment)}"""
        return msg
