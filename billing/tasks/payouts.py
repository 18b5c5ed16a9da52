"""Payout request admin alerts (Telegram)."""

import logging

from billing.core.config import get_settings
from billing.db.engine import close_db, get_session
from billing.models.payout import PayoutRequestStatus
from billing.services.payout_service import PayoutService
from billing.services.telegram_service import TelegramService
from billing.tasks import run_async
from billing.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def send_payout_alert(
    request_id: int,
    from_status: str | None = None,
    comment: str | None = None,
    telegram: TelegramService | None = None,
) -> bool:
    """Send a new-request alert, or a status-change alert when ``from_status`` is given.

    Only new-request alerts are tracked on the request row.
    """
    telegram = telegram or TelegramService()
    async with get_session() as db:
        service = PayoutService(db)
        request = await service.get(request_id)
        if from_status is None:
            text = telegram.format_payout_request_message(request)
        else:
            text = telegram.format_status_change_message(
                request, PayoutRequestStatus(from_status), comment
            )

        sent = await telegram.send_message(text) is not None
        if from_status is None:
            await service.record_alert(request_id, sent)
    return sent


@celery_app.task(bind=True, name="payouts.send_alert", max_retries=3)
def send_alert_task(
    self,
    request_id: int,
    from_status: str | None = None,
    comment: str | None = None,
) -> bool:
    """Celery task to send a payout request alert.

    Args:
        request_id: Payout request ID
        from_status: Previous status for status-change alerts
        comment: Admin comment for status-change alerts

    Returns:
        True if sent successfully
    """

    async def _send() -> bool:
        try:
            return await send_payout_alert(request_id, from_status, comment)
        finally:
            await close_db()

    settings = get_settings()
    sent = run_async(_send())
    retryable = bool(settings.telegram_bot_token and settings.telegram_chat_id) and from_status is None
    if not sent and retryable and self.request.retries < settings.telegram_alert_max_attempts - 1:
        raise self.retry(countdown=60 * (self.request.retries + 1))
    return sent


def trigger_payout_alert(
    request_id: int,
    from_status: PayoutRequestStatus | None = None,
    comment: str | None = None,
) -> None:
    """Trigger a payout alert task.

    This is a fire-and-forget function to be called from the API layer.
    """
    try:
        send_alert_task.delay(
            request_id=request_id,
            from_status=from_status.value if from_status else None,
            comment=comment,
        )
    except Exception as e:
        logger.error(f"Failed to queue payout alert for prq_{request_id}: {e}")
