"""Gateway status normalization.

The gateway reports payment and operation statuses with several
vocabularies. Everything is folded onto ``TransactionStatus``; a status that
is missing from the table maps to ``pending`` so an unknown value can never
complete or fail a payment on its own.
"""

from billing.models.transaction import TransactionStatus

STATUS_MAP: dict[str, TransactionStatus] = {
    # completed
    "success": TransactionStatus.COMPLETED,
    "completed": TransactionStatus.COMPLETED,
    "paid": TransactionStatus.COMPLETED,
    "approved": TransactionStatus.COMPLETED,
    "withdraw": TransactionStatus.COMPLETED,
    # failed
    "failed": TransactionStatus.FAILED,
    "error": TransactionStatus.FAILED,
    "declined": TransactionStatus.FAILED,
    "rejected": TransactionStatus.FAILED,
    # canceled
    "cancelled": TransactionStatus.CANCELED,
    "canceled": TransactionStatus.CANCELED,
    "cancel": TransactionStatus.CANCELED,
    # pending
    "pending": TransactionStatus.PENDING,
    "processing": TransactionStatus.PENDING,
    "waiting": TransactionStatus.PENDING,
    "created": TransactionStatus.PENDING,
    "in_progress": TransactionStatus.PENDING,
    "initiated": TransactionStatus.PENDING,
}


def map_gateway_status(status: str | None) -> TransactionStatus:
    """Map a gateway status string to the internal status (case-insensitive)."""
    if not status:
        return TransactionStatus.PENDING
    return STATUS_MAP.get(status.strip().lower(), TransactionStatus.PENDING)
