"""Small formatting and date helpers."""

import calendar
from datetime import datetime


def format_utc_datetime(dt: datetime | None) -> str | None:
    """Format datetime to ISO string with Z suffix for UTC.

    Datetimes are stored naive in UTC (``datetime.utcnow()``); the Z suffix
    lets clients parse them as UTC.
    """
    if dt is None:
        return None
    return f"{dt.isoformat()}Z"


def add_months(dt: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month.

    Example: 2026-01-31 + 1 month -> 2026-02-28
    """
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def ensure_protocol(url: str, default: str = "http://") -> str:
    """Prefix a bare host with a scheme."""
    url = url.strip().rstrip("/")
    if url.startswith(("http://", "https://")):
        return url
    return f"{default}{url}"
