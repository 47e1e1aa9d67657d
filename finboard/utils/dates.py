"""Month-key helpers.

Months are stored as the first day of the month (a ``date``) and exchanged over
the API as ``"YYYY-MM"`` strings.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timezone

MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def is_month_key(value: str) -> bool:
    return bool(MONTH_KEY_RE.match(value or ""))


def get_month_start(value: date | datetime) -> date:
    return date(value.year, value.month, 1)


def get_month_key(value: date | datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def get_month_start_from_key(month_key: str) -> date:
    if not is_month_key(month_key):
        raise ValueError(f"Invalid month key: {month_key!r}")
    year, month = month_key.split("-")
    return date(int(year), int(month), 1)


def shift_month(month_start: date, delta: int) -> date:
    """Move a month start by ``delta`` months (negative goes back)."""
    index = month_start.year * 12 + (month_start.month - 1) + delta
    return date(index // 12, index % 12 + 1, 1)


def days_in_month(month_start: date) -> int:
    return calendar.monthrange(month_start.year, month_start.month)[1]


def clamp_day(month_start: date, day: int) -> date:
    """Return ``day`` in the given month, pulled back to the last valid day."""
    return date(month_start.year, month_start.month, min(day, days_in_month(month_start)))


def start_of_day(value: datetime | date | None = None) -> datetime:
    if value is None:
        value = datetime.now(timezone.utc)
    return datetime(value.year, value.month, value.day)
