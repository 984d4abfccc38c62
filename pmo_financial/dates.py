"""Date helpers; every datetime handled by the services is timezone-aware UTC."""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> datetime:
    """Coerce an ISO string, ``date`` or ``datetime`` into an aware UTC datetime.

    Raises:
        ValueError: if ``value`` cannot be interpreted as a point in time.
    """

    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty date")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_utc(datetime.fromisoformat(text))
    raise ValueError(f"unsupported date value {value!r}")


def parse_optional_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return parse_datetime(value)


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def month_start(value: datetime) -> datetime:
    return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def month_end(value: datetime) -> datetime:
    last_day = calendar.monthrange(value.year, value.month)[1]
    return value.replace(day=last_day, hour=23, minute=59, second=59, microsecond=999999)
