from __future__ import annotations

import re
from calendar import monthrange
from datetime import date, timedelta
from typing import Iterator

from domain.errors import ValidationError, invalid_date

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def parse_month(month: str) -> tuple[int, int]:
    match = _MONTH_RE.match(str(month or "").strip())
    if not match:
        raise ValidationError(f"Month must be YYYY-MM, got {month!r}", code="invalid_month", field="month")
    year, month_number = int(match.group(1)), int(match.group(2))
    if not 1 <= month_number <= 12:
        raise ValidationError(f"Month number out of range in {month!r}", code="invalid_month", field="month")
    return year, month_number


def month_of(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def first_day(month: str) -> date:
    year, month_number = parse_month(month)
    return date(year, month_number, 1)


def last_day(month: str) -> date:
    year, month_number = parse_month(month)
    return date(year, month_number, monthrange(year, month_number)[1])


def clamp_day(month: str, day: int) -> date:
    """Day `day` of `month`, pulled back to the last day for short months (31 -> 30/28/29)."""
    year, month_number = parse_month(month)
    return date(year, month_number, min(max(int(day), 1), monthrange(year, month_number)[1]))


def iter_days(month: str) -> Iterator[date]:
    current = first_day(month)
    end = last_day(month)
    while current <= end:
        yield current
        current += timedelta(days=1)


def contains(month: str, day: date) -> bool:
    return first_day(month) <= day <= last_day(month)


def validate_closing_date(month: str, day: date, today: date, field: str = "closed_date") -> date:
    if not contains(month, day):
        raise invalid_date(f"{field} {day.isoformat()} is outside month {month}", field=field)
    if day > today:
        raise invalid_date(f"{field} {day.isoformat()} is in the future", field=field)
    return day


def default_closing_date(month: str, today: date) -> date:
    """Today when it falls in `month`, the month's last day for past months."""
    if contains(month, today):
        return today
    if last_day(month) < today:
        return last_day(month)
    raise invalid_date(f"Cannot settle an occurrence in future month {month}", field="closed_date")


def default_expected_date(month: str, today: date) -> date:
    if contains(month, today):
        return today
    return first_day(month) if today < first_day(month) else last_day(month)
