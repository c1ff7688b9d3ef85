import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from errors import ValidationError

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class MonthWindow:
    """One calendar month: ``start`` is the 1st, ``end`` the last day (inclusive)."""

    key: str
    start: date
    end: date

    @property
    def year(self) -> int:
        return self.start.year

    @property
    def month(self) -> int:
        return self.start.month

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end

    def next(self) -> "MonthWindow":
        return month_window_for(add_months(self.start, 1))


def local_now() -> datetime:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    """Shift ``base`` by whole months, snapping the day to the target month's end."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = desired_day if desired_day is not None else base.day
    return date(year, month, min(day, days_in_month(year, month)))


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def month_window(year: int, month: int) -> MonthWindow:
    start = date(year, month, 1)
    end = date(year, month, days_in_month(year, month))
    return MonthWindow(month_key(start), start, end)


def month_window_for(value: date) -> MonthWindow:
    return month_window(value.year, value.month)


def parse_month_key(key: str) -> MonthWindow:
    match = _MONTH_KEY_RE.match(key or "")
    if not match:
        raise ValidationError(f"Invalid month key {key!r}, expected YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month in key {key!r}")
    return month_window(year, month)


def current_month(today: Optional[date] = None) -> MonthWindow:
    today = today or local_today()
    return month_window_for(today)


def month_index(value: date) -> int:
    return value.year * 12 + value.month
