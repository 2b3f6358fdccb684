"""
Calendar helpers for month tokens and week ranges

Every range produced here is half-open: start <= date < end, in UTC.
"""

import calendar
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import List, NamedTuple, Optional

from errors import InvalidFormat
from validation import DATE_ONLY_RE, is_valid_date_string


class MonthRange(NamedTuple):
    month: str
    start: datetime
    end: datetime


class WeekSpan(NamedTuple):
    week: int
    start_date: date
    end_date: date


class LastWeek(NamedTuple):
    start: datetime
    end: datetime
    week_number: int
    label: str


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def month_date_range(month: str) -> MonthRange:
    if not isinstance(month, str) or not re.match(r"^\d{4}-\d{2}$", month):
        raise InvalidFormat("Invalid month format. Expected YYYY-MM")

    year, month_num = (int(part) for part in month.split("-"))
    if month_num < 1 or month_num > 12:
        raise InvalidFormat("Invalid month format: month must be between 01-12")

    try:
        start = datetime(year, month_num, 1, tzinfo=timezone.utc)
    except ValueError:
        raise InvalidFormat("Invalid month format: invalid date")
    if start.year != year or start.month != month_num:
        raise InvalidFormat("Invalid month format: invalid date")

    try:
        if month_num == 12:
            end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        else:
            end = datetime(year, month_num + 1, 1, tzinfo=timezone.utc)
    except ValueError:
        raise InvalidFormat("Invalid month format: year out of range")
    return MonthRange(month, start, end)


def next_month(month: str) -> str:
    return month_date_range(month).end.strftime("%Y-%m")


def current_month(now: Optional[datetime] = None) -> str:
    return to_utc(now or utc_now()).strftime("%Y-%m")


def is_current_month(month: str, now: Optional[datetime] = None) -> bool:
    return month == current_month(now)


def days_in_month(month: str) -> int:
    start = month_date_range(month).start
    return calendar.monthrange(start.year, start.month)[1]


def days_for_average(month: str, now: Optional[datetime] = None) -> int:
    """Elapsed days for the current month, full length for any other."""
    now = to_utc(now or utc_now())
    if is_current_month(month, now):
        return max(now.day, 1)
    return days_in_month(month)


def normalize_date_to_utc(value: str) -> datetime:
    """Parse an expense date. Plain YYYY-MM-DD becomes UTC midnight."""
    if not is_valid_date_string(value):
        raise InvalidFormat("Invalid date format. Expected YYYY-MM-DD or an ISO datetime")

    trimmed = value.strip()
    if DATE_ONLY_RE.match(trimmed):
        return datetime.combine(date.fromisoformat(trimmed), time.min, tzinfo=timezone.utc)

    try:
        return to_utc(datetime.fromisoformat(trimmed))
    except OverflowError:
        raise InvalidFormat("Invalid date format: out of range")


def format_date(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return to_utc(value).date().isoformat()


def iso_week_number(day: date) -> int:
    return day.isocalendar()[1]


def weeks_in_range(start: datetime, end: datetime) -> List[WeekSpan]:
    """ISO weeks (Monday to Sunday) that intersect [start, end)."""
    weeks = {}
    current = to_utc(start).date()
    last = (to_utc(end) - timedelta(microseconds=1)).date()
    while current <= last:
        week = iso_week_number(current)
        if week not in weeks:
            monday = current - timedelta(days=current.weekday())
            weeks[week] = WeekSpan(week, monday, monday + timedelta(days=6))
        current += timedelta(days=1)
    return sorted(weeks.values(), key=lambda w: w.start_date)


def last_week_range(now: Optional[datetime] = None) -> LastWeek:
    """The Monday-to-Sunday week before the one containing `now`."""
    today = to_utc(now or utc_now()).date()
    this_monday = today - timedelta(days=today.weekday())
    last_monday = this_monday - timedelta(days=7)
    last_sunday = last_monday + timedelta(days=6)

    start = datetime.combine(last_monday, time.min, tzinfo=timezone.utc)
    end = datetime.combine(this_monday, time.min, tzinfo=timezone.utc)
    label = f"{_display_date(last_monday)} - {_display_date(last_sunday)}"
    return LastWeek(start, end, iso_week_number(last_monday), label)


def _display_date(day: date) -> str:
    return f"{day.strftime('%b')} {day.day}, {day.year}"
