"""
Validation predicates

Pure checks that never raise. Callers decide which error to raise on False.
"""

import math
import re
from datetime import date, datetime

MONTH_RE = re.compile(r"^\d{4}-\d{2}$")
OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")
DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
# A date followed by a time part; compact and week-date forms are not accepted
DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}")

MIN_YEAR = 1900
MAX_YEAR = 2100

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 100


def is_valid_month_format(month) -> bool:
    if not month or not isinstance(month, str):
        return False
    if not MONTH_RE.match(month):
        return False
    year, month_num = (int(part) for part in month.split("-"))
    if month_num < 1 or month_num > 12:
        return False
    return MIN_YEAR <= year <= MAX_YEAR


def is_valid_object_id(value) -> bool:
    if not value or not isinstance(value, str):
        return False
    return bool(OBJECT_ID_RE.match(value))


def is_valid_date_string(value) -> bool:
    """YYYY-MM-DD or an ISO datetime such as 2025-03-09T10:00:00+02:00."""
    if not value or not isinstance(value, str):
        return False
    trimmed = value.strip()
    try:
        if DATE_ONLY_RE.match(trimmed):
            date.fromisoformat(trimmed)
        elif DATETIME_RE.match(trimmed):
            datetime.fromisoformat(trimmed)
        else:
            return False
    except ValueError:
        return False
    return True


def is_valid_amount(value, minimum: float = 0.0, inclusive: bool = False) -> bool:
    """Finite number above `minimum` (or equal to it when inclusive)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if not math.isfinite(value):
        return False
    return value >= minimum if inclusive else value > minimum


def is_valid_name(value) -> bool:
    if not isinstance(value, str):
        return False
    return NAME_MIN_LENGTH <= len(value.strip()) <= NAME_MAX_LENGTH
