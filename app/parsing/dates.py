"""
app/parsing/dates.py

Flexible date parsing and business-day arithmetic for tracking exports.

Tracking exports mix Brazilian day-first dates (``31/12/2024``,
``31-12-2024 14:35``), Excel serial numbers (``45292``) and ISO strings.
Every parser here returns ``None`` instead of raising so callers can simply
exclude a row from date-dependent metrics.
"""

from __future__ import annotations

import math
import re
import warnings
from datetime import date, datetime, timedelta, timezone
from typing import NamedTuple

import pandas as pd

_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
_LEADING_INT = re.compile(r"^\s*[+-]?\d+")
_LEADING_FLOAT = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")

# Excel counts 1900-02-29, which never existed; subtracting two days from
# 1900-01-01 lands serial numbers on the real calendar.
_EXCEL_EPOCH = datetime(1900, 1, 1)
_EXCEL_SERIAL_MIN = 1000
_EXCEL_SERIAL_MAX = 100000


class BusinessDayInfo(NamedTuple):
    business_days: int
    weekend_days: int


def _leading_int(raw: str) -> int | None:
    match = _LEADING_INT.match(raw)
    if match is None:
        return None
    return int(match.group(0))


def _leading_float(raw: str) -> float | None:
    match = _LEADING_FLOAT.match(raw)
    if match is None:
        return None
    return float(match.group(0))


def _build_local_datetime(
    year: int,
    month: int,
    day: int,
    hour: int = 0,
    minute: int = 0,
    second: int = 0,
) -> datetime | None:
    """
    Build a datetime letting out-of-range components roll over.

    ``32/01/2024`` becomes 2024-02-01 and month 13 becomes January of the
    following year, matching how spreadsheet tools normalise such values.
    Two-digit years are read as 19xx.
    """

    if 0 <= year <= 99:
        year += 1900
    month_index = month - 1
    year += month_index // 12
    month_index %= 12
    try:
        base = datetime(year, month_index + 1, 1)
        return base + timedelta(days=day - 1, hours=hour, minutes=minute, seconds=second)
    except (ValueError, OverflowError):
        return None


def _parse_day_first(text: str, separator: str) -> datetime | None:
    date_part, _, time_part = text.partition(" ")
    parts = date_part.split(separator)
    if separator == "-" and len(parts) != 3:
        return None

    padded = (parts + ["", "", ""])[:3]
    day, month, year = (_leading_int(part) for part in padded)
    if day is None or month is None or year is None:
        return None

    time_part = time_part.strip()
    if not time_part:
        return _build_local_datetime(year, month, day)

    time_fields = (time_part.split(":") + ["0", "0", "0"])[:3]
    hour, minute, second = (_leading_int(field) or 0 for field in time_fields)
    return _build_local_datetime(year, month, day, hour, minute, second)


def _parse_excel_serial(text: str) -> datetime | None:
    if _ISO_PREFIX.match(text):
        return None
    number = _leading_float(text)
    if number is None or not math.isfinite(number):
        return None
    if not _EXCEL_SERIAL_MIN < number < _EXCEL_SERIAL_MAX:
        return None
    return _EXCEL_EPOCH + timedelta(days=number - 2)


def _parse_generic(text: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = None

    if parsed is None:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            timestamp = pd.to_datetime(text, errors="coerce")
        if timestamp is None or pd.isna(timestamp):
            return None
        if timestamp.tzinfo is not None:
            timestamp = timestamp.tz_convert(None)
        parsed = timestamp.to_pydatetime()

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_flexible_date(value: object) -> datetime | None:
    """
    Interpret a tracking export date value.

    Attempts, in order: ``dd/mm/yyyy[ hh:mm[:ss]]``, ``dd-mm-yyyy[ hh:mm[:ss]]``
    (skipped when the text starts with an ISO ``yyyy-mm-dd`` prefix), Excel
    serial numbers strictly between 1000 and 100000 (read from the leading
    number, so ``45292 12:00`` is a serial), then a generic parse.
    Returns ``None`` for empty or unparseable input.
    """

    if value is None or (isinstance(value, (str, int, float)) and not value):
        return None
    if isinstance(value, datetime):
        return None if pd.isna(value) else value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, float) and math.isnan(value):
        return None

    text = str(value).strip()
    if not text:
        return None

    if "/" in text:
        parsed = _parse_day_first(text, "/")
        if parsed is not None:
            return parsed

    if "-" in text and not _ISO_PREFIX.match(text):
        parsed = _parse_day_first(text, "-")
        if parsed is not None:
            return parsed

    parsed = _parse_excel_serial(text)
    if parsed is not None:
        return parsed

    return _parse_generic(text)


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def business_days_with_weekend_info(start: date | datetime, end: date | datetime) -> BusinessDayInfo:
    """
    Count weekdays and weekend days between two dates, both ends inclusive.
    """

    first, last = _as_date(start), _as_date(end)
    if first > last:
        first, last = last, first

    business_days = 0
    weekend_days = 0
    current = first
    while current <= last:
        if current.weekday() >= 5:
            weekend_days += 1
        else:
            business_days += 1
        current += timedelta(days=1)
    return BusinessDayInfo(business_days=business_days, weekend_days=weekend_days)


def has_weekends_in_range(start: date | datetime, end: date | datetime) -> bool:
    return business_days_with_weekend_info(start, end).weekend_days > 0


def difference_in_business_days(later: date | datetime, earlier: date | datetime) -> int:
    """
    Signed number of business days between two dates.

    Whole weeks contribute five days each; the remaining days are walked one
    at a time from ``earlier`` towards ``later``, counting a step only when
    the day being left is not a Saturday or Sunday.
    """

    left, right = _as_date(later), _as_date(earlier)
    calendar_difference = (left - right).days
    sign = -1 if calendar_difference < 0 else 1
    weeks = int(calendar_difference / 7)

    result = weeks * 5
    right += timedelta(days=weeks * 7)
    while right != left:
        if right.weekday() < 5:
            result += sign
        right += timedelta(days=sign)
    return result
