"""Rental-type specific date validation.

Daily rentals need a check-out strictly after check-in. Monthly rentals
always cover whole calendar months: the end date is derived from the start
date, clamping the day to the end of shorter months (Jan 31 -> Feb 28, or
Feb 29 in leap years).
"""

from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from .config import settings
from .models import RentalPeriod, Room

DateLike = Union[date, datetime, str, None]


class DateValidation(BaseModel):
    ok: bool
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    error: Optional[str] = None


def parse_date(value: DateLike) -> Optional[date]:
    """Coerce ``value`` to a ``date``.

    Accepts dates, datetimes, ``YYYY-MM-DD`` strings and ISO timestamps
    (including a trailing ``Z``). Empty values give ``None``; anything else
    unparseable raises ``ValueError``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if not raw:
        return None
    if len(raw) == 10:
        return date.fromisoformat(raw)
    return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()


def add_months(d: date, months: int) -> date:
    """Return ``d`` shifted by ``months`` calendar months, clamping the day."""
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(d.day, last_day))


def whole_months_between(start: date, end: date) -> int:
    """Number of complete calendar months from ``start`` up to ``end``."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if months > 0 and add_months(start, months) > end:
        months -= 1
    return max(months, 0)


def local_today(tz_name: Optional[str] = None) -> date:
    return datetime.now(ZoneInfo(tz_name or settings.local_tz)).date()


class DateRangeValidator:
    """Validates and normalizes a booking date range for a room.

    ``today`` is injectable so tests (and callers in other timezones) control
    what counts as the past.
    """

    def __init__(self, today: Optional[Callable[[], date]] = None) -> None:
        self._today = today or local_today

    def validate(self, room: Room, start_date: DateLike, end_date: DateLike = None) -> DateValidation:
        try:
            start = parse_date(start_date)
            end = parse_date(end_date)
        except ValueError:
            return DateValidation(ok=False, error="Please select valid check-in and check-out dates.")

        if start is None:
            return DateValidation(ok=False, error="Check-in date is required")
        if start < self._today():
            return DateValidation(ok=False, error="Check-in date cannot be in the past")

        if room.rental_type.period is RentalPeriod.MONTHLY:
            return self._validate_monthly(start, end)
        return self._validate_daily(start, end)

    @staticmethod
    def _validate_daily(start: date, end: Optional[date]) -> DateValidation:
        if end is None:
            return DateValidation(ok=False, start_date=start, error="Check-out date is required")
        if end <= start:
            return DateValidation(
                ok=False,
                start_date=start,
                end_date=end,
                error="Check-out date must be after check-in date",
            )
        return DateValidation(ok=True, start_date=start, end_date=end)

    @staticmethod
    def _validate_monthly(start: date, end: Optional[date]) -> DateValidation:
        try:
            months = 1
            if end is not None:
                months = max(1, whole_months_between(start, end))
            derived = add_months(start, months)
        except (ValueError, OverflowError):
            # Past date.max the calendar has no end date to offer.
            return DateValidation(ok=False, start_date=start, error="Please select valid check-in and check-out dates.")
        return DateValidation(ok=True, start_date=start, end_date=derived)
