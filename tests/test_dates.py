"""
Tests for rusunawa.dates: daily and monthly date rules.
"""

from datetime import date, datetime

import pytest

from rusunawa.dates import (
    DateRangeValidator,
    add_months,
    parse_date,
    whole_months_between,
)
from rusunawa.normalize import parse_room
from tests.conftest import TODAY
from tests.payloads import room_payload


DAILY = parse_room(room_payload(rental_type="harian"))
MONTHLY = parse_room(room_payload(rental_type="bulanan"))


class TestParseDate:
    def test_accepts_date_and_datetime(self):
        assert parse_date(date(2025, 3, 10)) == date(2025, 3, 10)
        assert parse_date(datetime(2025, 3, 10, 14, 30)) == date(2025, 3, 10)

    def test_accepts_iso_strings(self):
        assert parse_date("2025-03-10") == date(2025, 3, 10)
        assert parse_date("2025-03-10T08:00:00Z") == date(2025, 3, 10)

    def test_empty_is_none(self):
        assert parse_date(None) is None
        assert parse_date("  ") is None

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_date("next tuesday")


class TestMonthArithmetic:
    @pytest.mark.parametrize("start,expected", [
        (date(2025, 1, 31), date(2025, 2, 28)),
        (date(2024, 1, 31), date(2024, 2, 29)),
        (date(2025, 3, 31), date(2025, 4, 30)),
        (date(2025, 12, 15), date(2026, 1, 15)),
        (date(2025, 5, 1), date(2025, 6, 1)),
    ])
    def test_add_one_month_clamps_day(self, start, expected):
        assert add_months(start, 1) == expected

    def test_add_several_months(self):
        assert add_months(date(2025, 11, 30), 3) == date(2026, 2, 28)

    def test_whole_months_between(self):
        assert whole_months_between(date(2025, 1, 15), date(2025, 4, 14)) == 2
        assert whole_months_between(date(2025, 1, 15), date(2025, 4, 15)) == 3
        assert whole_months_between(date(2025, 1, 31), date(2025, 2, 28)) == 1
        assert whole_months_between(date(2025, 4, 1), date(2025, 3, 1)) == 0


class TestDailyRules:
    def setup_method(self):
        self.validator = DateRangeValidator(today=lambda: TODAY)

    def test_valid_range(self):
        result = self.validator.validate(DAILY, "2025-03-12", "2025-03-15")
        assert result.ok
        assert result.start_date == date(2025, 3, 12)
        assert result.end_date == date(2025, 3, 15)
        assert result.error is None

    @pytest.mark.parametrize("end", ["2025-03-12", "2025-03-11"])
    def test_end_not_after_start_fails(self, end):
        result = self.validator.validate(DAILY, "2025-03-12", end)
        assert not result.ok
        assert result.error == "Check-out date must be after check-in date"

    def test_missing_end_fails(self):
        result = self.validator.validate(DAILY, "2025-03-12")
        assert not result.ok
        assert "Check-out" in result.error

    def test_start_in_past_fails(self):
        result = self.validator.validate(DAILY, "2025-03-09", "2025-03-12")
        assert not result.ok
        assert "past" in result.error

    def test_start_today_allowed(self):
        assert self.validator.validate(DAILY, TODAY, date(2025, 3, 11)).ok

    def test_missing_start_fails(self):
        result = self.validator.validate(DAILY, None, "2025-03-12")
        assert not result.ok
        assert result.error == "Check-in date is required"

    def test_unparseable_input_fails_inline(self):
        result = self.validator.validate(DAILY, "soon", "later")
        assert not result.ok
        assert result.error


class TestMonthlyRules:
    def setup_method(self):
        self.validator = DateRangeValidator(today=lambda: date(2024, 1, 1))

    @pytest.mark.parametrize("start,expected", [
        (date(2024, 1, 31), date(2024, 2, 29)),
        (date(2025, 1, 31), date(2025, 2, 28)),
        (date(2024, 8, 31), date(2024, 9, 30)),
        (date(2024, 2, 10), date(2024, 3, 10)),
    ])
    def test_end_derived_one_month_later(self, start, expected):
        result = self.validator.validate(MONTHLY, start)
        assert result.ok
        assert result.end_date == expected

    def test_short_end_replaced_with_one_month(self):
        result = self.validator.validate(MONTHLY, "2024-03-10", "2024-03-20")
        assert result.ok
        assert result.end_date == date(2024, 4, 10)

    def test_long_end_snapped_to_whole_months(self):
        result = self.validator.validate(MONTHLY, "2024-03-10", "2024-06-25")
        assert result.ok
        assert result.end_date == date(2024, 6, 10)

    def test_past_start_still_rejected(self):
        result = self.validator.validate(MONTHLY, "2023-12-31")
        assert not result.ok

    def test_start_at_end_of_calendar_fails_inline(self):
        result = self.validator.validate(MONTHLY, "9999-12-15")
        assert not result.ok
        assert result.start_date == date(9999, 12, 15)
        assert result.end_date is None
        assert result.error == "Please select valid check-in and check-out dates."

    def test_last_whole_month_before_calendar_end_still_valid(self):
        result = self.validator.validate(MONTHLY, "9999-11-15", "9999-12-31")
        assert result.ok
        assert result.end_date == date(9999, 12, 15)
        assert not self.validator.validate(MONTHLY, "9999-12-01", "9999-12-31").ok
