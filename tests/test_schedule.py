"""Tests for recurrence arithmetic and the due-date policy."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from household_ledger.engine import (
    ValidationError,
    calculate_next_occurrence,
    end_of_day,
    is_template_due,
    next_creation_after,
    resolve_timezone,
    select_due_date,
)
from household_ledger.models import RecurrenceUnit

HCM = ZoneInfo("Asia/Ho_Chi_Minh")


def local_end(year, month, day, tz=HCM):
    return datetime(year, month, day, 23, 59, 59, 999000, tzinfo=tz)


class TestCalculateNextOccurrence:
    """Tests for calculate_next_occurrence."""

    def test_daily(self):
        start = datetime(2024, 3, 15, 10, 0, tzinfo=HCM)
        assert calculate_next_occurrence(start, RecurrenceUnit.DAILY, 1) == local_end(2024, 3, 16)

    def test_weekly_accepts_string_unit(self):
        start = datetime(2024, 3, 15, 10, 0, tzinfo=HCM)
        assert calculate_next_occurrence(start, "weekly", 2) == local_end(2024, 3, 29)

    def test_monthly_clamps_to_leap_day(self):
        start = datetime(2024, 1, 31, 9, 0, tzinfo=HCM)
        assert calculate_next_occurrence(start, "monthly", 1) == local_end(2024, 2, 29)

    def test_monthly_clamps_to_month_end(self):
        start = datetime(2023, 1, 31, 9, 0, tzinfo=HCM)
        assert calculate_next_occurrence(start, "monthly", 1) == local_end(2023, 2, 28)

    def test_monthly_crosses_year(self):
        start = datetime(2023, 11, 30, tzinfo=HCM)
        assert calculate_next_occurrence(start, "monthly", 3) == local_end(2024, 2, 29)

    def test_plain_date_is_local_midnight(self):
        assert calculate_next_occurrence(date(2024, 3, 15), "daily", 1) == local_end(2024, 3, 16)

    def test_utc_input_uses_local_calendar_day(self):
        # 20:00 UTC on the 15th is already the 16th in Ho Chi Minh City
        start = datetime(2024, 3, 15, 20, 0, tzinfo=timezone.utc)
        assert calculate_next_occurrence(start, "daily", 1) == local_end(2024, 3, 17)

    def test_explicit_timezone(self):
        berlin = ZoneInfo("Europe/Berlin")
        start = datetime(2024, 3, 15, 20, 0, tzinfo=timezone.utc)
        result = calculate_next_occurrence(start, "daily", 1, "Europe/Berlin")
        assert result == local_end(2024, 3, 16, berlin)

    def test_result_is_end_of_day(self):
        result = calculate_next_occurrence(datetime(2024, 6, 1, 7, 30, tzinfo=HCM), "daily", 3)
        assert (result.hour, result.minute, result.second, result.microsecond) == (23, 59, 59, 999000)

    @pytest.mark.parametrize("interval", [0, 366, -1, True, 1.5])
    def test_rejects_bad_interval(self, interval):
        with pytest.raises(ValidationError):
            calculate_next_occurrence(date(2024, 1, 1), "daily", interval)

    def test_rejects_unknown_unit(self):
        with pytest.raises(ValidationError):
            calculate_next_occurrence(date(2024, 1, 1), "yearly", 1)


class TestTimezones:
    def test_default_timezone(self):
        assert resolve_timezone(None) == HCM

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            resolve_timezone("Mars/Olympus_Mons")

    def test_end_of_day_keeps_local_date(self):
        assert end_of_day(datetime(2024, 3, 15, 0, 0, tzinfo=HCM)) == local_end(2024, 3, 15)


class TestSelectDueDate:
    """Due-date policy for auto-created recurring chores."""

    def test_first_chore_due_end_of_today(self, now):
        assert select_due_date(None, now) == local_end(2024, 3, 15)

    def test_chore_already_created_today_due_tomorrow(self, now):
        earlier_today = now - timedelta(hours=2)
        assert select_due_date(earlier_today, now) == local_end(2024, 3, 16)

    def test_same_local_day_even_when_utc_day_differs(self, now):
        # 18:00 UTC on the 14th is 01:00 on the 15th locally
        last = datetime(2024, 3, 14, 18, 0, tzinfo=timezone.utc)
        assert select_due_date(last, now) == local_end(2024, 3, 16)

    def test_chore_from_earlier_day_due_end_of_today(self, now):
        # 16:00 UTC on the 14th is 23:00 on the 14th locally
        last = datetime(2024, 3, 14, 16, 0, tzinfo=timezone.utc)
        assert select_due_date(last, now) == local_end(2024, 3, 15)


class TestNextCreationAfter:
    def test_first_step_already_in_future(self, now):
        base = local_end(2024, 3, 14)
        assert next_creation_after(base, "daily", 1, now) == local_end(2024, 3, 15)

    def test_catches_up_past_now(self, now):
        base = date(2024, 3, 1)
        assert next_creation_after(base, "weekly", 1, now) == local_end(2024, 3, 15)

    def test_result_strictly_after_now(self, now):
        base = datetime(2024, 2, 1, tzinfo=HCM)
        result = next_creation_after(base, "daily", 2, now)
        assert result > now

    def test_very_stale_schedule_restarts_from_now(self, now):
        base = datetime(2020, 1, 1, tzinfo=HCM)
        assert next_creation_after(base, "daily", 1, now) == local_end(2024, 3, 16)


class TestIsTemplateDue:
    def test_unscheduled_template_is_due(self, now):
        assert is_template_due(None, now) is True

    def test_past_and_exact_are_due(self, now):
        assert is_template_due(now - timedelta(seconds=1), now) is True
        assert is_template_due(now, now) is True

    def test_future_is_not_due(self, now):
        assert is_template_due(now + timedelta(minutes=1), now) is False
