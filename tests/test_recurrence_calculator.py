"""Tests for next_occurrence."""

from datetime import UTC, datetime

from src.recurrence.calculator import next_occurrence
from src.recurrence.rules import Frequency, RecurrenceRule


def _dt(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestSteps:
    def test_daily(self):
        rule = RecurrenceRule(frequency="daily")
        assert next_occurrence(rule, _dt(2024, 1, 1, 9)) == _dt(2024, 1, 2, 9)

    def test_daily_every_other_day(self):
        rule = RecurrenceRule(frequency="daily", interval=2)
        assert next_occurrence(rule, _dt(2024, 1, 1)) == _dt(2024, 1, 3)

    def test_daily_with_interval(self):
        rule = RecurrenceRule(frequency="daily", interval=3)
        assert next_occurrence(rule, _dt(2024, 1, 30, 9)) == _dt(2024, 2, 2, 9)

    def test_weekly(self):
        rule = RecurrenceRule(frequency="weekly")
        assert next_occurrence(rule, _dt(2024, 1, 1, 9)) == _dt(2024, 1, 8, 9)

    def test_weekly_ignores_days_of_week(self):
        rule = RecurrenceRule(frequency="weekly", interval=2, days_of_week={2, 4})
        assert next_occurrence(rule, _dt(2024, 1, 1, 9)) == _dt(2024, 1, 15, 9)

    def test_monthly_keeps_day(self):
        rule = RecurrenceRule(frequency="monthly")
        assert next_occurrence(rule, _dt(2024, 1, 15, 9)) == _dt(2024, 2, 15, 9)

    def test_monthly_forces_day_of_month(self):
        rule = RecurrenceRule(frequency="monthly", day_of_month=20)
        assert next_occurrence(rule, _dt(2024, 1, 5, 9)) == _dt(2024, 2, 20, 9)

    def test_yearly(self):
        rule = RecurrenceRule(frequency="yearly")
        assert next_occurrence(rule, _dt(2024, 3, 1)) == _dt(2025, 3, 1)


class TestClamping:
    def test_month_end_clamps_in_leap_february(self):
        rule = RecurrenceRule(frequency="monthly")
        assert next_occurrence(rule, _dt(2024, 1, 31, 9)) == _dt(2024, 2, 29, 9)

    def test_day_31_clamps_in_short_month(self):
        rule = RecurrenceRule(frequency="monthly", day_of_month=31)
        assert next_occurrence(rule, _dt(2023, 1, 31)) == _dt(2023, 2, 28)
        assert next_occurrence(rule, _dt(2023, 3, 31)) == _dt(2023, 4, 30)

    def test_clamped_day_recovers_next_month(self):
        rule = RecurrenceRule(frequency="monthly", day_of_month=31)
        assert next_occurrence(rule, _dt(2023, 2, 28)) == _dt(2023, 3, 31)

    def test_leap_day_yearly(self):
        rule = RecurrenceRule(frequency="yearly")
        assert next_occurrence(rule, _dt(2024, 2, 29)) == _dt(2025, 2, 28)


class TestTermination:
    def test_after_end_date_returns_none(self):
        rule = RecurrenceRule(frequency="daily", end_date=_dt(2024, 1, 5))
        assert next_occurrence(rule, _dt(2024, 1, 5)) is None

    def test_on_end_date_is_allowed(self):
        rule = RecurrenceRule(frequency="daily", end_date=_dt(2024, 1, 5))
        assert next_occurrence(rule, _dt(2024, 1, 4)) == _dt(2024, 1, 5)

    def test_unknown_frequency_returns_none(self):
        rule = RecurrenceRule.model_construct(frequency="hourly", interval=1, end_date=None)
        assert next_occurrence(rule, _dt(2024, 1, 1)) is None

    def test_result_is_strictly_after_anchor(self):
        anchor = _dt(2024, 6, 30, 23, 59)
        for freq in Frequency:
            assert next_occurrence(RecurrenceRule(frequency=freq), anchor) > anchor
