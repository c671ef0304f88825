"""Tests for occurrence date resolution and day clamping."""

from datetime import date

from recurring_ledger.models.recurring import FixedCount, MonthlyDuration
from recurring_ledger.schedule import (
    add_months,
    clamp_day,
    days_in_month,
    next_occurrence,
    occurrence_in_month,
    upcoming_occurrences,
)


class TestCalendarHelpers:
    """Tests for month arithmetic helpers."""

    def test_days_in_month(self):
        assert days_in_month(2024, 2) == 29
        assert days_in_month(2023, 2) == 28
        assert days_in_month(2024, 4) == 30

    def test_clamp_day(self):
        assert clamp_day(2024, 2, 31) == 29
        assert clamp_day(2024, 4, 31) == 30
        assert clamp_day(2024, 1, 31) == 31
        assert clamp_day(2024, 6, 15) == 15

    def test_add_months_crosses_years(self):
        assert add_months(2024, 12, 1) == (2025, 1)
        assert add_months(2024, 1, -1) == (2023, 12)
        assert add_months(2024, 5, 0) == (2024, 5)
        assert add_months(2024, 11, 14) == (2026, 1)


class TestOccurrenceInMonth:
    """Tests for day-of-month clamping per target month."""

    def test_day_31_in_february(self, rule_builder):
        """Test day 31 resolves to Feb 29 in a leap year and Feb 28 otherwise."""
        rule = rule_builder(day_of_month=31)
        assert occurrence_in_month(rule, 2024, 2) == date(2024, 2, 29)
        assert occurrence_in_month(rule, 2023, 2) == date(2023, 2, 28)

    def test_day_31_in_april(self, rule_builder):
        rule = rule_builder(day_of_month=31)
        assert occurrence_in_month(rule, 2024, 4) == date(2024, 4, 30)


class TestNextOccurrence:
    """Tests for next_occurrence."""

    def test_later_this_month(self, rule_builder):
        rule = rule_builder(day_of_month=20)
        assert next_occurrence(rule, date(2024, 1, 15)) == date(2024, 1, 20)

    def test_strictly_after_reference(self, rule_builder):
        """Test the reference day itself is not an occurrence."""
        rule = rule_builder(day_of_month=15)
        assert next_occurrence(rule, date(2024, 1, 15)) == date(2024, 2, 15)

    def test_day_passed_moves_to_next_month(self, rule_builder):
        rule = rule_builder(day_of_month=10)
        assert next_occurrence(rule, date(2024, 1, 15)) == date(2024, 2, 10)

    def test_year_rollover(self, rule_builder):
        rule = rule_builder(day_of_month=15)
        assert next_occurrence(rule, date(2024, 12, 20)) == date(2025, 1, 15)

    def test_clamped_next_month(self, rule_builder):
        rule = rule_builder(day_of_month=31)
        assert next_occurrence(rule, date(2024, 1, 31)) == date(2024, 2, 29)

    def test_future_start_month(self, rule_builder):
        """Test nothing resolves before the start month."""
        rule = rule_builder(day_of_month=25, start_date=date(2024, 6, 1))
        assert next_occurrence(rule, date(2024, 1, 1)) == date(2024, 6, 25)

    def test_never_before_start_date(self, rule_builder):
        """Test a start date after the day in the start month skips that month."""
        rule = rule_builder(day_of_month=10, start_date=date(2024, 6, 20))
        assert next_occurrence(rule, date(2024, 1, 1)) == date(2024, 7, 10)


class TestUpcomingOccurrences:
    """Tests for upcoming_occurrences."""

    def test_each_month_clamped_independently(self, rule_builder):
        """Test day 31 gives Jan 31, Feb 29, Mar 31, Apr 30."""
        rule = rule_builder(day_of_month=31)
        assert upcoming_occurrences(rule, 4, date(2024, 1, 1)) == [
            date(2024, 1, 31),
            date(2024, 2, 29),
            date(2024, 3, 31),
            date(2024, 4, 30),
        ]

    def test_crosses_year_boundary(self, rule_builder):
        rule = rule_builder(day_of_month=5)
        assert upcoming_occurrences(rule, 3, date(2024, 11, 10)) == [
            date(2024, 12, 5),
            date(2025, 1, 5),
            date(2025, 2, 5),
        ]

    def test_inactive_rule_projects_nothing(self, rule_builder):
        rule = rule_builder(is_active=False)
        assert upcoming_occurrences(rule, 5, date(2024, 1, 1)) == []

    def test_exhausted_rule_projects_nothing(self, rule_builder):
        rule = rule_builder(policy=FixedCount(remaining=0))
        assert upcoming_occurrences(rule, 5, date(2024, 1, 1)) == []

    def test_limited_by_remaining_units(self, rule_builder):
        """Test counted policies project at most their remaining units."""
        assert len(upcoming_occurrences(
            rule_builder(policy=FixedCount(remaining=2)), 12, date(2024, 1, 1),
            count_current_month=True,
        )) == 2
        assert len(upcoming_occurrences(
            rule_builder(policy=MonthlyDuration(remaining_months=3)), 12, date(2024, 1, 1),
            count_current_month=True,
        )) == 3

    def test_reference_month_uses_no_unit(self, rule_builder):
        """Test the current-month occurrence is projected on top of the units."""
        rule = rule_builder(policy=FixedCount(remaining=1))
        assert upcoming_occurrences(rule, 12, date(2024, 1, 15)) == [
            date(2024, 1, 20),
            date(2024, 2, 20),
        ]

    def test_later_months_all_counted(self, rule_builder):
        rule = rule_builder(policy=FixedCount(remaining=1))
        assert upcoming_occurrences(rule, 12, date(2024, 1, 25)) == [date(2024, 2, 20)]

    def test_zero_requested(self, rule_builder):
        assert upcoming_occurrences(rule_builder(), 0, date(2024, 1, 1)) == []
