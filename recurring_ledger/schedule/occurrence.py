"""
Occurrence Date Resolution

Calendar arithmetic for monthly recurring rules.

Rules:
- A rule's day is clamped to the month's last day (31 -> Feb 28/29, Apr 30)
- Occurrences are always strictly after the reference date
- Nothing ever resolves into a month before the reference month
- Nothing ever resolves before the rule's start date
"""

import calendar
from datetime import date

from recurring_ledger.models.recurring import RecurringRule
from recurring_ledger.schedule.frequency import is_exhausted, remaining_units


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_day(year: int, month: int, day: int) -> int:
    """Clamp day to valid range for the given year/month."""
    return min(day, days_in_month(year, month))


def add_months(year: int, month: int, n: int) -> tuple[int, int]:
    """(year, month) shifted by n months."""
    index = year * 12 + (month - 1) + n
    return index // 12, index % 12 + 1


def month_index(year: int, month: int) -> int:
    """Monotonic month number, handy for before/after comparisons."""
    return year * 12 + (month - 1)


def occurrence_in_month(rule: RecurringRule, year: int, month: int) -> date:
    """The clamped posting date of `rule` in the given month."""
    return date(year, month, clamp_day(year, month, rule.day_of_month))


def next_occurrence(rule: RecurringRule, reference_date: date) -> date:
    """
    Earliest occurrence strictly after `reference_date`.

    Starts from the later of the reference month and the start month, and
    moves forward while the candidate is not in the future or falls before
    the start date. Terminates within two steps: any month after both the
    reference month and the start month qualifies.
    """
    if month_index(rule.start_date.year, rule.start_date.month) > month_index(
        reference_date.year, reference_date.month
    ):
        year, month = rule.start_date.year, rule.start_date.month
    else:
        year, month = reference_date.year, reference_date.month

    candidate = occurrence_in_month(rule, year, month)
    while candidate <= reference_date or candidate < rule.start_date:
        year, month = add_months(year, month, 1)
        candidate = occurrence_in_month(rule, year, month)
    return candidate


def upcoming_occurrences(
    rule: RecurringRule,
    n: int,
    reference_date: date,
    count_current_month: bool = False,
) -> list[date]:
    """
    The next `n` occurrences after `reference_date`, clamped month by month.

    Inactive or exhausted rules project nothing. Counted policies project at
    most their remaining units; an occurrence in the reference month uses
    no unit unless `count_current_month` is set, matching how postings are
    counted.
    """
    if n <= 0 or not rule.is_active or is_exhausted(rule.policy):
        return []

    units = remaining_units(rule.policy)
    current = (reference_date.year, reference_date.month)

    first = next_occurrence(rule, reference_date)
    dates = []
    offset = 0
    while len(dates) < n:
        year, month = add_months(first.year, first.month, offset)
        offset += 1
        if units is not None and (count_current_month or (year, month) != current):
            if units == 0:
                break
            units -= 1
        dates.append(occurrence_in_month(rule, year, month))
    return dates
