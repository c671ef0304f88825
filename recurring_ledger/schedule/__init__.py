"""Schedule package: frequency policies and occurrence dates."""

from recurring_ledger.schedule.frequency import (
    advance,
    apply_advance,
    describe,
    is_exhausted,
    remaining_units,
)
from recurring_ledger.schedule.occurrence import (
    add_months,
    clamp_day,
    days_in_month,
    month_index,
    next_occurrence,
    occurrence_in_month,
    upcoming_occurrences,
)

__all__ = [
    # Frequency policy
    "advance",
    "apply_advance",
    "describe",
    "is_exhausted",
    "remaining_units",
    # Occurrence dates
    "add_months",
    "clamp_day",
    "days_in_month",
    "month_index",
    "next_occurrence",
    "occurrence_in_month",
    "upcoming_occurrences",
]
