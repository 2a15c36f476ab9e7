"""Next-occurrence arithmetic for recurrence rules."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from dateutil.relativedelta import relativedelta

from src.recurrence.rules import Frequency

if TYPE_CHECKING:
    from src.recurrence.rules import RecurrenceRule


def next_occurrence(rule: RecurrenceRule, anchor: datetime) -> datetime | None:
    """Return the occurrence following *anchor*, or None when the series ends.

    Month and year steps never produce an invalid date: a day that does not
    exist in the target month is clamped to that month's last day, so a
    monthly rule with ``day_of_month=31`` lands on Feb 28/29 in February.

    ``None`` is returned when the result falls after ``rule.end_date`` or the
    frequency is not recognised. ``max_occurrences`` is not checked here
    since it depends on how many instances already exist.
    """
    step = rule.interval or 1

    if rule.frequency == Frequency.DAILY:
        candidate = anchor + timedelta(days=step)
    elif rule.frequency == Frequency.WEEKLY:
        candidate = anchor + timedelta(weeks=step)
    elif rule.frequency == Frequency.MONTHLY:
        # relativedelta clamps an absolute day to the month's length
        candidate = anchor + relativedelta(months=step, day=rule.day_of_month)
    elif rule.frequency == Frequency.YEARLY:
        candidate = anchor + relativedelta(years=step)
    else:
        return None

    if rule.end_date is not None and candidate > rule.end_date:
        return None
    return candidate
