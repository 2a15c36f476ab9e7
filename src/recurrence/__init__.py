"""Recurrence rules and next-occurrence calculation."""

from src.recurrence.calculator import next_occurrence
from src.recurrence.rules import Frequency, RecurrenceRule

__all__ = [
    "Frequency",
    "RecurrenceRule",
    "next_occurrence",
]
