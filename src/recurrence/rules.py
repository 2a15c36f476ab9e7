"""RecurrenceRule — validated description of how often a task repeats."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator, model_validator

from src.db import ensure_utc


class Frequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class RecurrenceRule(BaseModel):
    """How a recurring definition repeats and when the series stops.

    Attributes:
        frequency: Period unit.
        interval: Number of periods between occurrences (>= 1).
        days_of_week: Weekdays (0=Monday) a weekly rule nominally targets.
            Carried for future use; the weekly step ignores it.
        day_of_month: Day forced onto monthly occurrences (1-31), clamped to
            the last day of short months.
        end_date: Occurrences after this instant are not generated.
        max_occurrences: Number of instances after which the series stops.
    """

    frequency: Frequency
    interval: int = Field(default=1, ge=1)
    days_of_week: set[int] | None = None
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    end_date: datetime | None = None
    max_occurrences: int | None = Field(default=None, ge=1)

    @field_validator("days_of_week")
    @classmethod
    def _check_weekdays(cls, value: set[int] | None) -> set[int] | None:
        if value is not None and any(day < 0 or day > 6 for day in value):
            msg = "days_of_week entries must be between 0 (Monday) and 6 (Sunday)"
            raise ValueError(msg)
        return value

    @field_validator("end_date")
    @classmethod
    def _normalise_end_date(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_consistency(self) -> RecurrenceRule:
        if self.end_date is not None and self.max_occurrences is not None:
            msg = "A series may be bounded by end_date or max_occurrences, not both"
            raise ValueError(msg)
        if self.days_of_week and self.frequency is not Frequency.WEEKLY:
            msg = "days_of_week only applies to weekly rules"
            raise ValueError(msg)
        if self.day_of_month is not None and self.frequency is not Frequency.MONTHLY:
            msg = "day_of_month only applies to monthly rules"
            raise ValueError(msg)
        return self

    def merged(self, patch: dict) -> RecurrenceRule:
        """Return a new, re-validated rule with *patch* applied."""
        data = self.model_dump()
        data.update(patch)
        return RecurrenceRule.model_validate(data)
