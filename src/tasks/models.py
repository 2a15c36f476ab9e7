"""RecurringDefinition and TaskInstance data models."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from src.db import from_iso, to_iso
from src.recurrence.rules import RecurrenceRule

DEFINITION_ACTIVE = "active"
DEFINITION_COMPLETED = "completed"

INSTANCE_PENDING = "pending"
INSTANCE_IN_PROGRESS = "in_progress"
INSTANCE_COMPLETED = "completed"
INSTANCE_STATUSES = frozenset({INSTANCE_PENDING, INSTANCE_IN_PROGRESS, INSTANCE_COMPLETED})


@dataclass
class Subtask:
    title: str
    status: str = INSTANCE_PENDING

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "status": self.status}


def _subtasks_from_json(raw: str | None) -> list[Subtask]:
    return [Subtask(**item) for item in json.loads(raw or "[]")]


def _subtasks_to_json(subtasks: list[Subtask]) -> str:
    return json.dumps([s.to_dict() for s in subtasks])


@dataclass
class RecurringDefinition:
    """A template task plus the recurrence cursor that drives generation.

    Attributes:
        id: Unique identifier (UUID hex).
        owner_id: User who created the recurring task.
        title: Template title copied onto each instance.
        rule: The validated recurrence rule.
        next_due_date: Due date of the next instance to generate. Cleared
            when the series is retired.
        occurrence_count: Number of instances generated so far.
        status: ``"active"`` or ``"completed"`` (series retired).
        deleted: Soft-delete flag; deleted definitions are never generated.
    """

    id: str
    owner_id: str
    title: str
    rule: RecurrenceRule
    next_due_date: datetime | None
    description: str = ""
    priority: str = "medium"
    assignee_id: str | None = None
    labels: list[str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    attachments: list[str] = field(default_factory=list)
    occurrence_count: int = 0
    status: str = DEFINITION_ACTIVE
    deleted: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.created_at is None:
            self.created_at = datetime.now(UTC)
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_active(self) -> bool:
        return self.status == DEFINITION_ACTIVE and not self.deleted

    @property
    def reached_max_occurrences(self) -> bool:
        limit = self.rule.max_occurrences
        return limit is not None and self.occurrence_count >= limit

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``recurring_definitions`` column order."""
        return (
            self.id,
            self.owner_id,
            self.title,
            self.description,
            self.priority,
            self.assignee_id,
            json.dumps(self.labels),
            _subtasks_to_json(self.subtasks),
            json.dumps(self.attachments),
            self.rule.model_dump_json(),
            to_iso(self.rule.end_date),
            self.rule.max_occurrences,
            to_iso(self.next_due_date),
            self.occurrence_count,
            self.status,
            int(self.deleted),
            to_iso(self.created_at),
            to_iso(self.updated_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> RecurringDefinition:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            owner_id=row[1],
            title=row[2],
            description=row[3] or "",
            priority=row[4],
            assignee_id=row[5],
            labels=json.loads(row[6] or "[]"),
            subtasks=_subtasks_from_json(row[7]),
            attachments=json.loads(row[8] or "[]"),
            rule=RecurrenceRule.model_validate_json(row[9]),
            # row[10], row[11] mirror rule bounds for SQL filtering
            next_due_date=from_iso(row[12]),
            occurrence_count=row[13],
            status=row[14],
            deleted=bool(row[15]),
            created_at=from_iso(row[16]),
            updated_at=from_iso(row[17]),
        )


@dataclass
class TaskInstance:
    """A concrete, non-recurring task materialized from a definition."""

    id: str
    title: str
    due_date: datetime | None
    parent_id: str | None = None
    description: str = ""
    priority: str = "medium"
    assignee_id: str | None = None
    created_by: str | None = None
    labels: list[str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    attachments: list[str] = field(default_factory=list)
    status: str = INSTANCE_PENDING
    deleted: bool = False
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.created_at is None:
            self.created_at = datetime.now(UTC)

    @property
    def is_completed(self) -> bool:
        return self.status == INSTANCE_COMPLETED

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``task_instances`` column order."""
        return (
            self.id,
            self.parent_id,
            self.title,
            self.description,
            self.priority,
            self.assignee_id,
            self.created_by,
            json.dumps(self.labels),
            _subtasks_to_json(self.subtasks),
            json.dumps(self.attachments),
            to_iso(self.due_date),
            self.status,
            int(self.deleted),
            to_iso(self.created_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> TaskInstance:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            parent_id=row[1],
            title=row[2],
            description=row[3] or "",
            priority=row[4],
            assignee_id=row[5],
            created_by=row[6],
            labels=json.loads(row[7] or "[]"),
            subtasks=_subtasks_from_json(row[8]),
            attachments=json.loads(row[9] or "[]"),
            due_date=from_iso(row[10]),
            status=row[11],
            deleted=bool(row[12]),
            created_at=from_iso(row[13]),
        )


def build_instance(
    definition: RecurringDefinition, due_date: datetime, created_at: datetime | None = None
) -> TaskInstance:
    """Materialize a task instance from *definition* due at *due_date*.

    Template fields are copied; subtasks are reset to pending.
    """
    return TaskInstance(
        id=make_id(),
        parent_id=definition.id,
        title=definition.title,
        description=definition.description,
        priority=definition.priority,
        assignee_id=definition.assignee_id,
        created_by=definition.owner_id,
        labels=list(definition.labels),
        subtasks=[Subtask(title=s.title) for s in definition.subtasks],
        attachments=list(definition.attachments),
        due_date=due_date,
        created_at=created_at,
    )


@dataclass
class InstancePage:
    instances: list[TaskInstance]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0

    def pagination(self) -> dict[str, Any]:
        return {"current": self.page, "pages": self.pages, "total": self.total, "limit": self.limit}


def make_id() -> str:
    """Generate a new record ID."""
    return uuid.uuid4().hex
