"""RecurringTaskGenerator — materializes due occurrences of recurring tasks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from src.clock import SystemClock
from src.db import ensure_utc
from src.recurrence.calculator import next_occurrence
from src.recurrence.rules import RecurrenceRule
from src.tasks.models import RecurringDefinition, Subtask, build_instance, make_id

if TYPE_CHECKING:
    from datetime import datetime

    from src.clock import Clock
    from src.tasks.models import InstancePage, TaskInstance
    from src.tasks.store import TaskStore

logger = logging.getLogger(__name__)


class RecurringDefinitionNotFoundError(LookupError):
    """Raised when a recurring definition does not exist or was deleted."""


class RecurringTaskGenerator:
    """Scans recurring definitions and creates the task instances that are due.

    Args:
        store: TaskStore holding definitions and instances.
        clock: Time source (defaults to the system clock).
    """

    def __init__(self, store: TaskStore, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()

    async def create_definition(
        self,
        *,
        owner_id: str,
        title: str,
        rule: RecurrenceRule | dict[str, Any],
        due_date: datetime,
        description: str = "",
        priority: str = "medium",
        assignee_id: str | None = None,
        labels: list[str] | None = None,
        subtasks: list[str] | None = None,
        attachments: list[str] | None = None,
    ) -> RecurringDefinition:
        """Validate the rule and persist a new recurring definition.

        The first instance is due at *due_date*. Invalid rules raise
        ``pydantic.ValidationError`` and never reach the store.
        """
        if not isinstance(rule, RecurrenceRule):
            rule = RecurrenceRule.model_validate(rule)
        definition = RecurringDefinition(
            id=make_id(),
            owner_id=owner_id,
            title=title,
            rule=rule,
            next_due_date=ensure_utc(due_date),
            description=description,
            priority=priority,
            assignee_id=assignee_id,
            labels=list(labels or []),
            subtasks=[Subtask(title=t) for t in subtasks or []],
            attachments=list(attachments or []),
            created_at=self._clock.now(),
        )
        return await self._store.add_definition(definition)

    async def generate_due(self) -> list[TaskInstance]:
        """Create one instance for every definition whose cursor has passed.

        A failure on one definition is logged and leaves its cursor where it
        was, so it is retried on the next pass.
        """
        now = self._clock.now()
        definitions = await self._store.list_due_definitions(now)
        created: list[TaskInstance] = []

        for definition in definitions:
            try:
                instance = await self._materialize(definition)
            except Exception:
                logger.exception(
                    "Failed to generate instance for recurring definition %s",
                    definition.id,
                )
                continue
            if instance is not None:
                created.append(instance)

        if created:
            logger.info("Generated %d recurring task instance(s)", len(created))
        return created

    async def _materialize(self, definition: RecurringDefinition) -> TaskInstance | None:
        due_date = definition.next_due_date
        if due_date is None or not definition.is_active or definition.reached_max_occurrences:
            return None

        now = self._clock.now()
        instance = build_instance(definition, due_date, now)
        next_due = next_occurrence(definition.rule, due_date)
        limit = definition.rule.max_occurrences
        if limit is not None and definition.occurrence_count + 1 >= limit:
            next_due = None

        created = await self._store.materialize_occurrence(definition, instance, next_due, now)
        if not created:
            return None

        if next_due is None:
            logger.info(
                "Recurring series finished: %s (%s) after %d occurrence(s)",
                definition.title,
                definition.id,
                definition.occurrence_count + 1,
            )
        else:
            logger.info(
                "Created instance %s of '%s' due %s; next due %s",
                instance.id,
                definition.title,
                due_date.isoformat(),
                next_due.isoformat(),
            )
        return instance

    async def update_recurrence_rule(
        self, definition_id: str, patch: dict[str, Any]
    ) -> RecurringDefinition:
        """Merge *patch* into a definition's rule.

        When the frequency or interval changes, the cursor is recomputed from
        the current ``next_due_date`` (not from now) so the cadence continues
        from the already scheduled occurrence.
        """
        definition = await self._store.get_definition(definition_id)
        if definition is None or definition.deleted:
            msg = f"Recurring definition not found: {definition_id}"
            raise RecurringDefinitionNotFoundError(msg)

        rule = definition.rule.merged(patch)
        next_due = definition.next_due_date
        current = definition.rule
        cadence_changed = rule.frequency != current.frequency or rule.interval != current.interval
        if cadence_changed and next_due is not None:
            next_due = next_occurrence(rule, next_due)

        await self._store.update_definition_rule(
            definition_id, rule, next_due, self._clock.now()
        )
        logger.info("Updated recurrence rule for %s: %s", definition_id, sorted(patch))

        updated = await self._store.get_definition(definition_id)
        if updated is None:
            msg = f"Recurring definition not found: {definition_id}"
            raise RecurringDefinitionNotFoundError(msg)
        return updated

    async def get_task_instances(
        self, parent_id: str, *, page: int = 1, limit: int = 10
    ) -> InstancePage:
        """Return a page of instances generated from *parent_id*."""
        return await self._store.list_instances(parent_id, page=max(page, 1), limit=max(limit, 1))
