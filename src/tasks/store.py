"""TaskStore — aiosqlite CRUD for recurring definitions and task instances."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from src.db import get_connection, to_iso
from src.tasks.models import (
    DEFINITION_ACTIVE,
    DEFINITION_COMPLETED,
    INSTANCE_COMPLETED,
    INSTANCE_STATUSES,
    InstancePage,
    RecurringDefinition,
    TaskInstance,
)

if TYPE_CHECKING:
    from pathlib import Path

    import aiosqlite

    from src.recurrence.rules import RecurrenceRule

logger = logging.getLogger(__name__)

_CREATE_DEFINITIONS = """
CREATE TABLE IF NOT EXISTS recurring_definitions (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    priority TEXT NOT NULL DEFAULT 'medium',
    assignee_id TEXT,
    labels TEXT NOT NULL DEFAULT '[]',
    subtasks TEXT NOT NULL DEFAULT '[]',
    attachments TEXT NOT NULL DEFAULT '[]',
    rule TEXT NOT NULL,
    end_date TEXT,
    max_occurrences INTEGER,
    next_due_date TEXT,
    occurrence_count INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'active',
    deleted INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

_CREATE_INSTANCES = """
CREATE TABLE IF NOT EXISTS task_instances (
    id TEXT PRIMARY KEY,
    parent_id TEXT,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    priority TEXT NOT NULL DEFAULT 'medium',
    assignee_id TEXT,
    created_by TEXT,
    labels TEXT NOT NULL DEFAULT '[]',
    subtasks TEXT NOT NULL DEFAULT '[]',
    attachments TEXT NOT NULL DEFAULT '[]',
    due_date TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    deleted INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
)
"""

_CREATE_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_definitions_due ON recurring_definitions (status, next_due_date)",
    "CREATE INDEX IF NOT EXISTS idx_instances_parent ON task_instances (parent_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_instances_due ON task_instances (status, due_date)",
)

_INSERT_INSTANCE = """
INSERT INTO task_instances
    (id, parent_id, title, description, priority, assignee_id, created_by,
     labels, subtasks, attachments, due_date, status, deleted, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


class TaskStore:
    """Persists recurring definitions and their task instances in SQLite.

    Singleton accessed via ``TaskStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    _instance: TaskStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    @classmethod
    def get(cls) -> TaskStore:
        """Return the shared TaskStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await db.execute(_CREATE_DEFINITIONS)
            await db.execute(_CREATE_INSTANCES)
            for statement in _CREATE_INDEXES:
                await db.execute(statement)
            await db.commit()
            self._initialised = True
        return db

    # -- Recurring definitions -------------------------------------------------

    async def add_definition(self, definition: RecurringDefinition) -> RecurringDefinition:
        """Insert a new recurring definition. Returns the same object."""
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO recurring_definitions
                    (id, owner_id, title, description, priority, assignee_id,
                     labels, subtasks, attachments, rule, end_date, max_occurrences,
                     next_due_date, occurrence_count, status, deleted,
                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                definition.to_row(),
            )
            await db.commit()
            logger.info("Added recurring definition: %s (%s)", definition.title, definition.id)
            return definition
        finally:
            await db.close()

    async def get_definition(self, definition_id: str) -> RecurringDefinition | None:
        """Fetch a definition by ID, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM recurring_definitions WHERE id = ?", (definition_id,)
            )
            row = await cursor.fetchone()
            return RecurringDefinition.from_row(row) if row else None
        finally:
            await db.close()

    async def list_due_definitions(self, now: datetime) -> list[RecurringDefinition]:
        """Return active definitions whose cursor has passed and whose series is not exhausted."""
        ts = to_iso(now)
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT * FROM recurring_definitions
                WHERE status = ?
                  AND deleted = 0
                  AND next_due_date IS NOT NULL
                  AND next_due_date <= ?
                  AND (end_date IS NULL OR end_date >= ?)
                  AND (max_occurrences IS NULL OR occurrence_count < max_occurrences)
                ORDER BY next_due_date
                """,
                (DEFINITION_ACTIVE, ts, ts),
            )
            rows = await cursor.fetchall()
            return [RecurringDefinition.from_row(row) for row in rows]
        finally:
            await db.close()

    async def materialize_occurrence(
        self,
        definition: RecurringDefinition,
        instance: TaskInstance,
        next_due_date: datetime | None,
        updated_at: datetime,
    ) -> bool:
        """Insert *instance* and advance the definition's cursor in one transaction.

        The cursor update is guarded by the cursor and count the caller read,
        so a concurrent or repeated pass that already advanced the series
        turns this into a no-op. Passing ``next_due_date=None`` retires the
        series. Returns True if the instance was created.
        """
        status = DEFINITION_ACTIVE if next_due_date is not None else DEFINITION_COMPLETED
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                UPDATE recurring_definitions
                SET next_due_date = ?, occurrence_count = occurrence_count + 1,
                    status = ?, updated_at = ?
                WHERE id = ? AND status = ? AND deleted = 0
                  AND next_due_date = ? AND occurrence_count = ?
                """,
                (
                    to_iso(next_due_date),
                    status,
                    to_iso(updated_at),
                    definition.id,
                    DEFINITION_ACTIVE,
                    to_iso(definition.next_due_date),
                    definition.occurrence_count,
                ),
            )
            if cursor.rowcount == 0:
                await db.rollback()
                logger.info("Definition %s already advanced; skipping", definition.id)
                return False
            await db.execute(_INSERT_INSTANCE, instance.to_row())
            await db.commit()
            return True
        except Exception:
            await db.rollback()
            raise
        finally:
            await db.close()

    async def update_definition_rule(
        self,
        definition_id: str,
        rule: RecurrenceRule,
        next_due_date: datetime | None,
        updated_at: datetime,
    ) -> bool:
        """Replace the rule and cursor; a cleared cursor retires the series."""
        status = DEFINITION_ACTIVE if next_due_date is not None else DEFINITION_COMPLETED
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                UPDATE recurring_definitions
                SET rule = ?, end_date = ?, max_occurrences = ?,
                    next_due_date = ?, status = ?, updated_at = ?
                WHERE id = ? AND deleted = 0
                """,
                (
                    rule.model_dump_json(),
                    to_iso(rule.end_date),
                    rule.max_occurrences,
                    to_iso(next_due_date),
                    status,
                    to_iso(updated_at),
                    definition_id,
                ),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def delete_definition(self, definition_id: str, deleted_at: datetime) -> bool:
        """Soft-delete a definition. Returns True if a row was updated."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "UPDATE recurring_definitions SET deleted = 1, updated_at = ? "
                "WHERE id = ? AND deleted = 0",
                (to_iso(deleted_at), definition_id),
            )
            await db.commit()
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info("Deleted recurring definition: %s", definition_id)
            return deleted
        finally:
            await db.close()

    # -- Task instances --------------------------------------------------------

    async def add_instance(self, instance: TaskInstance) -> TaskInstance:
        """Insert a standalone task instance."""
        db = await self._connect()
        try:
            await db.execute(_INSERT_INSTANCE, instance.to_row())
            await db.commit()
            return instance
        finally:
            await db.close()

    async def get_instance(self, instance_id: str) -> TaskInstance | None:
        """Fetch an instance by ID, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM task_instances WHERE id = ?", (instance_id,)
            )
            row = await cursor.fetchone()
            return TaskInstance.from_row(row) if row else None
        finally:
            await db.close()

    async def list_instances(
        self, parent_id: str, *, page: int = 1, limit: int = 10
    ) -> InstancePage:
        """Return one page of a definition's instances, newest first."""
        offset = (page - 1) * limit
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT * FROM task_instances
                WHERE parent_id = ? AND deleted = 0
                ORDER BY created_at DESC, due_date DESC
                LIMIT ? OFFSET ?
                """,
                (parent_id, limit, offset),
            )
            rows = await cursor.fetchall()
            cursor = await db.execute(
                "SELECT COUNT(*) FROM task_instances WHERE parent_id = ? AND deleted = 0",
                (parent_id,),
            )
            (total,) = await cursor.fetchone()
            return InstancePage(
                instances=[TaskInstance.from_row(row) for row in rows],
                page=page,
                limit=limit,
                total=total,
            )
        finally:
            await db.close()

    async def list_overdue_instances(self, now: datetime) -> list[TaskInstance]:
        """Return assigned, live instances past their due date and not completed."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT * FROM task_instances
                WHERE due_date IS NOT NULL
                  AND due_date < ?
                  AND status != ?
                  AND deleted = 0
                  AND assignee_id IS NOT NULL
                ORDER BY due_date
                """,
                (to_iso(now), INSTANCE_COMPLETED),
            )
            rows = await cursor.fetchall()
            return [TaskInstance.from_row(row) for row in rows]
        finally:
            await db.close()

    async def set_instance_status(self, instance_id: str, status: str) -> bool:
        """Update an instance's status. Returns True if a row was updated."""
        if status not in INSTANCE_STATUSES:
            msg = f"Unknown task status: {status}"
            raise ValueError(msg)
        db = await self._connect()
        try:
            cursor = await db.execute(
                "UPDATE task_instances SET status = ? WHERE id = ? AND deleted = 0",
                (status, instance_id),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()
