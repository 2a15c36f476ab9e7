"""NotificationStore — aiosqlite persistence and conditional state transitions."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from src.db import get_connection, to_iso
from src.notifications.models import (
    TERMINAL_STATUSES,
    Notification,
    NotificationKind,
    NotificationStatus,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    import aiosqlite

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS notifications (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    recipient TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    related_task_id TEXT,
    related_actor_id TEXT,
    scheduled_for TEXT NOT NULL,
    channels TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'pending',
    sent_at TEXT,
    email_sent INTEGER NOT NULL DEFAULT 0,
    read INTEGER NOT NULL DEFAULT 0,
    read_at TEXT,
    failure_reason TEXT,
    is_test INTEGER NOT NULL DEFAULT 0,
    cancellation_reason TEXT,
    cancelled_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

_CREATE_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_notifications_due ON notifications (status, scheduled_for)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_recipient ON notifications (recipient, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_task ON notifications (related_task_id, kind)",
)


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


class NotificationStore:
    """Persists notifications in SQLite.

    Every status change is a single ``UPDATE ... WHERE status = ?`` so that
    repeated or concurrent callers see at most one successful transition.

    Singleton accessed via ``NotificationStore.get()``.  Pass an explicit
    *db_path* for test isolation.
    """

    _instance: NotificationStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    @classmethod
    def get(cls) -> NotificationStore:
        """Return the shared NotificationStore instance."""
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
            await db.execute(_CREATE_TABLE)
            for statement in _CREATE_INDEXES:
                await db.execute(statement)
            await db.commit()
            self._initialised = True
        return db

    async def _transition(
        self,
        notification_id: str,
        expected: NotificationStatus,
        assignments: dict[str, object],
        updated_at: datetime,
    ) -> bool:
        """Apply *assignments* only if the row is still in *expected* status."""
        assignments = {**assignments, "updated_at": to_iso(updated_at)}
        columns = ", ".join(f"{name} = ?" for name in assignments)
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"UPDATE notifications SET {columns} WHERE id = ? AND status = ?",  # noqa: S608
                (*assignments.values(), notification_id, expected.value),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    # -- CRUD ------------------------------------------------------------------

    async def add(self, notification: Notification) -> Notification:
        """Insert a new notification. Returns the same object."""
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO notifications
                    (id, kind, recipient, title, message, related_task_id,
                     related_actor_id, scheduled_for, channels, status, sent_at,
                     email_sent, read, read_at, failure_reason, is_test,
                     cancellation_reason, cancelled_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                notification.to_row(),
            )
            await db.commit()
            logger.debug(
                "Stored notification %s (%s) for %s at %s",
                notification.id,
                notification.kind,
                notification.recipient,
                notification.scheduled_for.isoformat(),
            )
            return notification
        finally:
            await db.close()

    async def get_notification(self, notification_id: str) -> Notification | None:
        """Fetch a notification by ID, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM notifications WHERE id = ?", (notification_id,)
            )
            row = await cursor.fetchone()
            return Notification.from_row(row) if row else None
        finally:
            await db.close()

    async def list_due_pending(self, now: datetime) -> list[Notification]:
        """Return pending notifications whose scheduled time has passed."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT * FROM notifications
                WHERE status = ? AND scheduled_for <= ?
                ORDER BY scheduled_for
                """,
                (NotificationStatus.PENDING.value, to_iso(now)),
            )
            rows = await cursor.fetchall()
            return [Notification.from_row(row) for row in rows]
        finally:
            await db.close()

    async def list_for_task(
        self, task_id: str, *, status: NotificationStatus | None = None
    ) -> list[Notification]:
        """Return notifications related to a task, optionally filtered by status."""
        sql = "SELECT * FROM notifications WHERE related_task_id = ?"
        params: list = [task_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        db = await self._connect()
        try:
            cursor = await db.execute(sql + " ORDER BY scheduled_for", tuple(params))
            rows = await cursor.fetchall()
            return [Notification.from_row(row) for row in rows]
        finally:
            await db.close()

    async def exists_for_task_since(
        self, kind: NotificationKind, task_id: str, since: datetime | None
    ) -> bool:
        """Return True if a *kind* notification for *task_id* was created at or after *since*.

        ``since=None`` matches any creation time.
        """
        sql = "SELECT 1 FROM notifications WHERE kind = ? AND related_task_id = ?"
        params: list = [kind.value, task_id]
        if since is not None:
            sql += " AND created_at >= ?"
            params.append(to_iso(since))
        db = await self._connect()
        try:
            cursor = await db.execute(sql + " LIMIT 1", tuple(params))
            return await cursor.fetchone() is not None
        finally:
            await db.close()

    # -- State transitions -----------------------------------------------------

    async def mark_sent(
        self, notification_id: str, sent_at: datetime, *, email_sent: bool = False
    ) -> bool:
        """pending → sent."""
        return await self._transition(
            notification_id,
            NotificationStatus.PENDING,
            {
                "status": NotificationStatus.SENT.value,
                "sent_at": to_iso(sent_at),
                "email_sent": int(email_sent),
            },
            sent_at,
        )

    async def mark_failed(self, notification_id: str, reason: str, failed_at: datetime) -> bool:
        """pending → failed."""
        return await self._transition(
            notification_id,
            NotificationStatus.PENDING,
            {"status": NotificationStatus.FAILED.value, "failure_reason": reason},
            failed_at,
        )

    async def mark_delivered(self, notification_id: str, delivered_at: datetime) -> bool:
        """sent → delivered."""
        return await self._transition(
            notification_id,
            NotificationStatus.SENT,
            {"status": NotificationStatus.DELIVERED.value},
            delivered_at,
        )

    async def cancel(self, notification_id: str, reason: str, cancelled_at: datetime) -> bool:
        """pending → cancelled."""
        return await self._transition(
            notification_id,
            NotificationStatus.PENDING,
            {
                "status": NotificationStatus.CANCELLED.value,
                "cancellation_reason": reason,
                "cancelled_at": to_iso(cancelled_at),
            },
            cancelled_at,
        )

    async def cancel_pending_for_task(
        self,
        task_id: str,
        kinds: Iterable[NotificationKind],
        reason: str,
        cancelled_at: datetime,
    ) -> int:
        """Bulk pending → cancelled for one task. Returns the number cancelled."""
        kind_values = [NotificationKind(k).value for k in kinds]
        if not kind_values:
            return 0
        ts = to_iso(cancelled_at)
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"""
                UPDATE notifications
                SET status = ?, cancellation_reason = ?, cancelled_at = ?, updated_at = ?
                WHERE related_task_id = ? AND status = ?
                  AND kind IN ({_placeholders(kind_values)})
                """,  # noqa: S608
                (
                    NotificationStatus.CANCELLED.value,
                    reason,
                    ts,
                    ts,
                    task_id,
                    NotificationStatus.PENDING.value,
                    *kind_values,
                ),
            )
            await db.commit()
            return cursor.rowcount
        finally:
            await db.close()

    # -- Read-side -------------------------------------------------------------

    async def list_for_recipient(
        self,
        recipient: str,
        *,
        page: int,
        limit: int,
        unread_only: bool = False,
        kind: NotificationKind | None = None,
    ) -> tuple[list[Notification], int]:
        """Return one page of a recipient's notifications (newest first) and the total."""
        where = "recipient = ?"
        params: list = [recipient]
        if unread_only:
            where += " AND read = 0"
        if kind is not None:
            where += " AND kind = ?"
            params.append(NotificationKind(kind).value)
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT * FROM notifications WHERE {where} "  # noqa: S608
                "ORDER BY created_at DESC LIMIT ? OFFSET ?",
                (*params, limit, (page - 1) * limit),
            )
            rows = await cursor.fetchall()
            cursor = await db.execute(
                f"SELECT COUNT(*) FROM notifications WHERE {where}",  # noqa: S608
                tuple(params),
            )
            (total,) = await cursor.fetchone()
            return [Notification.from_row(row) for row in rows], total
        finally:
            await db.close()

    async def count_unread(self, recipient: str) -> int:
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM notifications WHERE recipient = ? AND read = 0",
                (recipient,),
            )
            (count,) = await cursor.fetchone()
            return count
        finally:
            await db.close()

    async def mark_read(self, notification_id: str, recipient: str, read_at: datetime) -> bool:
        """Set the read flag on a recipient's own notification, in any status."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                UPDATE notifications
                SET read = 1, read_at = COALESCE(read_at, ?), updated_at = ?
                WHERE id = ? AND recipient = ?
                """,
                (to_iso(read_at), to_iso(read_at), notification_id, recipient),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def mark_all_read(self, recipient: str, read_at: datetime) -> int:
        """Mark every unread notification of *recipient* as read. Returns the count."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                UPDATE notifications SET read = 1, read_at = ?, updated_at = ?
                WHERE recipient = ? AND read = 0
                """,
                (to_iso(read_at), to_iso(read_at), recipient),
            )
            await db.commit()
            return cursor.rowcount
        finally:
            await db.close()

    async def count_by(
        self, column: str, start: datetime, end: datetime
    ) -> dict[str, int]:
        """Group notifications created in ``[start, end]`` by *column*."""
        expressions = {
            "status": "status",
            "kind": "kind",
            "day": "substr(created_at, 1, 10)",
        }
        expr = expressions[column]
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {expr}, COUNT(*) FROM notifications "  # noqa: S608
                f"WHERE created_at >= ? AND created_at <= ? GROUP BY {expr} ORDER BY {expr}",
                (to_iso(start), to_iso(end)),
            )
            rows = await cursor.fetchall()
            return {key: count for key, count in rows}
        finally:
            await db.close()

    # -- Retention -------------------------------------------------------------

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        """Delete terminal notifications created before *cutoff*. Returns the count."""
        statuses = sorted(s.value for s in TERMINAL_STATUSES)
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"DELETE FROM notifications WHERE created_at < ? "  # noqa: S608
                f"AND status IN ({_placeholders(statuses)})",
                (to_iso(cutoff), *statuses),
            )
            await db.commit()
            return cursor.rowcount
        finally:
            await db.close()
