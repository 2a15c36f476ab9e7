"""PreferenceStore — get-or-create persistence for notification preferences."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from src.db import get_connection, to_iso
from src.notifications.preferences import NotificationPreference, PreferenceUpdate

if TYPE_CHECKING:
    from pathlib import Path

    import aiosqlite

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS notification_preferences (
    user_id TEXT PRIMARY KEY,
    document TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class PreferenceStore:
    """Persists one preference document per recipient as JSON.

    Singleton accessed via ``PreferenceStore.get()``.  Pass an explicit
    *db_path* for test isolation.
    """

    _instance: PreferenceStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    @classmethod
    def get(cls) -> PreferenceStore:
        """Return the shared PreferenceStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    async def _connect(self) -> aiosqlite.Connection:
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    async def get_or_create(
        self, user_id: str, *, now: datetime | None = None
    ) -> NotificationPreference:
        """Return the recipient's preferences, creating defaults on first access.

        *now* stamps a newly created row (defaults to the current UTC time).
        """
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT document FROM notification_preferences WHERE user_id = ?",
                (user_id,),
            )
            row = await cursor.fetchone()
            if row:
                return NotificationPreference.model_validate_json(row[0])

            prefs = NotificationPreference(user_id=user_id)
            stamp = to_iso(now or datetime.now(UTC))
            # Concurrent first access: the first insert wins, the re-read below returns it
            await db.execute(
                """
                INSERT OR IGNORE INTO notification_preferences
                    (user_id, document, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, prefs.model_dump_json(), stamp, stamp),
            )
            await db.commit()
            cursor = await db.execute(
                "SELECT document FROM notification_preferences WHERE user_id = ?",
                (user_id,),
            )
            row = await cursor.fetchone()
            logger.info("Created default notification preferences for %s", user_id)
            return NotificationPreference.model_validate_json(row[0])
        finally:
            await db.close()

    async def update(
        self,
        user_id: str,
        patch: PreferenceUpdate | dict[str, Any],
        *,
        now: datetime | None = None,
    ) -> NotificationPreference:
        """Validate *patch*, merge it into the stored document, and persist it.

        Raises ``pydantic.ValidationError`` for malformed patches.
        """
        if not isinstance(patch, PreferenceUpdate):
            patch = PreferenceUpdate.model_validate(patch)
        stamp = now or datetime.now(UTC)
        current = await self.get_or_create(user_id, now=stamp)
        updated = current.apply(patch)

        db = await self._connect()
        try:
            await db.execute(
                "UPDATE notification_preferences SET document = ?, updated_at = ? "
                "WHERE user_id = ?",
                (updated.model_dump_json(), to_iso(stamp), user_id),
            )
            await db.commit()
            logger.info("Updated notification preferences for %s", user_id)
            return updated
        finally:
            await db.close()

    async def get_email_address(self, user_id: str) -> str | None:
        """Return the recipient's configured email address, if any."""
        prefs = await self.get_or_create(user_id)
        return prefs.channels.email.address
