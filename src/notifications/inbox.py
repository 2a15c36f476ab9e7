"""NotificationInbox — the recipient-facing read side of notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from src.clock import SystemClock
from src.db import ensure_utc, to_iso
from src.notifications.models import NotificationKind

if TYPE_CHECKING:
    from src.clock import Clock
    from src.notifications.models import Notification
    from src.notifications.store import NotificationStore

logger = logging.getLogger(__name__)


class NotificationNotFoundError(LookupError):
    """Raised when a notification does not exist or belongs to someone else."""


class InboxQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    unread_only: bool = False
    kind: NotificationKind | None = None


@dataclass
class InboxPage:
    notifications: list[Notification]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.total else 0

    def pagination(self) -> dict[str, int]:
        return {"current": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}


class NotificationInbox:
    """Listing, read-state, and statistics over a recipient's notifications."""

    def __init__(self, store: NotificationStore, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()

    async def get_user_notifications(
        self,
        recipient: str,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
        kind: NotificationKind | None = None,
    ) -> InboxPage:
        """Newest-first page of *recipient*'s notifications.

        Raises:
            pydantic.ValidationError: page < 1 or limit outside 1-100.
        """
        query = InboxQuery(page=page, limit=limit, unread_only=unread_only, kind=kind)
        notifications, total = await self._store.list_for_recipient(
            recipient,
            page=query.page,
            limit=query.limit,
            unread_only=query.unread_only,
            kind=query.kind,
        )
        return InboxPage(notifications, query.page, query.limit, total)

    async def get_unread_count(self, recipient: str) -> int:
        return await self._store.count_unread(recipient)

    async def mark_as_read(self, notification_id: str, recipient: str) -> None:
        """Mark one of *recipient*'s notifications read.

        Raises:
            NotificationNotFoundError: No such notification for this recipient.
        """
        updated = await self._store.mark_read(notification_id, recipient, self._clock.now())
        if not updated:
            msg = f"Notification {notification_id} not found"
            raise NotificationNotFoundError(msg)

    async def mark_all_as_read(self, recipient: str) -> int:
        count = await self._store.mark_all_read(recipient, self._clock.now())
        logger.info("Marked %d notification(s) read for %s", count, recipient)
        return count

    async def get_stats(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> dict[str, Any]:
        """Counts by status, by kind, and by UTC day for notifications created in the range.

        Defaults to the last seven days.
        """
        end = ensure_utc(end) if end is not None else self._clock.now()
        start = ensure_utc(start) if start is not None else end - timedelta(days=7)
        return {
            "period": {"start": to_iso(start), "end": to_iso(end)},
            "by_status": await self._store.count_by("status", start, end),
            "by_kind": await self._store.count_by("kind", start, end),
            "by_day": await self._store.count_by("day", start, end),
        }
