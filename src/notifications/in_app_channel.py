"""In-app implementation of the NotificationChannel protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.notifications.models import ChannelResult

if TYPE_CHECKING:
    from src.notifications.models import Notification


class InAppChannel:
    """In-app notifications are already persisted; clients read them from the inbox."""

    @property
    def name(self) -> str:
        return "in_app"

    async def deliver(self, notification: Notification) -> ChannelResult:
        return ChannelResult(success=True, message_id=f"in_app_{notification.id}")
