"""Push implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.notifications.models import ChannelResult

if TYPE_CHECKING:
    from src.notifications.models import Notification

logger = logging.getLogger(__name__)


class PushChannel:
    """Best-effort mobile push placeholder.

    No provider is wired up yet, so delivery is logged and reported as sent.
    """

    @property
    def name(self) -> str:
        return "push"

    async def deliver(self, notification: Notification) -> ChannelResult:
        logger.info(
            "Push notification for %s: %s", notification.recipient, notification.title
        )
        return ChannelResult(success=True, message_id=f"push_{notification.id}")
