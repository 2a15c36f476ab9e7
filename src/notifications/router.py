"""ChannelRouter — dispatches a notification to a registered channel by name."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from src.config import settings
from src.notifications.models import ChannelResult

if TYPE_CHECKING:
    from src.notifications.channels import NotificationChannel
    from src.notifications.models import Notification

logger = logging.getLogger(__name__)


class ChannelRouter:
    """Routes delivery attempts to the appropriate channel.

    Each attempt is bounded by *timeout* seconds; a timeout or an exception
    raised by the channel is reported as a failed ``ChannelResult`` rather
    than propagated.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._channels: dict[str, NotificationChannel] = {}
        self._timeout = timeout if timeout is not None else settings.channel_timeout_seconds

    def register_channel(self, channel: NotificationChannel) -> None:
        """Register a notification channel. Raises ValueError on duplicate name."""
        if channel.name in self._channels:
            msg = f"Channel '{channel.name}' is already registered"
            raise ValueError(msg)
        self._channels[channel.name] = channel

    def get_channel(self, name: str) -> NotificationChannel | None:
        """Look up a channel by name."""
        return self._channels.get(name)

    def list_channels(self) -> list[str]:
        """Return names of all registered channels."""
        return list(self._channels.keys())

    async def deliver(self, channel_name: str, notification: Notification) -> ChannelResult:
        """Attempt delivery of *notification* on one channel."""
        channel = self._channels.get(channel_name)
        if channel is None:
            logger.warning("No channel registered for '%s'", channel_name)
            return ChannelResult(success=False, error=f"Unknown channel: {channel_name}")
        try:
            return await asyncio.wait_for(channel.deliver(notification), timeout=self._timeout)
        except TimeoutError:
            logger.warning(
                "Delivery via %s timed out after %.1fs for notification %s",
                channel_name,
                self._timeout,
                notification.id,
            )
            return ChannelResult(success=False, error=f"{channel_name} delivery timed out")
        except Exception as exc:
            logger.exception(
                "Delivery via %s failed for notification %s", channel_name, notification.id
            )
            return ChannelResult(success=False, error=str(exc) or type(exc).__name__)
