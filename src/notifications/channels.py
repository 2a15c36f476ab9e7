"""NotificationChannel protocol — interface for all notification delivery channels."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from src.notifications.models import ChannelResult, Notification


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol that all notification channels must satisfy."""

    @property
    def name(self) -> str:
        """Unique channel identifier (e.g. 'email', 'in_app')."""
        ...

    async def deliver(self, notification: Notification) -> ChannelResult:
        """Deliver one notification. Returns the outcome; may raise on transport errors."""
        ...


@runtime_checkable
class EmailSender(Protocol):
    """Outbound mail transport."""

    async def send_email(self, to: str, subject: str, body: str) -> ChannelResult:
        """Send one message. Returns success/failure and an optional message id."""
        ...
