"""Email implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from src.config import settings
from src.notifications.models import ChannelResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from src.notifications.channels import EmailSender
    from src.notifications.models import Notification

logger = logging.getLogger(__name__)


class EmailChannel:
    """Sends notifications by email.

    Args:
        sender: Mail transport used for the actual send.
        resolve_address: Async callable returning the recipient's address,
            or None when no address is known.
    """

    def __init__(
        self,
        sender: EmailSender,
        resolve_address: Callable[[str], Awaitable[str | None]],
    ) -> None:
        self._sender = sender
        self._resolve_address = resolve_address

    @property
    def name(self) -> str:
        return "email"

    async def deliver(self, notification: Notification) -> ChannelResult:
        """Send the notification's title and message to the recipient's address."""
        address = await self._resolve_address(notification.recipient)
        if not address:
            return ChannelResult(
                success=False,
                error=f"No email address for recipient {notification.recipient}",
            )
        return await self._sender.send_email(address, notification.title, notification.message)


class HttpEmailSender:
    """Sends mail through a transactional mail provider's HTTP API.

    Posts ``{"from", "to", "subject", "text"}`` as JSON with a bearer token;
    the provider's ``id`` field is returned as the message id.
    """

    def __init__(
        self,
        api_url: str | None = None,
        api_token: str | None = None,
        from_address: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url or settings.email_api_url
        self._api_token = api_token or settings.email_api_token
        self._from = from_address or settings.email_from
        self._client = client

    async def send_email(self, to: str, subject: str, body: str) -> ChannelResult:
        if not self._api_url:
            return ChannelResult(success=False, error="Email API is not configured")

        payload = {"from": self._from, "to": to, "subject": subject, "text": body}
        headers = {"Authorization": f"Bearer {self._api_token}"} if self._api_token else {}
        try:
            if self._client is not None:
                resp = await self._client.post(self._api_url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=settings.channel_timeout_seconds) as client:
                    resp = await client.post(self._api_url, json=payload, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("Email API rejected message to %s: %s", to, exc.response.status_code)
            return ChannelResult(success=False, error=f"Email API returned {exc.response.status_code}")
        except httpx.HTTPError as exc:
            logger.warning("Email API request failed for %s: %s", to, exc)
            return ChannelResult(success=False, error=str(exc) or type(exc).__name__)

        message_id = None
        if resp.headers.get("content-type", "").startswith("application/json"):
            message_id = resp.json().get("id")
        logger.info("Email sent to %s (id=%s)", to, message_id)
        return ChannelResult(success=True, message_id=message_id)
