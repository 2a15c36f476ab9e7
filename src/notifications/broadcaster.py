"""Real-time broadcasters — fire-and-forget pushes to a user's live sessions."""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

import httpx

from src.config import settings

logger = logging.getLogger(__name__)


@runtime_checkable
class RealtimeBroadcaster(Protocol):
    """Emits an event to every live session of a user. Never raises."""

    async def emit_to_user(self, user_id: str, payload: dict[str, Any]) -> None: ...


class NullBroadcaster:
    """Used when no real-time gateway is configured."""

    async def emit_to_user(self, user_id: str, payload: dict[str, Any]) -> None:
        logger.debug("No real-time gateway; dropping event for %s", user_id)


class HttpBroadcaster:
    """Posts events to a real-time gateway that fans them out over websockets."""

    def __init__(
        self,
        gateway_url: str | None = None,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = gateway_url or settings.realtime_gateway_url
        self._token = token or settings.realtime_gateway_token
        self._client = client

    async def emit_to_user(self, user_id: str, payload: dict[str, Any]) -> None:
        body = {"user_id": user_id, "event": "notification", "payload": payload}
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            if self._client is not None:
                resp = await self._client.post(self._url, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=5.0) as client:
                    resp = await client.post(self._url, json=body, headers=headers)
            resp.raise_for_status()
        except Exception:
            logger.warning("Real-time push to %s failed", user_id, exc_info=True)
