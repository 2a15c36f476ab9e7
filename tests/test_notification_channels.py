"""Tests for the email, in-app and push channels."""

import json
from datetime import UTC, datetime

import httpx
import pytest

from src.notifications.email_channel import EmailChannel, HttpEmailSender
from src.notifications.in_app_channel import InAppChannel
from src.notifications.models import ChannelResult, Notification, NotificationKind
from src.notifications.push_channel import PushChannel


def _notification() -> Notification:
    return Notification(
        id="n1",
        kind=NotificationKind.TASK_DUE_SOON,
        recipient="u1",
        title="Task due soon",
        message="Your task is due tomorrow",
        scheduled_for=datetime(2024, 1, 1, tzinfo=UTC),
    )


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send_email(self, to: str, subject: str, body: str) -> ChannelResult:
        self.sent.append((to, subject, body))
        return ChannelResult(success=True, message_id="mail-1")


class TestEmailChannel:
    async def test_sends_to_resolved_address(self):
        sender = FakeSender()

        async def resolve(user_id: str) -> str | None:
            return f"{user_id}@example.com"

        channel = EmailChannel(sender, resolve)
        result = await channel.deliver(_notification())

        assert channel.name == "email"
        assert result.success is True
        assert sender.sent == [("u1@example.com", "Task due soon", "Your task is due tomorrow")]

    async def test_missing_address_fails(self):
        sender = FakeSender()

        async def resolve(user_id: str) -> str | None:
            return None

        result = await EmailChannel(sender, resolve).deliver(_notification())

        assert result.success is False
        assert "No email address" in result.error
        assert sender.sent == []


class TestHttpEmailSender:
    async def test_posts_message(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "msg-42"})

        async with _client(handler) as client:
            sender = HttpEmailSender(
                api_url="https://mail.test/send",
                api_token="secret",
                from_address="bot@example.com",
                client=client,
            )
            result = await sender.send_email("u1@example.com", "Hello", "Body")

        assert result == ChannelResult(success=True, message_id="msg-42")
        assert seen[0].headers["Authorization"] == "Bearer secret"
        assert json.loads(seen[0].content) == {
            "from": "bot@example.com",
            "to": "u1@example.com",
            "subject": "Hello",
            "text": "Body",
        }

    async def test_http_error_status(self):
        async with _client(lambda request: httpx.Response(503)) as client:
            sender = HttpEmailSender(api_url="https://mail.test/send", client=client)
            result = await sender.send_email("u1@example.com", "Hello", "Body")

        assert result.success is False
        assert result.error == "Email API returned 503"

    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            sender = HttpEmailSender(api_url="https://mail.test/send", client=client)
            result = await sender.send_email("u1@example.com", "Hello", "Body")

        assert result.success is False
        assert "connection refused" in result.error

    async def test_unconfigured(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr("src.config.settings.email_api_url", "")
        result = await HttpEmailSender().send_email("u1@example.com", "Hello", "Body")
        assert result.success is False
        assert result.error == "Email API is not configured"


class TestInAppAndPush:
    async def test_in_app_always_succeeds(self):
        result = await InAppChannel().deliver(_notification())
        assert result == ChannelResult(success=True, message_id="in_app_n1")

    async def test_push_placeholder(self):
        channel = PushChannel()
        result = await channel.deliver(_notification())
        assert channel.name == "push"
        assert result.success is True
        assert result.message_id == "push_n1"
