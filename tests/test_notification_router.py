"""Tests for ChannelRouter."""

import asyncio
from datetime import UTC, datetime

import pytest

from src.notifications.models import ChannelResult, Notification, NotificationKind
from src.notifications.router import ChannelRouter

# -- Helpers -----------------------------------------------------------------


class FakeChannel:
    """Minimal channel implementation for testing."""

    def __init__(self, channel_name: str = "fake", delay: float = 0) -> None:
        self._name = channel_name
        self._delay = delay
        self.delivered: list[str] = []

    @property
    def name(self) -> str:
        return self._name

    async def deliver(self, notification: Notification) -> ChannelResult:
        if self._delay:
            await asyncio.sleep(self._delay)
        self.delivered.append(notification.id)
        return ChannelResult(success=True, message_id="m-1")


class BrokenChannel(FakeChannel):
    async def deliver(self, notification: Notification) -> ChannelResult:
        raise ConnectionError("refused")


def _notification() -> Notification:
    return Notification(
        id="n1",
        kind=NotificationKind.TASK_ASSIGNED,
        recipient="u1",
        title="t",
        message="m",
        scheduled_for=datetime(2024, 1, 1, tzinfo=UTC),
    )


@pytest.fixture
def router() -> ChannelRouter:
    return ChannelRouter(timeout=0.05)


# -- Registration --------------------------------------------------------------


class TestRegistration:
    def test_register_and_get(self, router: ChannelRouter):
        ch = FakeChannel("email")
        router.register_channel(ch)
        assert router.get_channel("email") is ch

    def test_get_unknown_returns_none(self, router: ChannelRouter):
        assert router.get_channel("nope") is None

    def test_list_channels(self, router: ChannelRouter):
        router.register_channel(FakeChannel("email"))
        router.register_channel(FakeChannel("in_app"))
        assert router.list_channels() == ["email", "in_app"]

    def test_duplicate_raises(self, router: ChannelRouter):
        router.register_channel(FakeChannel("email"))
        with pytest.raises(ValueError, match="already registered"):
            router.register_channel(FakeChannel("email"))


# -- Delivery ------------------------------------------------------------------


class TestDeliver:
    async def test_delegates_to_channel(self, router: ChannelRouter):
        ch = FakeChannel("email")
        router.register_channel(ch)

        result = await router.deliver("email", _notification())

        assert result.success is True
        assert result.message_id == "m-1"
        assert ch.delivered == ["n1"]

    async def test_unknown_channel_fails(self, router: ChannelRouter):
        result = await router.deliver("fax", _notification())
        assert result.success is False
        assert result.error == "Unknown channel: fax"

    async def test_timeout_fails(self, router: ChannelRouter):
        ch = FakeChannel("push", delay=1)
        router.register_channel(ch)

        result = await router.deliver("push", _notification())

        assert result.success is False
        assert result.error == "push delivery timed out"
        assert ch.delivered == []

    async def test_exception_becomes_failure(self, router: ChannelRouter):
        router.register_channel(BrokenChannel("email"))
        result = await router.deliver("email", _notification())
        assert result.success is False
        assert result.error == "refused"
