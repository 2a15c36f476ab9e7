"""Tests for application wiring."""

import pytest

from src.main import build_poller
from src.notifications.broadcaster import HttpBroadcaster, NullBroadcaster
from src.scheduler.engine import BackgroundPoller


def test_build_poller_registers_channels():
    poller = build_poller()
    assert isinstance(poller, BackgroundPoller)
    assert poller._dispatcher._router.list_channels() == ["email", "in_app", "push"]
    assert isinstance(poller._dispatcher._broadcaster, NullBroadcaster)


def test_build_poller_uses_gateway_when_configured(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr("src.config.settings.realtime_gateway_url", "https://rt.test/emit")
    poller = build_poller()
    assert isinstance(poller._dispatcher._broadcaster, HttpBroadcaster)
