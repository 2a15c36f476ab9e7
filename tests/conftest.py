"""Shared test fixtures."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from src.notifications.preference_store import PreferenceStore
from src.notifications.store import NotificationStore
from src.tasks.store import TaskStore


class FrozenClock:
    """Clock that only moves when a test tells it to."""

    def __init__(self, now: datetime) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs) -> None:
        self._now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def task_store(db_path: Path) -> TaskStore:
    return TaskStore(db_path=db_path)


@pytest.fixture
def notification_store(db_path: Path) -> NotificationStore:
    return NotificationStore(db_path=db_path)


@pytest.fixture
def preference_store(db_path: Path) -> PreferenceStore:
    return PreferenceStore(db_path=db_path)
