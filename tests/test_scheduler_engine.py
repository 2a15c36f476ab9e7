"""Tests for BackgroundPoller — APScheduler lifecycle and passes."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from src.notifications.models import DeliveryResult, NotificationStatus, ProcessingSummary
from src.scheduler.engine import (
    CLEANUP_JOB,
    DISPATCH_JOB,
    GENERATION_JOB,
    OVERDUE_JOB,
    BackgroundPoller,
)


@pytest.fixture
def generator() -> AsyncMock:
    g = AsyncMock()
    g.generate_due.return_value = []
    return g


@pytest.fixture
def dispatcher() -> AsyncMock:
    d = AsyncMock()
    d.process_due.return_value = []
    d.summarize = MagicMock(side_effect=ProcessingSummary.from_results)
    return d


@pytest.fixture
def poller(generator: AsyncMock, dispatcher: AsyncMock) -> BackgroundPoller:
    return BackgroundPoller(generator, dispatcher, timezone="America/Chicago")


# -- Lifecycle -----------------------------------------------------------------


async def test_start_and_stop(poller: BackgroundPoller) -> None:
    await poller.start()
    assert poller.running is True

    await poller.stop()
    assert poller.running is False


async def test_start_registers_jobs(poller: BackgroundPoller) -> None:
    await poller.start()
    try:
        jobs = {j.id: j for j in poller._scheduler.get_jobs()}
        assert set(jobs) == {GENERATION_JOB, DISPATCH_JOB, OVERDUE_JOB, CLEANUP_JOB}
        assert isinstance(jobs[DISPATCH_JOB].trigger, IntervalTrigger)
        assert isinstance(jobs[CLEANUP_JOB].trigger, CronTrigger)
        for job in jobs.values():
            assert job.max_instances == 1
            assert job.coalesce is True
    finally:
        await poller.stop()


async def test_generation_runs_immediately(poller: BackgroundPoller, generator: AsyncMock) -> None:
    await poller.start()
    try:
        for _ in range(50):
            if generator.generate_due.await_count:
                break
            await asyncio.sleep(0.01)
        generator.generate_due.assert_awaited()
    finally:
        await poller.stop()


async def test_start_twice_is_noop(poller: BackgroundPoller) -> None:
    await poller.start()
    try:
        scheduler = poller._scheduler
        await poller.start()
        assert poller._scheduler is scheduler
    finally:
        await poller.stop()


async def test_stop_when_not_running(poller: BackgroundPoller) -> None:
    # Should not raise
    await poller.stop()
    await poller.stop()


async def test_restart_after_stop(poller: BackgroundPoller) -> None:
    await poller.start()
    await poller.stop()
    await poller.start()
    try:
        assert poller.running is True
        assert len(poller._scheduler.get_jobs()) == 4
    finally:
        await poller.stop()


async def test_status(poller: BackgroundPoller) -> None:
    assert poller.status() == {"running": False, "started_at": None, "jobs": {}}

    await poller.start()
    try:
        status = poller.status()
        assert status["running"] is True
        assert status["started_at"] is not None
        assert set(status["jobs"]) == {GENERATION_JOB, DISPATCH_JOB, OVERDUE_JOB, CLEANUP_JOB}
    finally:
        await poller.stop()


# -- Passes --------------------------------------------------------------------


async def test_generation_pass_swallows_errors(
    poller: BackgroundPoller, generator: AsyncMock, caplog
) -> None:
    generator.generate_due.side_effect = RuntimeError("db locked")
    await poller.run_generation_pass()
    assert "generation pass failed" in caplog.text


async def test_pass_failures_are_independent(
    poller: BackgroundPoller, generator: AsyncMock, dispatcher: AsyncMock
) -> None:
    generator.generate_due.side_effect = RuntimeError("boom")
    dispatcher.schedule_overdue_notifications.side_effect = RuntimeError("boom")

    await poller.run_generation_pass()
    await poller.run_overdue_pass()
    await poller.run_dispatch_pass()
    await poller.run_retention_pass()

    dispatcher.process_due.assert_awaited_once()
    dispatcher.cleanup_old_notifications.assert_awaited_once_with(30)


async def test_dispatch_pass_logs_summary(
    poller: BackgroundPoller, dispatcher: AsyncMock, caplog
) -> None:
    import logging

    caplog.set_level(logging.INFO, logger="src.scheduler.engine")
    dispatcher.process_due.return_value = [
        DeliveryResult(notification_id="n1", success=True, status=NotificationStatus.SENT),
        DeliveryResult(notification_id="n2", status=NotificationStatus.FAILED),
    ]

    await poller.run_dispatch_pass()

    assert "2 processed, 1 sent, 1 failed" in caplog.text
