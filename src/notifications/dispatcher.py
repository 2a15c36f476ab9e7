"""NotificationDispatcher — creates notifications from task events and delivers due ones."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Protocol
from zoneinfo import ZoneInfo

from src.clock import SystemClock
from src.config import settings
from src.db import ensure_utc, to_iso
from src.notifications.broadcaster import NullBroadcaster
from src.notifications.models import (
    DUE_DATE_KINDS,
    Channel,
    DeliveryResult,
    Notification,
    NotificationKind,
    NotificationStatus,
    ProcessingSummary,
    make_notification_id,
)
from src.notifications.preferences import (
    advance_hours,
    filter_channels,
    is_quiet_time,
    next_quiet_end,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from src.clock import Clock
    from src.notifications.broadcaster import RealtimeBroadcaster
    from src.notifications.preference_store import PreferenceStore
    from src.notifications.preferences import NotificationPreference
    from src.notifications.router import ChannelRouter
    from src.notifications.store import NotificationStore
    from src.tasks.models import TaskInstance

logger = logging.getLogger(__name__)


class OverdueTaskSource(Protocol):
    async def list_overdue_instances(self, now: datetime) -> list[TaskInstance]: ...


@dataclass
class EventContext:
    """What a task event contributes to a notification.

    Attributes:
        title: Notification title.
        message: Notification body.
        related_task_id: Task the notification is about.
        related_actor_id: User whose action triggered it.
        due_date: Task due date; required for due-soon/due-urgent kinds.
        scheduled_for: Explicit delivery time, overriding the computed one.
        channels: Requested channels. None means ``settings.default_channels``;
            an empty list requests none and suppresses the notification.
        is_test: Marks admin test sends.
    """

    title: str
    message: str
    related_task_id: str | None = None
    related_actor_id: str | None = None
    due_date: datetime | None = None
    scheduled_for: datetime | None = None
    channels: list[Channel] | None = None
    is_test: bool = False


def _format_due(value: datetime) -> str:
    return ensure_utc(value).strftime("%Y-%m-%d %H:%M UTC")


class NotificationDispatcher:
    """Turns task events into pending notifications and delivers them when due.

    Args:
        store: Notification persistence.
        preferences: Recipient preference persistence.
        router: Channel router used for delivery attempts.
        broadcaster: Real-time push after a successful delivery.
        clock: Time source (defaults to the system clock).
        task_source: Provides overdue tasks for the overdue pass.
        timezone: IANA zone whose midnight starts the overdue dedupe day.
    """

    def __init__(
        self,
        store: NotificationStore,
        preferences: PreferenceStore,
        router: ChannelRouter,
        *,
        broadcaster: RealtimeBroadcaster | None = None,
        clock: Clock | None = None,
        task_source: OverdueTaskSource | None = None,
        timezone: str | None = None,
    ) -> None:
        self._store = store
        self._preferences = preferences
        self._router = router
        self._broadcaster = broadcaster or NullBroadcaster()
        self._clock = clock or SystemClock()
        self._task_source = task_source
        self._tz = ZoneInfo(timezone or settings.scheduler_timezone)

    # -- Scheduling ------------------------------------------------------------

    async def schedule_from_event(
        self,
        kind: NotificationKind,
        recipient: str,
        context: EventContext,
    ) -> Notification | None:
        """Create a pending notification if the recipient allows at least one channel.

        Due-soon/due-urgent notifications fire ``advance_hours`` before the
        due date; other kinds are immediate. A time inside the recipient's
        quiet hours is moved to the end of the quiet window.
        """
        kind = NotificationKind(kind)
        prefs = await self._preferences.get_or_create(recipient, now=self._clock.now())

        requested = (
            context.channels if context.channels is not None else settings.get_default_channels()
        )
        channels = filter_channels(prefs, kind, requested)
        if not channels:
            logger.info(
                "Notification %s for %s suppressed: no enabled channels", kind, recipient
            )
            return None

        scheduled_for = self._initial_time(kind, prefs, context)
        if is_quiet_time(prefs, scheduled_for):
            shifted = next_quiet_end(prefs, scheduled_for)
            logger.info(
                "Notification %s for %s rescheduled for quiet hours: %s -> %s",
                kind,
                recipient,
                scheduled_for.isoformat(),
                shifted.isoformat(),
            )
            scheduled_for = shifted

        notification = Notification(
            id=make_notification_id(),
            kind=kind,
            recipient=recipient,
            title=context.title,
            message=context.message,
            scheduled_for=scheduled_for,
            channels=channels,
            related_task_id=context.related_task_id,
            related_actor_id=context.related_actor_id,
            is_test=context.is_test,
            created_at=self._clock.now(),
        )
        await self._store.add(notification)
        logger.info(
            "Scheduled %s notification %s for %s at %s via %s",
            kind,
            notification.id,
            recipient,
            scheduled_for.isoformat(),
            ",".join(channels),
        )
        return notification

    def _initial_time(
        self,
        kind: NotificationKind,
        prefs: NotificationPreference,
        context: EventContext,
    ) -> datetime:
        if context.scheduled_for is not None:
            return ensure_utc(context.scheduled_for)
        if kind in DUE_DATE_KINDS:
            if context.due_date is None:
                msg = f"{kind} notifications require a due date"
                raise ValueError(msg)
            return ensure_utc(context.due_date) - timedelta(hours=advance_hours(prefs, kind))
        return self._clock.now()

    async def schedule_task_due_notifications(self, task: TaskInstance) -> list[Notification]:
        """Schedule due-soon and due-urgent reminders for an assigned task.

        A reminder whose fire time has already passed is skipped.
        """
        if task.due_date is None or not task.assignee_id:
            return []

        prefs = await self._preferences.get_or_create(task.assignee_id, now=self._clock.now())
        now = self._clock.now()
        due = _format_due(task.due_date)
        reminders = {
            NotificationKind.TASK_DUE_SOON: (
                f'Task "{task.title}" is due soon',
                f'Your task "{task.title}" is due on {due}',
            ),
            NotificationKind.TASK_DUE_URGENT: (
                f'URGENT: Task "{task.title}" is due in {advance_hours(prefs, NotificationKind.TASK_DUE_URGENT):g} hour(s)!',
                f'Your task "{task.title}" is due on {due}. Please complete it as soon as possible.',
            ),
        }

        scheduled: list[Notification] = []
        for kind, (title, message) in reminders.items():
            fire_at = ensure_utc(task.due_date) - timedelta(hours=advance_hours(prefs, kind))
            if fire_at <= now:
                logger.debug("Skipping %s for task %s: fire time already passed", kind, task.id)
                continue
            notification = await self.schedule_from_event(
                kind,
                task.assignee_id,
                EventContext(
                    title=title,
                    message=message,
                    related_task_id=task.id,
                    due_date=task.due_date,
                ),
            )
            if notification is not None:
                scheduled.append(notification)
        return scheduled

    async def notify_task_assigned(
        self, task: TaskInstance, assigned_by: str | None
    ) -> Notification | None:
        """Immediate notification to a new assignee (skipped for self-assignment)."""
        if not task.assignee_id or task.assignee_id == assigned_by:
            return None
        return await self.schedule_from_event(
            NotificationKind.TASK_ASSIGNED,
            task.assignee_id,
            EventContext(
                title=f'New task assigned: "{task.title}"',
                message=f'A new task "{task.title}" has been assigned to you.',
                related_task_id=task.id,
                related_actor_id=assigned_by,
            ),
        )

    async def notify_task_completed(
        self, task: TaskInstance, completed_by: str | None
    ) -> Notification | None:
        """Immediate notification to the task's creator when someone else completes it."""
        if not task.created_by or task.created_by == completed_by:
            return None
        return await self.schedule_from_event(
            NotificationKind.TASK_COMPLETED,
            task.created_by,
            EventContext(
                title=f'Task "{task.title}" has been completed',
                message=f'Task "{task.title}" has been marked as completed.',
                related_task_id=task.id,
                related_actor_id=completed_by,
            ),
        )

    async def notify_task_updated(
        self, task: TaskInstance, updated_by: str | None
    ) -> Notification | None:
        """Immediate notification to the assignee when someone else edits the task."""
        if not task.assignee_id or task.assignee_id == updated_by:
            return None
        return await self.schedule_from_event(
            NotificationKind.TASK_UPDATED,
            task.assignee_id,
            EventContext(
                title=f'Task "{task.title}" was updated',
                message=f'Details of your task "{task.title}" have changed.',
                related_task_id=task.id,
                related_actor_id=updated_by,
            ),
        )

    async def schedule_overdue_notifications(self) -> list[Notification]:
        """Create ``task_overdue`` notifications for overdue, unfinished tasks.

        A task gets at most one overdue notification per dedupe window: the
        current calendar day for ``daily``, the last seven days for
        ``weekly``, and ever for ``once``.
        """
        if self._task_source is None:
            return []

        now = self._clock.now()
        tasks = await self._task_source.list_overdue_instances(now)
        created: list[Notification] = []

        for task in tasks:
            try:
                notification = await self._schedule_overdue(task, now)
            except Exception:
                logger.exception("Failed to schedule overdue notification for task %s", task.id)
                continue
            if notification is not None:
                created.append(notification)

        if created:
            logger.info("Scheduled %d overdue notification(s)", len(created))
        return created

    async def _schedule_overdue(self, task: TaskInstance, now: datetime) -> Notification | None:
        if not task.assignee_id or task.due_date is None:
            return None
        prefs = await self._preferences.get_or_create(task.assignee_id, now=self._clock.now())
        since = self._overdue_window_start(prefs.preferences.task_overdue.frequency, now)
        if await self._store.exists_for_task_since(NotificationKind.TASK_OVERDUE, task.id, since):
            return None
        return await self.schedule_from_event(
            NotificationKind.TASK_OVERDUE,
            task.assignee_id,
            EventContext(
                title=f'Task "{task.title}" is overdue',
                message=(
                    f'Your task "{task.title}" was due on {_format_due(task.due_date)} '
                    "and is now overdue."
                ),
                related_task_id=task.id,
            ),
        )

    def _overdue_window_start(self, frequency: str, now: datetime) -> datetime | None:
        if frequency == "once":
            return None
        local = now.astimezone(self._tz)
        midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
        if frequency == "weekly":
            return min(midnight, local - timedelta(days=7))
        return midnight

    # -- Cancellation ----------------------------------------------------------

    async def cancel_for_task(
        self,
        task_id: str,
        kinds: Iterable[NotificationKind] | None = None,
        reason: str = "task_updated",
    ) -> int:
        """Cancel pending due-soon/due-urgent notifications for a task.

        *kinds* narrows the set further; kinds outside the due-date
        reminders are ignored. Returns the number cancelled.
        """
        selected = set(DUE_DATE_KINDS)
        if kinds is not None:
            selected &= {NotificationKind(k) for k in kinds}
        count = await self._store.cancel_pending_for_task(
            task_id, sorted(selected), reason, self._clock.now()
        )
        if count:
            logger.info("Cancelled %d pending notification(s) for task %s (%s)", count, task_id, reason)
        return count

    # -- Delivery --------------------------------------------------------------

    async def process_due(self) -> list[DeliveryResult]:
        """Deliver every pending notification whose scheduled time has passed.

        Only ``pending`` rows are selected, so a second call right after the
        first finds nothing to do.
        """
        due = await self._store.list_due_pending(self._clock.now())
        if due:
            logger.info("Processing %d due notification(s)", len(due))

        results: list[DeliveryResult] = []
        for notification in due:
            try:
                results.append(await self.deliver(notification))
            except Exception as exc:
                logger.exception("Failed to deliver notification %s", notification.id)
                results.append(await self._record_failure(notification, exc))
        return results

    @staticmethod
    def summarize(results: list[DeliveryResult]) -> ProcessingSummary:
        return ProcessingSummary.from_results(results)

    async def process_now(self) -> ProcessingSummary:
        """Administrative run of ``process_due`` reporting aggregate counts."""
        return self.summarize(await self.process_due())

    async def deliver(self, notification: Notification) -> DeliveryResult:
        """Attempt every channel of *notification* in order and record the outcome.

        Any successful channel marks it ``sent``; if all fail it is ``failed``
        with the joined reasons. With no channels it stays ``pending``.
        """
        result = DeliveryResult(notification_id=notification.id, status=notification.status)
        if notification.is_terminal:
            result.error = f"Notification is already {notification.status.value}"
            logger.info(
                "Notification %s is already %s; not delivering",
                notification.id,
                notification.status.value,
            )
            return result
        if not notification.channels:
            result.error = "No channels to attempt"
            logger.warning("Notification %s has no channels; leaving pending", notification.id)
            return result

        for channel in notification.channels:
            result.channels[channel.value] = await self._router.deliver(channel.value, notification)

        now = self._clock.now()
        if any(r.success for r in result.channels.values()):
            email = result.channels.get(Channel.EMAIL.value)
            moved = await self._store.mark_sent(
                notification.id, now, email_sent=bool(email and email.success)
            )
            if not moved:
                return await self._report_stored_status(result)
            result.success = True
            result.status = NotificationStatus.SENT
            if result.failed_channels:
                logger.warning(
                    "Notification %s sent with failed channel(s): %s",
                    notification.id,
                    ", ".join(result.failed_channels),
                )
            await self._push_realtime(notification, now)
        else:
            reason = "; ".join(
                f"{name}: {r.error or 'failed'}" for name, r in result.channels.items()
            )
            result.error = reason
            if not await self._store.mark_failed(notification.id, reason, now):
                return await self._report_stored_status(result)
            result.status = NotificationStatus.FAILED
            logger.warning("Notification %s failed on every channel: %s", notification.id, reason)
        return result

    async def _report_stored_status(self, result: DeliveryResult) -> DeliveryResult:
        # Another writer moved the row out of pending while channels ran.
        stored = await self._store.get_notification(result.notification_id)
        if stored is not None:
            result.status = stored.status
        result.success = result.status in (NotificationStatus.SENT, NotificationStatus.DELIVERED)
        logger.info(
            "Notification %s was no longer pending; stored status is %s",
            result.notification_id,
            result.status.value,
        )
        return result

    async def _record_failure(self, notification: Notification, exc: Exception) -> DeliveryResult:
        reason = str(exc) or type(exc).__name__
        try:
            await self._store.mark_failed(notification.id, reason, self._clock.now())
        except Exception:
            logger.exception("Could not mark notification %s as failed", notification.id)
        return DeliveryResult(
            notification_id=notification.id,
            success=False,
            status=NotificationStatus.FAILED,
            error=reason,
        )

    async def _push_realtime(self, notification: Notification, delivered_at: datetime) -> None:
        payload = {**notification.to_payload(), "deliveredAt": to_iso(delivered_at)}
        try:
            await self._broadcaster.emit_to_user(notification.recipient, payload)
        except Exception:
            logger.warning(
                "Real-time push failed for notification %s", notification.id, exc_info=True
            )

    async def confirm_delivery(self, notification_id: str) -> bool:
        """Record a channel's delivery receipt (sent → delivered)."""
        return await self._store.mark_delivered(notification_id, self._clock.now())

    async def send_test_notification(
        self, kind: NotificationKind, recipient: str
    ) -> DeliveryResult | None:
        """Create a flagged test notification and deliver it immediately.

        Returns None when the recipient's preferences suppress it.
        """
        kind = NotificationKind(kind)
        notification = await self.schedule_from_event(
            kind,
            recipient,
            EventContext(
                title=f"Test Notification: {kind}",
                message=f"This is a test notification of type {kind}",
                scheduled_for=self._clock.now(),
                is_test=True,
            ),
        )
        if notification is None:
            return None
        return await self.deliver(notification)

    # -- Retention -------------------------------------------------------------

    async def cleanup_old_notifications(self, days: int | None = None) -> int:
        """Delete terminal notifications older than *days*. Returns the count."""
        days = days if days is not None else settings.retention_days
        cutoff = self._clock.now() - timedelta(days=days)
        removed = await self._store.delete_terminal_before(cutoff)
        logger.info("Notification cleanup removed %d notification(s) older than %d day(s)", removed, days)
        return removed
