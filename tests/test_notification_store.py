"""Tests for NotificationStore."""

from datetime import UTC, datetime, timedelta

from src.notifications.models import (
    Channel,
    Notification,
    NotificationKind,
    NotificationStatus,
    make_notification_id,
)
from src.notifications.store import NotificationStore

NOON = datetime(2024, 1, 10, 12, 0, tzinfo=UTC)


def _notification(**kwargs) -> Notification:
    defaults = {
        "id": make_notification_id(),
        "kind": NotificationKind.TASK_DUE_SOON,
        "recipient": "u1",
        "title": "Task due soon",
        "message": "Your task is due tomorrow",
        "scheduled_for": NOON,
        "channels": [Channel.EMAIL, Channel.IN_APP],
        "related_task_id": "task-1",
        "created_at": NOON - timedelta(hours=1),
    }
    defaults.update(kwargs)
    return Notification(**defaults)


class TestModel:
    def test_truncates_title_and_message(self):
        n = _notification(title="t" * 300, message="m" * 2000)
        assert len(n.title) == 200
        assert len(n.message) == 1000

    def test_coerces_strings(self):
        n = _notification(kind="task_overdue", channels=["in_app"], status="sent")
        assert n.kind is NotificationKind.TASK_OVERDUE
        assert n.channels == [Channel.IN_APP]
        assert n.status is NotificationStatus.SENT


class TestCrud:
    async def test_roundtrip(self, notification_store: NotificationStore):
        n = _notification(is_test=True, related_actor_id="u2")
        await notification_store.add(n)

        loaded = await notification_store.get_notification(n.id)
        assert loaded == n

    async def test_list_due_pending(self, notification_store: NotificationStore):
        due = _notification()
        later = _notification(scheduled_for=NOON + timedelta(minutes=1))
        sent = _notification(status=NotificationStatus.SENT)
        for n in (due, later, sent):
            await notification_store.add(n)

        listed = await notification_store.list_due_pending(NOON)
        assert [n.id for n in listed] == [due.id]

    async def test_exists_for_task_since(self, notification_store: NotificationStore):
        await notification_store.add(_notification(kind=NotificationKind.TASK_OVERDUE))

        kind = NotificationKind.TASK_OVERDUE
        assert await notification_store.exists_for_task_since(kind, "task-1", None)
        assert await notification_store.exists_for_task_since(kind, "task-1", NOON - timedelta(hours=2))
        assert not await notification_store.exists_for_task_since(kind, "task-1", NOON)
        assert not await notification_store.exists_for_task_since(kind, "task-2", None)


class TestTransitions:
    async def test_mark_sent_once(self, notification_store: NotificationStore):
        n = await notification_store.add(_notification())

        assert await notification_store.mark_sent(n.id, NOON, email_sent=True)
        assert not await notification_store.mark_sent(n.id, NOON)

        loaded = await notification_store.get_notification(n.id)
        assert loaded.status is NotificationStatus.SENT
        assert loaded.sent_at == NOON
        assert loaded.email_sent is True

    async def test_failed_is_terminal(self, notification_store: NotificationStore):
        n = await notification_store.add(_notification())
        assert await notification_store.mark_failed(n.id, "email: boom", NOON)

        assert not await notification_store.mark_sent(n.id, NOON)
        assert not await notification_store.cancel(n.id, "task_updated", NOON)
        loaded = await notification_store.get_notification(n.id)
        assert loaded.status is NotificationStatus.FAILED
        assert loaded.failure_reason == "email: boom"
        assert loaded.updated_at == NOON

    async def test_delivered_requires_sent(self, notification_store: NotificationStore):
        n = await notification_store.add(_notification())
        assert not await notification_store.mark_delivered(n.id, NOON)

        await notification_store.mark_sent(n.id, NOON)
        assert await notification_store.mark_delivered(n.id, NOON)
        assert (await notification_store.get_notification(n.id)).status is NotificationStatus.DELIVERED

    async def test_cancel_pending_for_task(self, notification_store: NotificationStore):
        soon = await notification_store.add(_notification())
        urgent = await notification_store.add(_notification(kind=NotificationKind.TASK_DUE_URGENT))
        assigned = await notification_store.add(_notification(kind=NotificationKind.TASK_ASSIGNED))
        already_sent = await notification_store.add(_notification(status=NotificationStatus.SENT))
        other_task = await notification_store.add(_notification(related_task_id="task-2"))

        count = await notification_store.cancel_pending_for_task(
            "task-1",
            [NotificationKind.TASK_DUE_SOON, NotificationKind.TASK_DUE_URGENT],
            "task_updated",
            NOON,
        )

        assert count == 2
        for n in (soon, urgent):
            loaded = await notification_store.get_notification(n.id)
            assert loaded.status is NotificationStatus.CANCELLED
            assert loaded.cancellation_reason == "task_updated"
            assert loaded.cancelled_at == NOON
        for n in (assigned, other_task):
            assert (await notification_store.get_notification(n.id)).status is NotificationStatus.PENDING
        assert (await notification_store.get_notification(already_sent.id)).status is NotificationStatus.SENT

    async def test_cancel_with_no_kinds(self, notification_store: NotificationStore):
        await notification_store.add(_notification())
        assert await notification_store.cancel_pending_for_task("task-1", [], "x", NOON) == 0


class TestReadSide:
    async def test_list_for_recipient_newest_first(self, notification_store: NotificationStore):
        for i in range(3):
            await notification_store.add(_notification(created_at=NOON + timedelta(minutes=i), title=f"n{i}"))
        await notification_store.add(_notification(recipient="u2"))

        items, total = await notification_store.list_for_recipient("u1", page=1, limit=2)
        assert total == 3
        assert [n.title for n in items] == ["n2", "n1"]

    async def test_unread_and_kind_filters(self, notification_store: NotificationStore):
        a = await notification_store.add(_notification())
        await notification_store.add(_notification(kind=NotificationKind.TASK_ASSIGNED))
        await notification_store.mark_read(a.id, "u1", NOON)

        unread, total = await notification_store.list_for_recipient("u1", page=1, limit=10, unread_only=True)
        assert total == 1
        assert unread[0].kind is NotificationKind.TASK_ASSIGNED
        _, due_soon = await notification_store.list_for_recipient(
            "u1", page=1, limit=10, kind=NotificationKind.TASK_DUE_SOON
        )
        assert due_soon == 1

    async def test_mark_read_checks_recipient(self, notification_store: NotificationStore):
        n = await notification_store.add(_notification())
        assert not await notification_store.mark_read(n.id, "someone-else", NOON)
        assert await notification_store.mark_read(n.id, "u1", NOON)
        assert await notification_store.count_unread("u1") == 0

    async def test_mark_all_read(self, notification_store: NotificationStore):
        for _ in range(3):
            await notification_store.add(_notification())
        assert await notification_store.mark_all_read("u1", NOON) == 3
        assert await notification_store.mark_all_read("u1", NOON) == 0

    async def test_count_by(self, notification_store: NotificationStore):
        await notification_store.add(_notification())
        await notification_store.add(_notification(status=NotificationStatus.SENT))
        await notification_store.add(_notification(kind=NotificationKind.TASK_ASSIGNED))

        start, end = NOON - timedelta(days=1), NOON
        assert await notification_store.count_by("status", start, end) == {"pending": 2, "sent": 1}
        assert await notification_store.count_by("kind", start, end) == {
            "task_assigned": 1,
            "task_due_soon": 2,
        }
        assert await notification_store.count_by("day", start, end) == {"2024-01-10": 3}


class TestRetention:
    async def test_only_terminal_rows_removed(self, notification_store: NotificationStore):
        old = NOON - timedelta(days=40)
        keep_pending = await notification_store.add(_notification(created_at=old))
        keep_sent = await notification_store.add(_notification(created_at=old, status=NotificationStatus.SENT))
        keep_recent = await notification_store.add(_notification(status=NotificationStatus.FAILED))
        for status in (NotificationStatus.DELIVERED, NotificationStatus.FAILED, NotificationStatus.CANCELLED):
            await notification_store.add(_notification(created_at=old, status=status))

        removed = await notification_store.delete_terminal_before(NOON - timedelta(days=30))

        assert removed == 3
        for n in (keep_pending, keep_sent, keep_recent):
            assert await notification_store.get_notification(n.id) is not None
