"""Task lifecycle hooks that keep notifications in step with task changes.

Task services call these after they persist a change. A failing hook is
logged and never propagates back into the task operation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.notifications.dispatcher import NotificationDispatcher
    from src.tasks.models import TaskInstance

logger = logging.getLogger(__name__)

_DETAIL_FIELDS = ("title", "description", "priority")


class TaskNotificationHooks:
    def __init__(self, dispatcher: NotificationDispatcher) -> None:
        self._dispatcher = dispatcher

    async def on_task_created(self, task: TaskInstance, actor_id: str | None = None) -> None:
        """Notify the assignee and schedule the due-date reminders."""
        try:
            await self._dispatcher.notify_task_assigned(task, actor_id)
            await self._dispatcher.schedule_task_due_notifications(task)
        except Exception:
            logger.exception("Notification hook failed for created task %s", task.id)

    async def on_task_updated(
        self,
        before: TaskInstance,
        after: TaskInstance,
        actor_id: str | None = None,
    ) -> None:
        """React to reassignment, due-date moves, and detail edits.

        Pending reminders are rebuilt whenever the assignee or due date
        changes. A detail edit with neither change notifies the assignee.
        """
        reassigned = before.assignee_id != after.assignee_id
        rescheduled = before.due_date != after.due_date
        try:
            if reassigned or rescheduled:
                await self._dispatcher.cancel_for_task(after.id, reason="task_updated")
                if reassigned:
                    await self._dispatcher.notify_task_assigned(after, actor_id)
                if not after.is_completed:
                    await self._dispatcher.schedule_task_due_notifications(after)
            elif any(getattr(before, f) != getattr(after, f) for f in _DETAIL_FIELDS):
                await self._dispatcher.notify_task_updated(after, actor_id)
        except Exception:
            logger.exception("Notification hook failed for updated task %s", after.id)

    async def on_task_completed(self, task: TaskInstance, actor_id: str | None = None) -> None:
        """Drop pending reminders and tell the creator."""
        try:
            await self._dispatcher.cancel_for_task(task.id, reason="task_updated")
            await self._dispatcher.notify_task_completed(task, actor_id)
        except Exception:
            logger.exception("Notification hook failed for completed task %s", task.id)

    async def on_task_deleted(self, task_id: str) -> None:
        try:
            await self._dispatcher.cancel_for_task(task_id, reason="task_deleted")
        except Exception:
            logger.exception("Notification hook failed for deleted task %s", task_id)
