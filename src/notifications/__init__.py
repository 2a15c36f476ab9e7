"""Notifications — preferences, persistence, channels, dispatch, and the inbox."""

from src.notifications.channels import EmailSender, NotificationChannel
from src.notifications.dispatcher import EventContext, NotificationDispatcher
from src.notifications.inbox import NotificationInbox, NotificationNotFoundError
from src.notifications.models import (
    Channel,
    DeliveryResult,
    Notification,
    NotificationKind,
    NotificationStatus,
)
from src.notifications.preference_store import PreferenceStore
from src.notifications.preferences import NotificationPreference, PreferenceUpdate
from src.notifications.router import ChannelRouter
from src.notifications.store import NotificationStore
from src.notifications.task_events import TaskNotificationHooks

__all__ = [
    "Channel",
    "ChannelRouter",
    "DeliveryResult",
    "EmailSender",
    "EventContext",
    "Notification",
    "NotificationChannel",
    "NotificationDispatcher",
    "NotificationInbox",
    "NotificationKind",
    "NotificationNotFoundError",
    "NotificationPreference",
    "NotificationStatus",
    "NotificationStore",
    "PreferenceStore",
    "PreferenceUpdate",
    "TaskNotificationHooks",
]
