"""Notification record, lifecycle states, and delivery results."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from src.db import from_iso, to_iso

TITLE_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 1000


class NotificationKind(StrEnum):
    TASK_DUE_SOON = "task_due_soon"
    TASK_DUE_URGENT = "task_due_urgent"
    TASK_OVERDUE = "task_overdue"
    TASK_ASSIGNED = "task_assigned"
    TASK_COMPLETED = "task_completed"
    TASK_UPDATED = "task_updated"
    REMINDER_CUSTOM = "reminder_custom"


class NotificationStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Channel(StrEnum):
    EMAIL = "email"
    IN_APP = "in_app"
    PUSH = "push"


# Reminders computed from a task's due date; these are superseded when the
# due date changes or the task completes.
DUE_DATE_KINDS = frozenset({NotificationKind.TASK_DUE_SOON, NotificationKind.TASK_DUE_URGENT})

TERMINAL_STATUSES = frozenset({
    NotificationStatus.DELIVERED,
    NotificationStatus.FAILED,
    NotificationStatus.CANCELLED,
})


@dataclass
class Notification:
    """A scheduled message for one recipient.

    Attributes:
        id: Unique identifier (UUID hex).
        kind: What the notification is about.
        recipient: User ID the message is for.
        scheduled_for: Earliest instant delivery may be attempted.
        channels: Resolved delivery channels, attempted in this order.
        status: Lifecycle state; only ``pending`` rows are delivery candidates.
        read: In-app read flag, independent of ``status``.
        failure_reason: Joined per-channel errors when every channel failed.
        is_test: Created by an admin test send.
        cancellation_reason: Why a pending notification was cancelled.
    """

    id: str
    kind: NotificationKind
    recipient: str
    title: str
    message: str
    scheduled_for: datetime
    channels: list[Channel] = field(default_factory=list)
    related_task_id: str | None = None
    related_actor_id: str | None = None
    status: NotificationStatus = NotificationStatus.PENDING
    sent_at: datetime | None = None
    email_sent: bool = False
    read: bool = False
    read_at: datetime | None = None
    failure_reason: str | None = None
    is_test: bool = False
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        self.kind = NotificationKind(self.kind)
        self.status = NotificationStatus(self.status)
        self.channels = [Channel(c) for c in self.channels]
        self.title = self.title[:TITLE_MAX_LENGTH]
        self.message = self.message[:MESSAGE_MAX_LENGTH]
        if self.created_at is None:
            self.created_at = datetime.now(UTC)
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_payload(self) -> dict[str, Any]:
        """Shape pushed to connected clients over the real-time channel."""
        return {
            "id": self.id,
            "type": self.kind.value,
            "title": self.title,
            "message": self.message,
            "relatedTask": self.related_task_id,
            "relatedUser": self.related_actor_id,
            "createdAt": to_iso(self.created_at),
        }

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``notifications`` column order."""
        return (
            self.id,
            self.kind.value,
            self.recipient,
            self.title,
            self.message,
            self.related_task_id,
            self.related_actor_id,
            to_iso(self.scheduled_for),
            json.dumps([c.value for c in self.channels]),
            self.status.value,
            to_iso(self.sent_at),
            int(self.email_sent),
            int(self.read),
            to_iso(self.read_at),
            self.failure_reason,
            int(self.is_test),
            self.cancellation_reason,
            to_iso(self.cancelled_at),
            to_iso(self.created_at),
            to_iso(self.updated_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> Notification:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            kind=NotificationKind(row[1]),
            recipient=row[2],
            title=row[3],
            message=row[4],
            related_task_id=row[5],
            related_actor_id=row[6],
            scheduled_for=from_iso(row[7]),
            channels=[Channel(c) for c in json.loads(row[8] or "[]")],
            status=NotificationStatus(row[9]),
            sent_at=from_iso(row[10]),
            email_sent=bool(row[11]),
            read=bool(row[12]),
            read_at=from_iso(row[13]),
            failure_reason=row[14],
            is_test=bool(row[15]),
            cancellation_reason=row[16],
            cancelled_at=from_iso(row[17]),
            created_at=from_iso(row[18]),
            updated_at=from_iso(row[19]),
        )


@dataclass
class ChannelResult:
    """Outcome of one delivery attempt on one channel."""

    success: bool
    message_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message_id": self.message_id, "error": self.error}


@dataclass
class DeliveryResult:
    """Aggregated outcome of delivering one notification."""

    notification_id: str
    success: bool = False
    status: NotificationStatus = NotificationStatus.PENDING
    channels: dict[str, ChannelResult] = field(default_factory=dict)
    error: str | None = None

    @property
    def failed_channels(self) -> list[str]:
        return [name for name, result in self.channels.items() if not result.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "notification_id": self.notification_id,
            "success": self.success,
            "status": self.status.value,
            "channels": {name: r.to_dict() for name, r in self.channels.items()},
            "error": self.error,
        }


@dataclass
class ProcessingSummary:
    """Counts reported by an administrative "process now" run."""

    processed: int
    successful: int
    failed: int
    details: list[DeliveryResult]

    @classmethod
    def from_results(cls, results: list[DeliveryResult]) -> ProcessingSummary:
        successful = sum(1 for r in results if r.success)
        return cls(
            processed=len(results),
            successful=successful,
            failed=len(results) - successful,
            details=results,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "details": [r.to_dict() for r in self.details],
        }


def make_notification_id() -> str:
    """Generate a new notification ID."""
    return uuid.uuid4().hex
