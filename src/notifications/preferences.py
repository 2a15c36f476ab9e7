"""Per-recipient notification preferences and the rules that apply them.

The resolver functions at the bottom are pure: they take a
``NotificationPreference`` and answer whether, where, and when a
notification may be delivered.
"""

from __future__ import annotations

from datetime import UTC, datetime, time, timedelta
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.db import ensure_utc
from src.notifications.models import Channel, NotificationKind

_TIME_PATTERN = r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$"

DEFAULT_KIND_CHANNELS: dict[NotificationKind, list[Channel]] = {
    NotificationKind.TASK_DUE_SOON: [Channel.EMAIL, Channel.IN_APP],
    NotificationKind.TASK_DUE_URGENT: [Channel.EMAIL, Channel.IN_APP],
    NotificationKind.TASK_OVERDUE: [Channel.EMAIL, Channel.IN_APP],
    NotificationKind.TASK_ASSIGNED: [Channel.EMAIL, Channel.IN_APP],
    NotificationKind.TASK_COMPLETED: [Channel.IN_APP],
    NotificationKind.TASK_UPDATED: [Channel.IN_APP],
    NotificationKind.REMINDER_CUSTOM: [Channel.EMAIL, Channel.IN_APP],
}


# -- Channel settings ----------------------------------------------------------


class ChannelToggle(BaseModel):
    enabled: bool = True


class EmailChannelSettings(ChannelToggle):
    address: str | None = None


class ChannelSettings(BaseModel):
    email: EmailChannelSettings = Field(default_factory=EmailChannelSettings)
    in_app: ChannelToggle = Field(default_factory=ChannelToggle)
    push: ChannelToggle = Field(default_factory=lambda: ChannelToggle(enabled=False))

    def for_channel(self, channel: Channel) -> ChannelToggle:
        return getattr(self, channel.value)


# -- Per-kind settings ---------------------------------------------------------


class KindSettings(BaseModel):
    enabled: bool = True
    channels: list[Channel] = Field(default_factory=list)


class DueSoonSettings(KindSettings):
    advance: float = Field(default=24, ge=1, le=168)


class DueUrgentSettings(KindSettings):
    advance: float = Field(default=1, ge=0.25, le=12)


class OverdueSettings(KindSettings):
    frequency: Literal["once", "daily", "weekly"] = "daily"


class KindPreferences(BaseModel):
    """One settings block per notification kind."""

    task_due_soon: DueSoonSettings = Field(default_factory=DueSoonSettings)
    task_due_urgent: DueUrgentSettings = Field(default_factory=DueUrgentSettings)
    task_overdue: OverdueSettings = Field(default_factory=OverdueSettings)
    task_assigned: KindSettings = Field(default_factory=KindSettings)
    task_completed: KindSettings = Field(default_factory=lambda: KindSettings(enabled=False))
    task_updated: KindSettings = Field(default_factory=lambda: KindSettings(enabled=False))
    reminder_custom: KindSettings = Field(default_factory=KindSettings)

    @model_validator(mode="after")
    def _fill_default_channels(self) -> KindPreferences:
        for kind, defaults in DEFAULT_KIND_CHANNELS.items():
            settings = self.for_kind(kind)
            if not settings.channels:
                settings.channels = list(defaults)
        return self

    def for_kind(self, kind: NotificationKind) -> KindSettings:
        return getattr(self, NotificationKind(kind).value)


# -- Quiet hours ---------------------------------------------------------------


class QuietHours(BaseModel):
    enabled: bool = False
    start: str = Field(default="22:00", pattern=_TIME_PATTERN)
    end: str = Field(default="08:00", pattern=_TIME_PATTERN)
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            msg = f"Unknown timezone: {value}"
            raise ValueError(msg) from exc
        return value

    @property
    def start_time(self) -> time:
        return _parse_hhmm(self.start)

    @property
    def end_time(self) -> time:
        return _parse_hhmm(self.end)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _parse_hhmm(value: str) -> time:
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


# -- Preference document -------------------------------------------------------


class NotificationPreference(BaseModel):
    """Everything a recipient has configured about their notifications."""

    user_id: str
    global_enabled: bool = True
    channels: ChannelSettings = Field(default_factory=ChannelSettings)
    preferences: KindPreferences = Field(default_factory=KindPreferences)
    quiet_hours: QuietHours = Field(default_factory=QuietHours)

    def apply(self, update: PreferenceUpdate) -> NotificationPreference:
        """Return a new, re-validated document with *update* deep-merged in."""
        merged = _deep_merge(self.model_dump(mode="json"), update.model_dump(exclude_unset=True, mode="json"))
        return NotificationPreference.model_validate(merged)


def _deep_merge(base: dict, patch: dict) -> dict:
    result = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# -- Partial updates -----------------------------------------------------------
# Every field optional; only fields the caller set are merged.


class _Patch(BaseModel):
    model_config = ConfigDict(extra="forbid")


class EmailChannelPatch(_Patch):
    enabled: bool | None = None
    address: str | None = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ChannelTogglePatch(_Patch):
    enabled: bool | None = None


class ChannelSettingsPatch(_Patch):
    email: EmailChannelPatch | None = None
    in_app: ChannelTogglePatch | None = None
    push: ChannelTogglePatch | None = None


class KindPatch(_Patch):
    enabled: bool | None = None
    channels: list[Channel] | None = None


class DueSoonPatch(KindPatch):
    advance: float | None = Field(default=None, ge=1, le=168)


class DueUrgentPatch(KindPatch):
    advance: float | None = Field(default=None, ge=0.25, le=12)


class OverduePatch(KindPatch):
    frequency: Literal["once", "daily", "weekly"] | None = None


class KindPreferencesPatch(_Patch):
    task_due_soon: DueSoonPatch | None = None
    task_due_urgent: DueUrgentPatch | None = None
    task_overdue: OverduePatch | None = None
    task_assigned: KindPatch | None = None
    task_completed: KindPatch | None = None
    task_updated: KindPatch | None = None
    reminder_custom: KindPatch | None = None


class QuietHoursPatch(_Patch):
    enabled: bool | None = None
    start: str | None = Field(default=None, pattern=_TIME_PATTERN)
    end: str | None = Field(default=None, pattern=_TIME_PATTERN)
    timezone: str | None = None


class PreferenceUpdate(_Patch):
    """Validated partial update to a ``NotificationPreference``."""

    global_enabled: bool | None = None
    channels: ChannelSettingsPatch | None = None
    preferences: KindPreferencesPatch | None = None
    quiet_hours: QuietHoursPatch | None = None


# -- Resolver ------------------------------------------------------------------


def should_notify(prefs: NotificationPreference, kind: NotificationKind, channel: Channel) -> bool:
    """Return True if *kind* may be delivered to the recipient on *channel*."""
    if not prefs.global_enabled:
        return False
    if not prefs.channels.for_channel(Channel(channel)).enabled:
        return False
    settings = prefs.preferences.for_kind(kind)
    if not settings.enabled:
        return False
    return Channel(channel) in settings.channels


def filter_channels(
    prefs: NotificationPreference,
    kind: NotificationKind,
    requested: list[Channel] | list[str],
) -> list[Channel]:
    """Keep the requested channels (in order) that the recipient allows for *kind*."""
    allowed: list[Channel] = []
    for name in requested:
        channel = Channel(name)
        if channel not in allowed and should_notify(prefs, kind, channel):
            allowed.append(channel)
    return allowed


def advance_hours(prefs: NotificationPreference, kind: NotificationKind) -> float:
    """Hours before the due date a due-relative reminder fires (0 for other kinds)."""
    settings = prefs.preferences.for_kind(kind)
    return float(getattr(settings, "advance", 0) or 0)


def is_quiet_time(prefs: NotificationPreference, instant: datetime) -> bool:
    """Return True if *instant* falls inside the recipient's quiet window.

    Both ends of the window are inclusive, compared at minute precision in
    the quiet-hours timezone. When ``start > end`` it wraps past midnight.
    """
    quiet = prefs.quiet_hours
    if not quiet.enabled:
        return False
    local = ensure_utc(instant).astimezone(quiet.tz)
    now_t = time(local.hour, local.minute)
    start, end = quiet.start_time, quiet.end_time
    if start > end:
        return now_t >= start or now_t <= end
    return start <= now_t <= end


def next_quiet_end(prefs: NotificationPreference, instant: datetime) -> datetime:
    """Return the first quiet-window end strictly after *instant*, in UTC.

    The end time on the instant's local day is tried first; if that is not
    later than the instant it rolls to the following day.
    """
    quiet = prefs.quiet_hours
    tz = quiet.tz
    local = ensure_utc(instant).astimezone(tz)
    end = quiet.end_time
    candidate = datetime(local.year, local.month, local.day, end.hour, end.minute, tzinfo=tz)
    if candidate <= local:
        following = local.date() + timedelta(days=1)
        candidate = datetime(following.year, following.month, following.day, end.hour, end.minute, tzinfo=tz)
    return candidate.astimezone(UTC)
