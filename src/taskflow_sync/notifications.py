"""Notification payload variants and the unread-count edge detector."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

from taskflow_sync.audio import AudioAlertTrigger
from taskflow_sync.preferences.notifications import NotificationPreferences

logger = logging.getLogger(__name__)


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


@dataclass(frozen=True, slots=True)
class _NotificationBase:
    id: str | None = None
    read_at: str | None = None
    created_at: str | None = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


@dataclass(frozen=True, slots=True)
class TaskAssigned(_NotificationBase):
    kind: ClassVar[str] = "task.assigned"

    task_id: str | None = None
    board_id: str | None = None
    actor: str | None = None


@dataclass(frozen=True, slots=True)
class TaskCompleted(_NotificationBase):
    kind: ClassVar[str] = "task.completed"

    task_id: str | None = None
    board_id: str | None = None
    actor: str | None = None


@dataclass(frozen=True, slots=True)
class CommentCreated(_NotificationBase):
    kind: ClassVar[str] = "comment.created"

    task_id: str | None = None
    comment_id: str | None = None
    actor: str | None = None


@dataclass(frozen=True, slots=True)
class UnknownNotification(_NotificationBase):
    """Any type this client does not know. The raw data is kept as-is."""

    kind: ClassVar[str] = "other"

    type: str = ""
    data: Mapping[str, Any] = field(default_factory=dict)


Notification = TaskAssigned | TaskCompleted | CommentCreated | UnknownNotification


def classify_notification(raw: Any) -> Notification:
    """Map a server notification object onto its variant."""
    if not isinstance(raw, Mapping):
        return UnknownNotification()
    data = raw.get("data")
    if not isinstance(data, Mapping):
        data = {}
    common = {
        "id": _opt_str(raw.get("id")),
        "read_at": _opt_str(raw.get("read_at")),
        "created_at": _opt_str(raw.get("created_at")),
    }
    kind = raw.get("type")
    if kind == TaskAssigned.kind:
        return TaskAssigned(
            **common,
            task_id=_opt_str(data.get("task_id")),
            board_id=_opt_str(data.get("board_id")),
            actor=_opt_str(data.get("actor")),
        )
    if kind == TaskCompleted.kind:
        return TaskCompleted(
            **common,
            task_id=_opt_str(data.get("task_id")),
            board_id=_opt_str(data.get("board_id")),
            actor=_opt_str(data.get("actor")),
        )
    if kind == CommentCreated.kind:
        return CommentCreated(
            **common,
            task_id=_opt_str(data.get("task_id")),
            comment_id=_opt_str(data.get("comment_id")),
            actor=_opt_str(data.get("actor")),
        )
    return UnknownNotification(**common, type=str(kind or ""), data=dict(data))


def parse_notification_list(payload: Any) -> list[Notification]:
    """Accepts a bare list or an envelope {"data": [...]}."""
    items = payload
    if isinstance(payload, Mapping):
        items = payload.get("data")
    if not isinstance(items, list):
        return []
    return [classify_notification(item) for item in items]


def parse_unread_count(payload: Any) -> int:
    """Extract the unread count from {"data": {"count": n}} or {"count": n}.

    Missing, negative and non-numeric counts read as 0.
    """
    if not isinstance(payload, Mapping):
        return 0
    data = payload.get("data")
    source = data if isinstance(data, Mapping) else payload
    count = source.get("count")
    if isinstance(count, bool) or not isinstance(count, (int, float)):
        return 0
    if count != count:  # NaN
        return 0
    return max(0, int(count))


class NotificationEdgeDetector:
    """Fires the alert once per increase of the unread count.

    Build one per client session and inject it where unread counts arrive;
    previous_count starts at 0 and is only reset by building a new detector.
    """

    def __init__(
        self,
        preferences: NotificationPreferences,
        trigger: AudioAlertTrigger,
    ) -> None:
        self._preferences = preferences
        self._trigger = trigger
        self._previous_count = 0

    @property
    def previous_count(self) -> int:
        return self._previous_count

    def observe(self, current_count: int) -> bool:
        """Evaluate one observation. Returns True if the alert was played."""
        current = max(0, int(current_count))
        is_edge = current > self._previous_count
        try:
            if not is_edge:
                return False
            if not self._preferences.sound_enabled:
                logger.debug("unread count rose to %d, sound disabled", current)
                return False
            volume = self._preferences.sound_volume / 100
            logger.debug("unread count rose to %d, alerting", current)
            return self._trigger.play(volume)
        finally:
            self._previous_count = current


__all__ = [
    "CommentCreated",
    "Notification",
    "NotificationEdgeDetector",
    "TaskAssigned",
    "TaskCompleted",
    "UnknownNotification",
    "classify_notification",
    "parse_notification_list",
    "parse_unread_count",
]
