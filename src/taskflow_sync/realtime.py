"""Server-sent events -> cache invalidation.

The server pushes lifecycle events; each one maps to the query keys whose
data it changes. Updated and moved tasks are patched into a loaded task
list instead of refetching it. New notifications only invalidate the unread
count, so the alert still goes through the edge detector and plays once per
increase.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from taskflow_sync.api import TaskFlowClient
from taskflow_sync.keys import QUERY_KEYS, make_key
from taskflow_sync.query_cache import QueryCache
from taskflow_sync.types import QueryKey

logger = logging.getLogger(__name__)


def _field(payload: Any, *names: str) -> Any:
    if not isinstance(payload, Mapping):
        return None
    for name in names:
        value = payload.get(name)
        if value is not None:
            return value
    return None


def _board_events(_: Any) -> list[QueryKey]:
    return [
        QUERY_KEYS["tasks_due_today"](),
        QUERY_KEYS["tasks_due_soon"](),
        make_key("boards"),
        QUERY_KEYS["activity"](),
    ]


def _task_events(payload: Any) -> list[QueryKey]:
    keys = []
    board_id = _field(payload, "boardId", "board_id")
    if board_id is not None:
        keys.append(QUERY_KEYS["tasks"](board_id))
    keys += [
        QUERY_KEYS["tasks_due_today"](),
        QUERY_KEYS["tasks_due_soon"](),
        QUERY_KEYS["activity"](),
    ]
    return keys


def _comment_events(payload: Any) -> list[QueryKey]:
    task_id = _field(payload, "taskId", "task_id")
    return [] if task_id is None else [QUERY_KEYS["comments"](task_id)]


EVENT_INVALIDATIONS: dict[str, Callable[[Any], list[QueryKey]]] = {
    "team.updated": lambda _: [
        make_key("teams"),
        make_key("user-teams"),
        make_key("board-teams"),
        make_key("board"),
    ],
    "board.created": lambda _: [make_key("boards")],
    "board.archived": _board_events,
    "board.unarchived": _board_events,
    "board.deleted": _board_events,
    "board.restored": _board_events,
    "task.created": _task_events,
    "task.updated": _task_events,
    "task.moved": _task_events,
    "task.deleted": _task_events,
    "comment.created": _comment_events,
    "comment.deleted": _comment_events,
    "notification.created": lambda _: [
        QUERY_KEYS["unread_count"](),
        QUERY_KEYS["notification_list"](),
    ],
}


def patch_task_list(data: Any, task_id: Any, changes: Mapping[str, Any]) -> Any | None:
    """Merge changes into one task of a cached task list.

    data is either a list of tasks or a {"data": [...]} envelope. Ids are
    compared as strings. Returns the patched copy, or None if data holds no
    task with that id.
    """
    envelope = isinstance(data, Mapping)
    tasks = data.get("data") if envelope else data
    if not isinstance(tasks, list):
        return None
    found = False
    patched = []
    for task in tasks:
        if isinstance(task, Mapping) and str(task.get("id")) == str(task_id):
            task = {**task, **changes}
            found = True
        patched.append(task)
    if not found:
        return None
    return {**data, "data": patched} if envelope else patched


def _task_patch(event: str, payload: Any) -> tuple[Any, dict[str, Any]] | None:
    if event == "task.updated":
        task = _field(payload, "task")
        if isinstance(task, Mapping) and task.get("id") is not None:
            return task["id"], dict(task)
    elif event == "task.moved":
        task_id = _field(payload, "taskId", "task_id")
        column = _field(payload, "toColumn", "column_id")
        if task_id is not None and column is not None:
            changes = {"column_id": column}
            position = _field(payload, "position")
            if position is not None:
                changes["position"] = position
            return task_id, changes
    return None


def invalidations_for_event(event: str, payload: Any = None) -> list[QueryKey]:
    """Keys to invalidate for a server event. Unknown events map to nothing."""
    handler = EVENT_INVALIDATIONS.get(event)
    return [] if handler is None else handler(payload)


class RealtimeBridge:
    """Applies server events to a QueryCache.

    Updated and moved tasks are patched into the board's cached task list
    when it is loaded and idle; otherwise the list is invalidated like any
    other task event.
    """

    def __init__(self, cache: QueryCache) -> None:
        self._cache = cache

    def handle(self, event: str, payload: Any = None) -> list[QueryKey]:
        """Apply one event. Returns the keys that were invalidated."""
        prefixes = invalidations_for_event(event, payload)
        if not prefixes:
            logger.debug("ignoring realtime event %r", event)
            return []
        patched = self._patch_tasks(event, payload)
        if patched is not None:
            prefixes = [prefix for prefix in prefixes if prefix != patched]
        return self._cache.invalidate_many(prefixes)

    def _patch_tasks(self, event: str, payload: Any) -> QueryKey | None:
        patch = _task_patch(event, payload)
        board_id = _field(payload, "boardId", "board_id")
        if patch is None or board_id is None:
            return None
        key = QUERY_KEYS["tasks"](board_id)
        state = self._cache.get_state(key)
        if state.is_fetching:
            return None
        task_id, changes = patch
        data = patch_task_list(state.data, task_id, changes)
        if data is None:
            return None
        self._cache.set_query_data(key, data)
        logger.debug("patched task %s in %s from %r", task_id, key, event)
        return key

    async def run(self, client: TaskFlowClient, endpoint: str = "/events/stream") -> None:
        """Consume the event stream until the server closes it."""
        async for event, payload in client.stream_events(endpoint):
            self.handle(event, payload)


__all__ = [
    "EVENT_INVALIDATIONS",
    "RealtimeBridge",
    "invalidations_for_event",
    "patch_task_list",
]
