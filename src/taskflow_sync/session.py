"""TaskFlowSync - one client session's cache, writes and alerting, wired together."""

from __future__ import annotations

import functools
import itertools
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from taskflow_sync.api import TaskFlowClient
from taskflow_sync.audio import AudioAlertTrigger
from taskflow_sync.config import Settings, get_settings
from taskflow_sync.errors import MutationError
from taskflow_sync.keys import QUERY_KEYS, make_key
from taskflow_sync.logging_setup import setup_logging
from taskflow_sync.mutation import MutationExecutor
from taskflow_sync.notifications import (
    Notification,
    NotificationEdgeDetector,
    parse_notification_list,
    parse_unread_count,
)
from taskflow_sync.preferences import (
    JsonFileBackend,
    KeyValueBackend,
    MemoryBackend,
    NotificationPreferences,
    PreferenceStore,
    RedisBackend,
)
from taskflow_sync.query_cache import QueryCache, Subscription
from taskflow_sync.realtime import RealtimeBridge, patch_task_list
from taskflow_sync.types import Listener, MutationDescriptor, QueryKey, QueryOptions

TEAMS_STALE_TIME = "5m"
BOARDS_STALE_TIME = "5m"
NOTIFICATIONS_STALE_TIME = "30s"
UNREAD_COUNT_POLL = "60s"

SuccessCallback = Callable[[Any, Any], None]
ErrorCallback = Callable[[MutationError, Any], None]

logger = logging.getLogger(__name__)


def build_preference_backend(settings: Settings) -> KeyValueBackend:
    if settings.preference_backend == "redis":
        return RedisBackend.from_url(
            settings.redis_url, prefix=settings.preference_namespace
        )
    if settings.preference_backend == "memory":
        return MemoryBackend()
    return JsonFileBackend(settings.preference_path)


def _tasks_key(board_id: Any) -> QueryKey:
    # Without a board every task list is a candidate
    return make_key("tasks") if board_id is None else QUERY_KEYS["tasks"](board_id)


def _task_payload(result: Any) -> dict[str, Any]:
    if isinstance(result, Mapping):
        inner = result.get("data")
        return dict(inner) if isinstance(inner, Mapping) else dict(result)
    return {}


class TaskFlowSync:
    """Everything the UI needs to read and write server state.

    Build one per client session. The edge detector, and with it the
    last seen unread count, lives exactly as long as this object.

    Usage:
        async with TaskFlowSync.from_settings() as sync:
            unread = sync.watch_unread_count()
            tasks = sync.watch_tasks("b1")
            await sync.create_task({"title": "Ship it"}, board_id="b1")
    """

    def __init__(
        self,
        client: TaskFlowClient,
        preferences: PreferenceStore,
        *,
        cache: QueryCache | None = None,
        trigger: AudioAlertTrigger | None = None,
    ) -> None:
        self.client = client
        self.cache = cache if cache is not None else QueryCache()
        self.executor = MutationExecutor(self.cache)
        self.preferences = preferences
        self.notification_preferences = NotificationPreferences(preferences)
        self.alerts = trigger if trigger is not None else AudioAlertTrigger()
        self.edge_detector = NotificationEdgeDetector(
            self.notification_preferences, self.alerts
        )
        self.realtime = RealtimeBridge(self.cache)
        self._pending_moves: dict[str, int] = {}
        self._move_ids = itertools.count(1)

    @classmethod
    def from_settings(
        cls, settings: Settings | None = None, *, configure_logging: bool = False
    ) -> TaskFlowSync:
        """Build a session from settings.

        With configure_logging=True the root logger is set up from the
        settings' log level, log directory and HTTP debug flag first.
        """
        settings = settings or get_settings()
        if configure_logging:
            setup_logging(
                console_level=settings.log_level,
                log_dir=settings.log_dir,
                debug_http=settings.debug_http,
            )
        client = TaskFlowClient(
            settings.api_base_url,
            token=settings.api_token,
            timeout=settings.api_timeout,
        )
        store = PreferenceStore(
            build_preference_backend(settings),
            namespace=settings.preference_namespace,
        )
        if not store.is_available("local"):
            logger.warning(
                "%s preference storage unavailable, using defaults",
                settings.preference_backend,
            )
        return cls(client, store, trigger=AudioAlertTrigger(settings.alert_sound))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def watch_tasks(
        self, board_id: str | None, listener: Listener | None = None
    ) -> Subscription[Any]:
        """Tasks of one board. Disabled until a board id is known."""
        return self.cache.subscribe(
            QUERY_KEYS["tasks"](board_id),
            functools.partial(self.client.fetch_tasks, board_id),
            QueryOptions(enabled=board_id is not None),
            listener,
        )

    def watch_boards(
        self, kind: str = "active", listener: Listener | None = None
    ) -> Subscription[Any]:
        return self.cache.subscribe(
            QUERY_KEYS["boards"](kind),
            functools.partial(self.client.fetch_boards, kind),
            QueryOptions(stale_time=BOARDS_STALE_TIME),
            listener,
        )

    def watch_teams(self, listener: Listener | None = None) -> Subscription[Any]:
        return self.cache.subscribe(
            QUERY_KEYS["teams"](),
            self.client.fetch_teams,
            QueryOptions(stale_time=TEAMS_STALE_TIME),
            listener,
        )

    def watch_unread_count(self, listener: Listener | None = None) -> Subscription[Any]:
        """Polls the unread count and feeds every result to the edge detector."""
        return self.cache.subscribe(
            QUERY_KEYS["unread_count"](),
            self.client.fetch_unread_count,
            QueryOptions(
                stale_time=NOTIFICATIONS_STALE_TIME,
                refetch_interval=UNREAD_COUNT_POLL,
                on_success=self._observe_unread,
            ),
            listener,
        )

    def watch_notifications(
        self, limit: int = 10, listener: Listener | None = None
    ) -> Subscription[list[Notification]]:
        async def fetch() -> list[Notification]:
            return parse_notification_list(await self.client.list_notifications(limit))

        return self.cache.subscribe(
            QUERY_KEYS["notification_list"](),
            fetch,
            QueryOptions(stale_time=NOTIFICATIONS_STALE_TIME),
            listener,
        )

    def _observe_unread(self, payload: Any) -> None:
        self.edge_detector.observe(parse_unread_count(payload))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create_task(
        self,
        data: dict[str, Any],
        *,
        board_id: str | None = None,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Any:
        board = board_id if board_id is not None else data.get("board_id")
        invalidates = [_tasks_key(board), make_key("boards")]
        if board is not None:
            invalidates.append(QUERY_KEYS["board"](board))
        descriptor: MutationDescriptor[dict[str, Any], Any] = MutationDescriptor(
            mutate=self.client.create_task,
            invalidates=invalidates,
            on_success=on_success,
            on_error=on_error,
            failure_message="Failed to create task",
        )
        return await self.executor.execute(descriptor, data)

    async def update_task(
        self,
        task_id: str,
        data: dict[str, Any],
        *,
        board_id: str | None = None,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Any:
        """Without board_id every cached task list is refetched."""
        descriptor: MutationDescriptor[dict[str, Any], Any] = MutationDescriptor(
            mutate=functools.partial(self.client.update_task, task_id),
            invalidates=[_tasks_key(board_id)],
            on_success=on_success,
            on_error=on_error,
            failure_message="Failed to update task",
        )
        return await self.executor.execute(descriptor, data)

    async def delete_task(
        self,
        task_id: str,
        *,
        board_id: str | None = None,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Any:
        descriptor: MutationDescriptor[str, Any] = MutationDescriptor(
            mutate=self.client.delete_task,
            invalidates=[_tasks_key(board_id)],
            on_success=on_success,
            on_error=on_error,
            failure_message="Failed to delete task",
        )
        return await self.executor.execute(descriptor, task_id)

    async def move_task(
        self,
        task_id: str,
        column_id: str,
        position: int,
        *,
        board_id: str,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Any:
        """Move a task and patch the board's cached task list with the result.

        Only the last of several overlapping moves of one task patches the
        cache. A 409 conflict, or a failure of the last move, refetches the
        board's tasks so the list shows the server's order again.
        """
        key = QUERY_KEYS["tasks"](board_id)
        body: dict[str, Any] = {
            "column_id": column_id,
            "position": position,
            "operation_id": f"move-{task_id}-{next(self._move_ids)}",
            "client_timestamp": int(time.time() * 1000),
        }

        def is_latest() -> bool:
            return self._pending_moves.get(task_id, 0) <= 1

        def patch(result: Any, variables: dict[str, Any]) -> None:
            changes = _task_payload(result)
            if is_latest() and changes:
                data = patch_task_list(self.cache.get_query_data(key), task_id, changes)
                if data is None:
                    self.cache.invalidate(key)
                else:
                    self.cache.set_query_data(key, data)
            if on_success is not None:
                on_success(result, variables)

        def recover(error: MutationError, variables: dict[str, Any]) -> None:
            if error.status_code == 409:
                logger.info("move of task %s conflicted, refetching %s", task_id, key)
                self.cache.invalidate(key)
            elif is_latest():
                self.cache.invalidate(key)
            if on_error is not None:
                on_error(error, variables)

        async def mutate(sent: dict[str, Any]) -> Any:
            return await self.client.move_task(task_id, **sent)

        descriptor: MutationDescriptor[dict[str, Any], Any] = MutationDescriptor(
            mutate=mutate,
            invalidates=(),
            on_success=patch,
            on_error=recover,
            failure_message="Failed to move task",
        )
        self._pending_moves[task_id] = self._pending_moves.get(task_id, 0) + 1
        try:
            return await self.executor.execute(descriptor, body)
        finally:
            remaining = self._pending_moves.pop(task_id) - 1
            if remaining:
                self._pending_moves[task_id] = remaining

    async def create_board(
        self,
        data: dict[str, Any],
        *,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Any:
        descriptor: MutationDescriptor[dict[str, Any], Any] = MutationDescriptor(
            mutate=self.client.create_board,
            invalidates=[make_key("boards")],
            on_success=on_success,
            on_error=on_error,
            failure_message="Failed to create board",
        )
        return await self.executor.execute(descriptor, data)

    async def mark_all_read(
        self,
        *,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Any:
        async def mutate(_: None) -> Any:
            return await self.client.mark_all_read()

        descriptor: MutationDescriptor[None, Any] = MutationDescriptor(
            mutate=mutate,
            invalidates=[
                QUERY_KEYS["unread_count"](),
                QUERY_KEYS["notification_list"](),
            ],
            on_success=on_success,
            on_error=on_error,
            failure_message="Failed to mark notifications as read",
        )
        return await self.executor.execute(descriptor, None)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        await self.executor.join()
        await self.cache.close()
        await self.client.aclose()
        self.preferences.close()

    async def __aenter__(self) -> TaskFlowSync:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


__all__ = ["TaskFlowSync", "build_preference_backend"]
