"""End-to-end tests for TaskFlowSync over a mocked API."""

import json
import logging
from dataclasses import replace
from pathlib import Path

import httpx
import pytest
import respx

from taskflow_sync import (
    QUERY_KEYS,
    AudioAlertTrigger,
    CacheStatus,
    JsonFileBackend,
    MemoryBackend,
    MutationError,
    PreferenceStore,
    QueryCache,
    RedisBackend,
    TaskFlowClient,
    TaskFlowSync,
)
from taskflow_sync.config import Settings
from taskflow_sync.session import build_preference_backend

from .fakes import RecordingPlayer, drain

BASE_URL = "https://taskflow.test/api"

UNREAD = QUERY_KEYS["unread_count"]()


def _count(n: int) -> httpx.Response:
    return httpx.Response(200, json={"data": {"count": n}})


def _settings(tmp_path: Path, backend: str = "memory") -> Settings:
    return Settings(
        api_base_url=BASE_URL,
        api_token=None,
        api_timeout=5.0,
        preference_backend=backend,
        preference_path=tmp_path / "prefs.json",
        preference_namespace="taskflow",
        redis_url="redis://localhost:6379/0",
        alert_sound=tmp_path / "notify.wav",
        log_level="INFO",
        log_dir=None,
        debug_http=False,
    )


@pytest.fixture
def api():
    """Mock router for the TaskFlow API."""
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
        yield router


@pytest.fixture
async def sync(
    cache: QueryCache, store: PreferenceStore, trigger: AudioAlertTrigger
):
    """A session on the fake clock with a recording audio player."""
    session = TaskFlowSync(
        TaskFlowClient(BASE_URL, token="test-token"),
        store,
        cache=cache,
        trigger=trigger,
    )
    yield session
    await session.close()


class TestUnreadAlerts:
    """Polled unread counts drive the alert sound."""

    async def test_alert_once_per_increase(
        self, api: respx.Router, sync: TaskFlowSync, player: RecordingPlayer
    ) -> None:
        api.get("/notifications/unread-count").mock(
            side_effect=[_count(0), _count(3), _count(3), _count(1), _count(4)]
        )

        sub = sync.watch_unread_count()
        await sub.settled()
        for _ in range(4):
            await sync.cache.refetch(UNREAD)

        assert len(player.calls) == 2
        assert sync.edge_detector.previous_count == 4

    async def test_respects_sound_preferences(
        self, api: respx.Router, sync: TaskFlowSync, player: RecordingPlayer
    ) -> None:
        sync.notification_preferences.sound_volume = 50
        api.get("/notifications/unread-count").mock(
            side_effect=[_count(0), _count(3)]
        )

        await sync.watch_unread_count().settled()
        await sync.cache.refetch(UNREAD)

        assert player.volumes == [0.5]

    async def test_muted(
        self, api: respx.Router, sync: TaskFlowSync, player: RecordingPlayer
    ) -> None:
        sync.notification_preferences.sound_enabled = False
        api.get("/notifications/unread-count").mock(
            side_effect=[_count(0), _count(3)]
        )

        await sync.watch_unread_count().settled()
        await sync.cache.refetch(UNREAD)

        assert player.calls == []

    async def test_failed_poll_does_not_alert(
        self, api: respx.Router, sync: TaskFlowSync, player: RecordingPlayer
    ) -> None:
        api.get("/notifications/unread-count").mock(
            side_effect=[_count(2), httpx.Response(500), _count(2)]
        )

        state = await sync.watch_unread_count().settled()
        assert state.data == {"data": {"count": 2}}

        state = await sync.cache.refetch(UNREAD)
        assert state.status is CacheStatus.ERROR
        assert state.data == {"data": {"count": 2}}

        await sync.cache.refetch(UNREAD)
        assert len(player.calls) == 1


class TestQueries:
    """watch_* helpers."""

    async def test_watch_tasks_without_board_is_disabled(
        self, api: respx.Router, sync: TaskFlowSync
    ) -> None:
        route = api.get("/tasks").mock(return_value=httpx.Response(200, json=[]))

        sub = sync.watch_tasks(None)
        await drain()

        assert not route.called
        assert sub.state.status is CacheStatus.IDLE

    async def test_watch_tasks(self, api: respx.Router, sync: TaskFlowSync) -> None:
        api.get("/tasks", params={"board_id": "b1"}).mock(
            return_value=httpx.Response(200, json=[{"id": "t1"}])
        )

        state = await sync.watch_tasks("b1").settled()

        assert state.key == ("tasks", "b1")
        assert state.data == [{"id": "t1"}]

    async def test_watch_boards_and_teams_share_requests(
        self, api: respx.Router, sync: TaskFlowSync
    ) -> None:
        boards = api.get("/boards").mock(return_value=httpx.Response(200, json=[]))
        teams = api.get("/teams").mock(return_value=httpx.Response(200, json=[]))

        first = sync.watch_boards()
        second = sync.watch_boards()
        await first.settled()
        await second.settled()
        await sync.watch_teams().settled()
        await sync.watch_teams().settled()

        assert boards.call_count == 1
        assert teams.call_count == 1

    async def test_watch_notifications_parses_variants(
        self, api: respx.Router, sync: TaskFlowSync
    ) -> None:
        api.get("/notifications").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": [
                        {"id": "n1", "type": "task.assigned", "data": {"task_id": 1}},
                        {"id": "n2", "type": "mystery", "data": {}},
                    ]
                },
            )
        )

        state = await sync.watch_notifications(limit=5).settled()

        assert [item.kind for item in state.data] == ["task.assigned", "other"]


class TestMutations:
    """Writes invalidate the right keys."""

    async def test_create_task_refetches_board_tasks(
        self, api: respx.Router, sync: TaskFlowSync
    ) -> None:
        tasks = api.get("/tasks").mock(return_value=httpx.Response(200, json=[]))
        api.post("/tasks").mock(return_value=httpx.Response(201, json={"id": "t1"}))

        await sync.watch_tasks("b1").settled()
        result = await sync.create_task({"title": "Ship it"}, board_id="b1")
        await sync.cache.wait_settled(("tasks", "b1"))

        assert result == {"id": "t1"}
        assert tasks.call_count == 2

    async def test_create_task_failure_reports_message(
        self, api: respx.Router, sync: TaskFlowSync
    ) -> None:
        tasks = api.get("/tasks").mock(return_value=httpx.Response(200, json=[]))
        api.post("/tasks").mock(
            return_value=httpx.Response(422, json={"message": "Title is required"})
        )
        messages: list[str] = []

        await sync.watch_tasks("b1").settled()
        with pytest.raises(MutationError):
            await sync.create_task(
                {"title": ""},
                board_id="b1",
                on_error=lambda error, data: messages.append(error.message),
            )

        assert messages == ["Title is required"]
        assert tasks.call_count == 1

    async def test_update_and_delete_task(
        self, api: respx.Router, sync: TaskFlowSync
    ) -> None:
        tasks = api.get("/tasks").mock(return_value=httpx.Response(200, json=[]))
        api.put("/tasks/t1").mock(return_value=httpx.Response(200, json={}))
        api.delete("/tasks/t1").mock(return_value=httpx.Response(204))

        await sync.watch_tasks("b1").settled()
        await sync.update_task("t1", {"title": "Renamed"}, board_id="b1")
        await sync.cache.wait_settled(("tasks", "b1"))
        await sync.delete_task("t1", board_id="b1")
        await sync.cache.wait_settled(("tasks", "b1"))

        assert tasks.call_count == 3

    async def test_update_task_without_board_refetches_every_task_list(
        self, api: respx.Router, sync: TaskFlowSync
    ) -> None:
        tasks = api.get("/tasks").mock(return_value=httpx.Response(200, json=[]))
        api.put("/tasks/t1").mock(return_value=httpx.Response(200, json={}))
        api.delete("/tasks/t1").mock(return_value=httpx.Response(204))

        await sync.watch_tasks("b1").settled()
        await sync.watch_tasks("b2").settled()
        await sync.update_task("t1", {"title": "Renamed"})
        await sync.cache.wait_settled(("tasks", "b1"))
        await sync.cache.wait_settled(("tasks", "b2"))
        assert tasks.call_count == 4

        await sync.delete_task("t1")
        await sync.cache.wait_settled(("tasks", "b1"))
        await sync.cache.wait_settled(("tasks", "b2"))
        assert tasks.call_count == 6

    async def test_create_task_without_board_refetches_task_lists(
        self, api: respx.Router, sync: TaskFlowSync
    ) -> None:
        tasks = api.get("/tasks").mock(return_value=httpx.Response(200, json=[]))
        api.post("/tasks").mock(return_value=httpx.Response(201, json={"id": "t1"}))

        await sync.watch_tasks("b1").settled()
        await sync.create_task({"title": "Inbox item"})
        await sync.cache.wait_settled(("tasks", "b1"))

        assert tasks.call_count == 2

    async def test_create_board_refetches_every_board_list(
        self, api: respx.Router, sync: TaskFlowSync
    ) -> None:
        boards = api.get("/boards").mock(return_value=httpx.Response(200, json=[]))
        api.post("/boards").mock(return_value=httpx.Response(201, json={}))

        await sync.watch_boards("active").settled()
        await sync.watch_boards("archived").settled()
        await sync.create_board({"name": "Roadmap"})
        await sync.cache.wait_settled(("boards", "active"))
        await sync.cache.wait_settled(("boards", "archived"))

        assert boards.call_count == 4

    async def test_mark_all_read(self, api: respx.Router, sync: TaskFlowSync) -> None:
        unread = api.get("/notifications/unread-count").mock(
            side_effect=[_count(2), _count(0)]
        )
        listing = api.get("/notifications").mock(
            return_value=httpx.Response(200, json={"data": []})
        )
        read_all = api.post("/notifications/read-all").mock(
            return_value=httpx.Response(200, json={})
        )

        await sync.watch_unread_count().settled()
        await sync.watch_notifications().settled()
        await sync.mark_all_read()
        state = await sync.cache.wait_settled(UNREAD)
        await sync.cache.wait_settled(QUERY_KEYS["notification_list"]())

        assert read_all.called
        assert unread.call_count == 2
        assert listing.call_count == 2
        assert state.data == {"data": {"count": 0}}


class TestMoveTask:
    """move_task patches on success and refetches on failure."""

    @pytest.fixture
    def tasks(self, api: respx.Router) -> respx.Route:
        return api.get("/tasks").mock(
            return_value=httpx.Response(
                200, json={"data": [{"id": "t1", "column_id": "todo", "position": 0}]}
            )
        )

    async def test_success_patches_cached_list(
        self, api: respx.Router, sync: TaskFlowSync, tasks: respx.Route
    ) -> None:
        move = api.post("/tasks/t1/move").mock(
            return_value=httpx.Response(
                200, json={"data": {"id": "t1", "column_id": "done", "position": 2}}
            )
        )
        results: list[object] = []

        await sync.watch_tasks("b1").settled()
        await sync.move_task(
            "t1",
            "done",
            2,
            board_id="b1",
            on_success=lambda result, body: results.append(result),
        )
        await drain()

        assert tasks.call_count == 1
        assert sync.cache.get_query_data(("tasks", "b1")) == {
            "data": [{"id": "t1", "column_id": "done", "position": 2}]
        }
        assert len(results) == 1
        body = json.loads(move.calls.last.request.content)
        assert body["column_id"] == "done"
        assert body["position"] == 2
        assert body["operation_id"].startswith("move-t1-")
        assert isinstance(body["client_timestamp"], int)

    async def test_conflict_refetches_board_tasks(
        self, api: respx.Router, sync: TaskFlowSync, tasks: respx.Route
    ) -> None:
        api.post("/tasks/t1/move").mock(
            return_value=httpx.Response(
                409,
                json={"message": "Task was moved by someone else", "conflict": True},
            )
        )
        messages: list[str] = []

        await sync.watch_tasks("b1").settled()
        with pytest.raises(MutationError) as exc_info:
            await sync.move_task(
                "t1",
                "done",
                2,
                board_id="b1",
                on_error=lambda error, body: messages.append(error.message),
            )
        await sync.cache.wait_settled(("tasks", "b1"))

        assert exc_info.value.status_code == 409
        assert messages == ["Task was moved by someone else"]
        assert tasks.call_count == 2

    async def test_network_failure_refetches_board_tasks(
        self, api: respx.Router, sync: TaskFlowSync, tasks: respx.Route
    ) -> None:
        api.post("/tasks/t1/move").mock(side_effect=httpx.ConnectError("offline"))

        await sync.watch_tasks("b1").settled()
        with pytest.raises(MutationError, match="Failed to move task"):
            await sync.move_task("t1", "done", 2, board_id="b1")
        await sync.cache.wait_settled(("tasks", "b1"))

        assert tasks.call_count == 2
        assert sync._pending_moves == {}


class TestConstruction:
    """from_settings and backend selection."""

    def test_build_memory_backend(self, tmp_path: Path) -> None:
        backend = build_preference_backend(_settings(tmp_path, "memory"))
        assert isinstance(backend, MemoryBackend)

    def test_build_file_backend(self, tmp_path: Path) -> None:
        backend = build_preference_backend(_settings(tmp_path, "file"))
        assert isinstance(backend, JsonFileBackend)
        assert backend.path == tmp_path / "prefs.json"

    def test_build_redis_backend(self, tmp_path: Path) -> None:
        backend = build_preference_backend(_settings(tmp_path, "redis"))
        assert isinstance(backend, RedisBackend)
        backend.close()

    async def test_from_settings(self, tmp_path: Path) -> None:
        async with TaskFlowSync.from_settings(_settings(tmp_path, "file")) as sync:
            sync.notification_preferences.sound_volume = 20

            assert sync.alerts.asset == tmp_path / "notify.wav"
            assert sync.edge_detector.previous_count == 0

        reopened = PreferenceStore(JsonFileBackend(tmp_path / "prefs.json"))
        assert reopened.get_item("notif_sound_volume") == 20

    @pytest.mark.usefixtures("restore_root")
    async def test_from_settings_configures_logging(self, tmp_path: Path) -> None:
        settings = replace(
            _settings(tmp_path), log_level="DEBUG", log_dir=tmp_path / "logs"
        )

        async with TaskFlowSync.from_settings(settings, configure_logging=True):
            logging.getLogger("taskflow_sync.session").debug("session opened")

        text = (tmp_path / "logs" / "taskflow.log").read_text(encoding="utf-8")
        assert "session opened" in text

    @pytest.mark.usefixtures("restore_root")
    async def test_from_settings_leaves_logging_alone_by_default(
        self, tmp_path: Path
    ) -> None:
        handlers = list(logging.getLogger().handlers)

        async with TaskFlowSync.from_settings(_settings(tmp_path)):
            pass

        assert logging.getLogger().handlers == handlers

    async def test_close_releases_preference_backends(
        self, cache: QueryCache, trigger: AudioAlertTrigger
    ) -> None:
        closed: list[str] = []

        class ClosingBackend(MemoryBackend):
            def close(self) -> None:
                closed.append("local")

        session = TaskFlowSync(
            TaskFlowClient(BASE_URL),
            PreferenceStore(ClosingBackend()),
            cache=cache,
            trigger=trigger,
        )
        await session.close()

        assert closed == ["local"]
