"""QueryCache - keyed cache of async fetch results.

Provides:
- subscribe(): reference-counted subscription, fetches on first use or when stale
- request coalescing: one fetch in flight per key, later callers attach to it
- stale-while-revalidate and stale-while-error: the last good value stays visible
- refetch_interval polling, cancelled when the last subscriber leaves
- invalidate(): prefix-based forced staleness plus refetch for subscribed keys
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Generic, TypeVar, cast

from taskflow_sync.duration import to_seconds
from taskflow_sync.errors import FetchError
from taskflow_sync.keys import is_key_prefix, make_key, serialize_key
from taskflow_sync.types import (
    CacheStatus,
    Fetcher,
    Listener,
    QueryKey,
    QueryOptions,
    QueryState,
    Segment,
)

T = TypeVar("T")

KeyLike = Sequence[Segment] | str

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    key: QueryKey
    fetcher: Fetcher[Any]
    options: QueryOptions[Any]
    stale_seconds: float = 0.0
    interval_seconds: float | None = None
    data: Any = None
    fetched_at: float | None = None
    status: CacheStatus = CacheStatus.IDLE
    error: FetchError | None = None
    subscriber_count: int = 0
    invalidated: bool = False
    # Fetches started at or before this sequence number predate the last invalidation
    invalidated_through: int = 0
    started_seq: int = 0
    applied_seq: int = 0
    in_flight: asyncio.Task[None] | None = None
    poll_task: asyncio.Task[None] | None = None
    listeners: dict[int, Listener] = field(default_factory=dict)


class Subscription(Generic[T]):
    """Handle returned by QueryCache.subscribe().

    Usage:
        sub = cache.subscribe(("tasks", "b1"), fetch_tasks, QueryOptions("30s"))
        state = await sub.settled()
        sub.unsubscribe()
    """

    __slots__ = ("_active", "_cache", "_key", "_token")

    def __init__(self, cache: QueryCache, key: QueryKey, token: int) -> None:
        self._cache = cache
        self._key = key
        self._token = token
        self._active = True

    @property
    def key(self) -> QueryKey:
        return self._key

    @property
    def active(self) -> bool:
        return self._active

    @property
    def state(self) -> QueryState[T]:
        """Current snapshot. Never triggers a fetch."""
        return cast(QueryState[T], self._cache.get_state(self._key))

    def read(self) -> QueryState[T]:
        """Snapshot that also starts a background refetch if the data is stale."""
        return cast(QueryState[T], self._cache.read(self._key))

    async def settled(self) -> QueryState[T]:
        """Wait until no fetch is in flight for this key."""
        return cast(QueryState[T], await self._cache.wait_settled(self._key))

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._cache._release(self._key, self._token)

    def __enter__(self) -> Subscription[T]:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class QueryCache:
    """Keyed cache of async fetch results with staleness and polling.

    All bookkeeping runs synchronously between awaits on a single event
    loop, so entries need no locking.
    """

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.monotonic
        self._entries: dict[QueryKey, _Entry] = {}
        self._tokens = itertools.count(1)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        key: KeyLike,
        fetcher: Fetcher[T],
        options: QueryOptions[T] | None = None,
        listener: Listener | None = None,
    ) -> Subscription[T]:
        """Attach to a key, fetching if there is no fresh data.

        Args:
            key: Query key
            fetcher: Async function producing the data
            options: Staleness, polling and enablement policy
            listener: Called with a QueryState after every change

        Returns:
            Subscription handle; call unsubscribe() when done
        """
        query_key = make_key(key)
        options = options or QueryOptions()
        entry = self._entries.get(query_key)
        if entry is None:
            entry = _Entry(key=query_key, fetcher=fetcher, options=options)
            self._entries[query_key] = entry
        entry.fetcher = fetcher
        self._apply_options(entry, options)

        entry.subscriber_count += 1
        token = next(self._tokens)
        if listener is not None:
            entry.listeners[token] = listener

        if options.enabled and self._is_stale(entry):
            self._dispatch(entry)
        self._sync_polling(entry)
        return Subscription(self, query_key, token)

    def _release(self, key: QueryKey, token: int) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.listeners.pop(token, None)
        entry.subscriber_count = max(0, entry.subscriber_count - 1)
        if entry.subscriber_count == 0:
            self._sync_polling(entry)

    def unsubscribe(self, subscription: Subscription[Any]) -> None:
        subscription.unsubscribe()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_state(self, key: KeyLike) -> QueryState[Any]:
        """Snapshot of a key. Unknown keys report an idle, empty state."""
        query_key = make_key(key)
        entry = self._entries.get(query_key)
        if entry is None:
            return QueryState(
                key=query_key,
                data=None,
                status=CacheStatus.IDLE,
                error=None,
                fetched_at=None,
                is_stale=True,
                is_fetching=False,
            )
        return self._snapshot(entry)

    def read(self, key: KeyLike) -> QueryState[Any]:
        """Snapshot of a key, triggering a refetch when stale and enabled."""
        entry = self._entries.get(make_key(key))
        if entry is not None and entry.options.enabled and self._is_stale(entry):
            self._dispatch(entry)
        return self.get_state(key)

    def get_query_data(self, key: KeyLike) -> Any | None:
        entry = self._entries.get(make_key(key))
        return None if entry is None else entry.data

    def subscriber_count(self, key: KeyLike) -> int:
        entry = self._entries.get(make_key(key))
        return 0 if entry is None else entry.subscriber_count

    def keys(self) -> list[QueryKey]:
        return list(self._entries)

    async def wait_settled(self, key: KeyLike) -> QueryState[Any]:
        """Wait until no fetch is in flight for key, following superseding fetches."""
        query_key = make_key(key)
        while True:
            entry = self._entries.get(query_key)
            task = None if entry is None else entry.in_flight
            if task is None or task.done():
                return self.get_state(query_key)
            await asyncio.wait({task})

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def refetch(self, key: KeyLike) -> QueryState[Any]:
        """Fetch now (joining any in-flight fetch) and wait for the outcome.

        Disabled keys are returned as-is without fetching.
        """
        query_key = make_key(key)
        entry = self._entries.get(query_key)
        if entry is None:
            raise KeyError(query_key)
        if entry.options.enabled:
            self._dispatch(entry)
        return await self.wait_settled(query_key)

    def set_enabled(self, key: KeyLike, enabled: bool) -> None:
        """Enable or disable fetch activity for a key. Cached data is kept."""
        entry = self._entries.get(make_key(key))
        if entry is None:
            return
        entry.options = replace(entry.options, enabled=enabled)
        if enabled and entry.subscriber_count > 0 and self._is_stale(entry):
            self._dispatch(entry)
        self._sync_polling(entry)

    def set_query_data(self, key: KeyLike, updater: Any) -> Any | None:
        """Replace cached data for a known key.

        updater is either the new value or a callable receiving the old one.
        Unknown keys are ignored and None is returned.
        """
        entry = self._entries.get(make_key(key))
        if entry is None:
            return None
        data = updater(entry.data) if callable(updater) else updater
        entry.data = data
        entry.fetched_at = self._clock()
        entry.error = None
        if entry.in_flight is None:
            entry.status = CacheStatus.SUCCESS
        self._notify(entry)
        return data

    def invalidate(self, prefix: KeyLike, *, exact: bool = False) -> list[QueryKey]:
        """Force-stale every key under prefix and refetch those with subscribers.

        By default, invalidating ("tasks",) also invalidates ("tasks", "b1").
        With exact=True only the identical key is affected.

        Returns:
            Keys that were marked stale
        """
        prefix_key = make_key(prefix)
        matched: list[QueryKey] = []
        for entry in list(self._entries.values()):
            if exact:
                hit = entry.key == prefix_key
            else:
                hit = is_key_prefix(prefix_key, entry.key)
            if not hit:
                continue
            matched.append(entry.key)
            entry.invalidated = True
            entry.invalidated_through = entry.started_seq
            if entry.subscriber_count > 0 and entry.options.enabled:
                self._dispatch(entry, supersede=True)
        logger.debug(
            "invalidated %d key(s) under %s", len(matched), serialize_key(prefix_key)
        )
        return matched

    def invalidate_many(
        self, prefixes: Sequence[KeyLike], *, exact: bool = False
    ) -> list[QueryKey]:
        matched: list[QueryKey] = []
        for prefix in prefixes:
            for key in self.invalidate(prefix, exact=exact):
                if key not in matched:
                    matched.append(key)
        return matched

    def clear(self) -> None:
        """Drop all entries and cancel their fetches and timers."""
        for task in self._tasks():
            task.cancel()
        self._entries.clear()

    async def close(self) -> None:
        """Clear the cache and wait for cancelled tasks to finish."""
        tasks = self._tasks()
        self.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _tasks(self) -> list[asyncio.Task[None]]:
        tasks: list[asyncio.Task[None]] = []
        for entry in self._entries.values():
            for task in (entry.in_flight, entry.poll_task):
                if task is not None and not task.done():
                    tasks.append(task)
        return tasks

    def _apply_options(self, entry: _Entry, options: QueryOptions[Any]) -> None:
        entry.stale_seconds = to_seconds(options.stale_time)
        entry.interval_seconds = (
            to_seconds(options.refetch_interval)
            if options.refetch_interval is not None
            else None
        )
        entry.options = options

    def _is_stale(self, entry: _Entry) -> bool:
        """Fresh strictly within [fetched_at, fetched_at + stale_time)."""
        if entry.fetched_at is None or entry.invalidated:
            return True
        return self._clock() >= entry.fetched_at + entry.stale_seconds

    def _snapshot(self, entry: _Entry) -> QueryState[Any]:
        return QueryState(
            key=entry.key,
            data=entry.data,
            status=entry.status,
            error=entry.error,
            fetched_at=entry.fetched_at,
            is_stale=self._is_stale(entry),
            is_fetching=entry.in_flight is not None and not entry.in_flight.done(),
        )

    def _dispatch(self, entry: _Entry, *, supersede: bool = False) -> asyncio.Task[None]:
        """Start a fetch, or join the one already in flight.

        With supersede=True the in-flight fetch is cancelled and replaced;
        its result, should it still arrive, loses to the newer start.
        """
        current = entry.in_flight
        if current is not None and not current.done():
            if not supersede:
                return current
            current.cancel()

        entry.started_seq += 1
        seq = entry.started_seq
        entry.status = CacheStatus.LOADING
        task = asyncio.get_running_loop().create_task(
            self._run_fetch(entry, seq),
            name=f"query:{serialize_key(entry.key)}#{seq}",
        )
        entry.in_flight = task
        logger.debug("fetch #%d started for %s", seq, serialize_key(entry.key))
        self._notify(entry)
        return task

    async def _run_fetch(self, entry: _Entry, seq: int) -> None:
        error: Exception | None = None
        data: Any = None
        try:
            data = await entry.fetcher()
        except Exception as exc:
            error = exc
        finally:
            if entry.in_flight is asyncio.current_task():
                entry.in_flight = None

        if self._entries.get(entry.key) is not entry:
            return
        if error is not None:
            self._apply_error(entry, seq, error)
        else:
            self._apply_success(entry, seq, data)

    def _apply_success(self, entry: _Entry, seq: int, data: Any) -> None:
        if seq <= entry.applied_seq:
            logger.debug(
                "discarding fetch #%d for %s, #%d already applied",
                seq,
                serialize_key(entry.key),
                entry.applied_seq,
            )
            return
        entry.applied_seq = seq
        entry.data = data
        entry.fetched_at = self._clock()
        entry.error = None
        if seq > entry.invalidated_through:
            entry.invalidated = False
        if seq == entry.started_seq:
            entry.status = CacheStatus.SUCCESS
        self._notify(entry)
        if entry.options.on_success is not None:
            self._safe_call(entry, entry.options.on_success, data)

    def _apply_error(self, entry: _Entry, seq: int, exc: Exception) -> None:
        if seq != entry.started_seq:
            logger.debug(
                "ignoring failure of superseded fetch #%d for %s",
                seq,
                serialize_key(entry.key),
            )
            return
        error = FetchError(entry.key, exc)
        entry.status = CacheStatus.ERROR
        entry.error = error
        logger.warning("fetch failed for %s: %s", serialize_key(entry.key), exc)
        self._notify(entry)
        if entry.options.on_error is not None:
            self._safe_call(entry, entry.options.on_error, error)

    def _sync_polling(self, entry: _Entry) -> None:
        should_poll = (
            entry.interval_seconds is not None
            and entry.options.enabled
            and entry.subscriber_count > 0
        )
        task = entry.poll_task
        running = task is not None and not task.done()
        if should_poll and not running:
            entry.poll_task = asyncio.get_running_loop().create_task(
                self._poll(entry), name=f"poll:{serialize_key(entry.key)}"
            )
        elif not should_poll and task is not None:
            task.cancel()
            entry.poll_task = None

    async def _poll(self, entry: _Entry) -> None:
        while True:
            interval = entry.interval_seconds
            if interval is None:
                return
            await asyncio.sleep(interval)
            if self._entries.get(entry.key) is not entry:
                return
            if entry.options.enabled and entry.subscriber_count > 0:
                self._dispatch(entry)

    def _notify(self, entry: _Entry) -> None:
        if not entry.listeners:
            return
        state = self._snapshot(entry)
        for listener in list(entry.listeners.values()):
            self._safe_call(entry, listener, state)

    def _safe_call(self, entry: _Entry, fn: Callable[[Any], None], arg: Any) -> None:
        try:
            fn(arg)
        except Exception:
            logger.exception("query callback failed for %s", serialize_key(entry.key))


__all__ = ["QueryCache", "Subscription"]
