"""Core types for the taskflow_sync cache layer."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

T = TypeVar("T")
V = TypeVar("V")
R = TypeVar("R")

Segment = str | int | None

# Structured key - ("tasks", "b1"), ("notifications", "unread-count")
QueryKey = tuple[Segment, ...]

# "30s", "5m", "2h", "1d" or milliseconds
Duration = str | int

Fetcher = Callable[[], Awaitable[T]]

if TYPE_CHECKING:
    from taskflow_sync.errors import FetchError, MutationError


class CacheStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class QueryOptions(Generic[T]):
    """Per-key fetch policy.

    stale_time: how long fetched data counts as fresh.
    refetch_interval: optional polling period, independent of staleness.
    enabled: False suppresses every fetch for the key.
    """

    stale_time: Duration = 0
    refetch_interval: Duration | None = None
    enabled: bool = True
    on_success: Callable[[T], None] | None = None
    on_error: Callable[[FetchError], None] | None = None


@dataclass(frozen=True, slots=True)
class QueryState(Generic[T]):
    """Snapshot of a cache entry as seen by a subscriber."""

    key: QueryKey
    data: T | None
    status: CacheStatus
    error: FetchError | None
    fetched_at: float | None
    is_stale: bool
    is_fetching: bool

    @property
    def has_data(self) -> bool:
        return self.fetched_at is not None


@dataclass(frozen=True, slots=True)
class MutationDescriptor(Generic[V, R]):
    """A write plus what to do after it.

    invalidates is either a fixed sequence of key prefixes or a callable
    receiving (variables, result) and returning them.
    """

    mutate: Callable[[V], Awaitable[R]]
    invalidates: Sequence[Sequence[Segment] | str] | Callable[
        [V, R], Sequence[Sequence[Segment] | str]
    ] = ()
    on_success: Callable[[R, V], None] | None = None
    on_error: Callable[[MutationError, V], None] | None = None
    failure_message: str = "Request failed"


Listener = Callable[[QueryState[Any]], None]
