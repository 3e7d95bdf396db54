"""Shared pytest fixtures."""

import logging
from collections.abc import Iterator

import pytest

from taskflow_sync import (
    AudioAlertTrigger,
    MemoryBackend,
    NotificationPreferences,
    PreferenceStore,
    QueryCache,
)

from .fakes import FakeClock, RecordingPlayer


@pytest.fixture
def clock() -> FakeClock:
    """A manually advanced clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
async def cache(clock: FakeClock):
    """A QueryCache on the fake clock, closed after the test."""
    query_cache = QueryCache(clock=clock)
    yield query_cache
    await query_cache.close()


@pytest.fixture
def backend() -> MemoryBackend:
    """Create a fresh MemoryBackend for each test."""
    return MemoryBackend()


@pytest.fixture
def store(backend: MemoryBackend) -> PreferenceStore:
    """A PreferenceStore over the in-memory backend."""
    return PreferenceStore(backend)


@pytest.fixture
def preferences(store: PreferenceStore) -> NotificationPreferences:
    return NotificationPreferences(store)


@pytest.fixture
def player() -> RecordingPlayer:
    return RecordingPlayer()


@pytest.fixture
def trigger(player: RecordingPlayer) -> AudioAlertTrigger:
    return AudioAlertTrigger("sounds/notify.wav", player=player)


@pytest.fixture
def restore_root() -> Iterator[None]:
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    logging.captureWarnings(False)
