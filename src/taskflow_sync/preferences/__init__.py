"""Preference storage backends and the soft-failing PreferenceStore."""

from taskflow_sync.preferences.base import KeyValueBackend
from taskflow_sync.preferences.file import JsonFileBackend
from taskflow_sync.preferences.memory import MemoryBackend
from taskflow_sync.preferences.notifications import NotificationPreferences
from taskflow_sync.preferences.redis import RedisBackend
from taskflow_sync.preferences.store import PreferenceStore, StorageKind

__all__ = [
    "JsonFileBackend",
    "KeyValueBackend",
    "MemoryBackend",
    "NotificationPreferences",
    "PreferenceStore",
    "RedisBackend",
    "StorageKind",
]
