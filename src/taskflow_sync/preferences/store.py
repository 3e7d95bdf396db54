"""PreferenceStore - namespaced JSON preferences that never raise."""

from __future__ import annotations

import json
import logging
from typing import Any, Literal

from taskflow_sync.preferences.base import KeyValueBackend
from taskflow_sync.preferences.memory import MemoryBackend

StorageKind = Literal["local", "session"]

_SENTINEL_KEY = "__storage_test__"

logger = logging.getLogger(__name__)


class PreferenceStore:
    """Durable key -> JSON value store with soft-fail semantics.

    "local" entries live in a durable backend and survive restarts;
    "session" entries live for the process. Every read of an absent,
    unreadable or malformed value returns None, and every failed write is
    logged and dropped. Nothing here raises to the caller.

    Usage:
        store = PreferenceStore(JsonFileBackend("~/.taskflow/prefs.json"))
        store.set_item("notif_sound_volume", 50)
        volume = store.get_item("notif_sound_volume")  # 50
    """

    def __init__(
        self,
        local: KeyValueBackend | None = None,
        session: KeyValueBackend | None = None,
        *,
        namespace: str = "taskflow",
    ) -> None:
        self._local = local if local is not None else MemoryBackend()
        self._session = session if session is not None else MemoryBackend()
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    def _backend(self, kind: str) -> KeyValueBackend | None:
        if kind == "local":
            return self._local
        if kind == "session":
            return self._session
        return None

    # -------------------------------------------------------------------------
    # Durable entries
    # -------------------------------------------------------------------------

    def get_item(self, key: str) -> Any | None:
        return self._read(self._local, key)

    def set_item(self, key: str, value: Any) -> None:
        self._write(self._local, key, value)

    def remove_item(self, key: str) -> None:
        self._remove(self._local, key)

    def clear(self) -> None:
        """Remove every durable entry in this store's namespace."""
        try:
            self._local.clear(self._key(""))
        except Exception as exc:
            logger.warning("error clearing preferences: %s", exc)

    # -------------------------------------------------------------------------
    # Session entries
    # -------------------------------------------------------------------------

    def get_session_item(self, key: str) -> Any | None:
        return self._read(self._session, key)

    def set_session_item(self, key: str, value: Any) -> None:
        self._write(self._session, key, value)

    def remove_session_item(self, key: str) -> None:
        self._remove(self._session, key)

    # -------------------------------------------------------------------------
    # Capability check
    # -------------------------------------------------------------------------

    def is_available(self, kind: StorageKind = "local") -> bool:
        """Try a write and remove of a sentinel key."""
        backend = self._backend(kind)
        if backend is None:
            return False
        sentinel = self._key(_SENTINEL_KEY)
        try:
            backend.set(sentinel, _SENTINEL_KEY)
            backend.delete(sentinel)
        except Exception as exc:
            logger.debug("%s storage unavailable: %s", kind, exc)
            return False
        return True

    def close(self) -> None:
        """Release backend connections. Failures are logged, never raised."""
        for backend in (self._local, self._session):
            close = getattr(backend, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as exc:
                logger.warning("error closing preference backend: %s", exc)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _read(self, backend: KeyValueBackend, key: str) -> Any | None:
        try:
            raw = backend.get(self._key(key))
        except Exception as exc:
            logger.warning("error reading preference %r: %s", key, exc)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (ValueError, RecursionError):
            logger.warning("ignoring malformed preference %r", key)
            return None

    def _write(self, backend: KeyValueBackend, key: str, value: Any) -> None:
        try:
            raw = json.dumps(value, allow_nan=False)
        except (TypeError, ValueError, RecursionError) as exc:
            logger.warning("preference %r is not JSON-serializable: %s", key, exc)
            return
        try:
            backend.set(self._key(key), raw)
        except Exception as exc:
            logger.warning("error saving preference %r: %s", key, exc)

    def _remove(self, backend: KeyValueBackend, key: str) -> None:
        try:
            backend.delete(self._key(key))
        except Exception as exc:
            logger.warning("error removing preference %r: %s", key, exc)


__all__ = ["PreferenceStore", "StorageKind"]
