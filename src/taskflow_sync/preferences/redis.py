"""Redis preference backend."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import redis

from taskflow_sync.errors import StorageError


class RedisBackend:
    """Durable backend on a sync Redis client.

    Keys are stored under "<prefix>:pref:<key>" so the database can be
    shared with other data.
    """

    def __init__(
        self,
        client: Any,  # redis.Redis
        *,
        prefix: str = "taskflow",
    ) -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "taskflow") -> RedisBackend:
        return cls(redis.Redis.from_url(url), prefix=prefix)

    def _full_key(self, key: str) -> str:
        return f"{self._prefix}:pref:{key}"

    def get(self, key: str) -> str | None:
        try:
            data = self._client.get(self._full_key(key))
        except redis.RedisError as exc:
            raise StorageError(f"redis get failed: {exc}") from exc
        if data is None:
            return None
        if isinstance(data, bytes):
            return data.decode("utf-8")
        return str(data)

    def set(self, key: str, value: str) -> None:
        try:
            self._client.set(self._full_key(key), value)
        except redis.RedisError as exc:
            raise StorageError(f"redis set failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(self._full_key(key))
        except redis.RedisError as exc:
            raise StorageError(f"redis delete failed: {exc}") from exc

    def keys(self, prefix: str = "") -> Iterator[str]:
        base = self._full_key("")
        try:
            found = list(self._client.scan_iter(match=f"{base}{prefix}*", count=100))
        except redis.RedisError as exc:
            raise StorageError(f"redis scan failed: {exc}") from exc
        for raw in found:
            name = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
            yield name[len(base) :]

    def clear(self, prefix: str = "") -> None:
        """Delete matching keys using SCAN, never FLUSHDB."""
        base = self._full_key("")
        try:
            batch: list[Any] = []
            for raw in self._client.scan_iter(match=f"{base}{prefix}*", count=100):
                batch.append(raw)
                if len(batch) >= 100:
                    self._client.delete(*batch)
                    batch = []
            if batch:
                self._client.delete(*batch)
        except redis.RedisError as exc:
            raise StorageError(f"redis clear failed: {exc}") from exc

    def close(self) -> None:
        """Close the Redis connection."""
        self._client.close()
