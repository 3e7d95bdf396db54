"""In-memory preference backend (session scope and tests)."""

from collections.abc import Iterator


class MemoryBackend:
    """Process-local backend. Lost on restart."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> Iterator[str]:
        return iter([k for k in self._data if k.startswith(prefix)])

    def clear(self, prefix: str = "") -> None:
        for key in list(self.keys(prefix)):
            del self._data[key]
