"""Backend protocol for durable key-value preference storage."""

from collections.abc import Iterator
from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueBackend(Protocol):
    """Raw string key-value storage. Implementations may raise on any fault."""

    def get(self, key: str) -> str | None:
        """Get the stored string for a key."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store a string under a key."""
        ...

    def delete(self, key: str) -> None:
        """Delete a key. Missing keys are not an error."""
        ...

    def keys(self, prefix: str = "") -> Iterator[str]:
        """Iterate stored keys starting with prefix."""
        ...

    def clear(self, prefix: str = "") -> None:
        """Delete every key starting with prefix."""
        ...
