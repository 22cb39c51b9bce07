"""Durable key/value store port."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class IKeyValueStore(Protocol):
    """Port for the persistent store backing scheduled work.

    Values are opaque strings; serialization belongs to
    :class:`~courier_scheduler.persistence.TaskStore`. Implementations
    propagate their own errors; the task store wraps them in
    :class:`~courier_scheduler.exceptions.PersistenceError`.
    """

    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""
        ...

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Store ``value`` under ``key`` with an optional TTL in seconds."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key``. Deleting a missing key is not an error."""
        ...

    async def list_keys(self, prefix: str) -> list[str]:
        """Return every key starting with ``prefix``."""
        ...
