"""In-memory implementation of the key/value store for testing."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from courier_scheduler.ports.store import IKeyValueStore

from ..clock import SystemClock

if TYPE_CHECKING:
    from courier_scheduler.ports.clock import IClock


class InMemoryKeyValueStore(IKeyValueStore):
    """
    Dict-backed :class:`IKeyValueStore` for unit / integration tests and
    single-process deployments that accept losing state on exit.

    TTLs are measured against the injected clock.
    """

    def __init__(self, clock: IClock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._data: dict[str, tuple[str, datetime | None]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock.now():
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        expires_at = self._clock.now() + timedelta(seconds=ttl) if ttl else None
        self._data[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self, prefix: str) -> list[str]:
        now = self._clock.now()
        return [
            key
            for key, (_, expires_at) in self._data.items()
            if key.startswith(prefix) and (expires_at is None or expires_at > now)
        ]

    # --- Test helpers ---

    def clear(self) -> None:
        self._data.clear()

    @property
    def key_count(self) -> int:
        return len(self._data)
