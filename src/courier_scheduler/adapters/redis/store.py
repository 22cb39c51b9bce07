"""Redis implementation of the key/value store."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from courier_scheduler.ports.store import IKeyValueStore

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger("courier_scheduler.persistence")


def _decode(value: bytes | str) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisKeyValueStore(IKeyValueStore):
    """
    Redis implementation of IKeyValueStore.

    Errors from the client propagate; :class:`TaskStore` turns them into
    ``PersistenceError``. An optional ``namespace`` is prepended to every key
    so several schedulers can share one database.
    """

    def __init__(self, redis_client: Redis, namespace: str = "") -> None:
        self._redis = redis_client
        self._namespace = namespace

    def _full(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def get(self, key: str) -> str | None:
        val = await self._redis.get(self._full(key))
        if val is None:
            return None
        return _decode(val)

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        if ttl:
            await self._redis.setex(self._full(key), ttl, value)
        else:
            await self._redis.set(self._full(key), value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._full(key))

    async def list_keys(self, prefix: str) -> list[str]:
        """Caution: This is expensive (SCAN)."""
        keys: list[str] = []
        cursor: int = 0
        strip = len(self._namespace)
        while True:
            cursor, batch = await self._redis.scan(
                cursor, match=f"{self._full(prefix)}*"
            )
            keys.extend(_decode(k)[strip:] for k in batch)
            if cursor == 0:
                break
        logger.debug("Redis SCAN %s* returned %d keys", prefix, len(keys))
        return keys
