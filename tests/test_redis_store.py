"""Tests for RedisKeyValueStore."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from courier_scheduler.adapters.redis import RedisKeyValueStore


@pytest.mark.asyncio
class TestRedisKeyValueStore:
    @pytest_asyncio.fixture
    async def redis_client(self):
        return AsyncMock()

    @pytest_asyncio.fixture
    async def store(self, redis_client):
        return RedisKeyValueStore(redis_client, namespace="courier:")

    async def test_get_set(self, store, redis_client):
        redis_client.get.return_value = b'{"a": 1}'

        await store.set("scheduled:1", '{"a": 1}')
        result = await store.get("scheduled:1")

        assert result == '{"a": 1}'
        redis_client.set.assert_called_with("courier:scheduled:1", '{"a": 1}')
        redis_client.get.assert_called_with("courier:scheduled:1")

    async def test_set_with_ttl_uses_setex(self, store, redis_client):
        await store.set("k", "v", ttl=30)
        redis_client.setex.assert_called_with("courier:k", 30, "v")
        redis_client.set.assert_not_called()

    async def test_get_missing(self, store, redis_client):
        redis_client.get.return_value = None
        assert await store.get("missing") is None

    async def test_delete(self, store, redis_client):
        await store.delete("scheduled:1")
        redis_client.delete.assert_called_with("courier:scheduled:1")

    async def test_list_keys_follows_scan_cursor(self, store, redis_client):
        redis_client.scan.side_effect = [
            (7, [b"courier:scheduled:a"]),
            (0, [b"courier:scheduled:b", "courier:scheduled:c"]),
        ]

        keys = await store.list_keys("scheduled:")

        assert keys == ["scheduled:a", "scheduled:b", "scheduled:c"]
        assert redis_client.scan.call_count == 2
        redis_client.scan.assert_called_with(7, match="courier:scheduled:*")

    async def test_errors_propagate(self, store, redis_client):
        redis_client.get.side_effect = ConnectionError("down")
        with pytest.raises(ConnectionError):
            await store.get("k")
