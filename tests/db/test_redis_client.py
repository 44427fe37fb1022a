"""
Tests for the Redis manager and registration-level locks.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import LockError

from campus_events.core.exceptions import ConflictError
from campus_events.db.redis_client import RedisManager, DistributedLock


@pytest.fixture
def manager():
    manager = RedisManager()
    manager.redis_client = MagicMock()
    manager.redis_client.ping = AsyncMock(return_value=True)
    manager.redis_client.publish = AsyncMock(return_value=2)
    manager._initialized = True
    return manager


@pytest.fixture
def redis_lock(manager):
    lock = MagicMock()
    lock.acquire = AsyncMock(return_value=True)
    lock.release = AsyncMock()
    manager.redis_client.lock.return_value = lock
    return lock


class TestRedisManager:

    @pytest.mark.asyncio
    async def test_publish(self, manager):
        assert await manager.publish("campus:events:updated", "{}") == 2
        manager.redis_client.publish.assert_awaited_once_with("campus:events:updated", "{}")

    @pytest.mark.asyncio
    async def test_health_check(self, manager):
        assert await manager.health_check() is True

        manager.redis_client.ping.side_effect = ConnectionError("refused")
        assert await manager.health_check() is False


class TestDistributedLock:

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, manager, redis_lock):
        async with DistributedLock(manager, "registration:gate:7", timeout=15, blocking_timeout=2):
            redis_lock.release.assert_not_awaited()

        manager.redis_client.lock.assert_called_once_with(
            "campus:lock:registration:gate:7", timeout=15, blocking_timeout=2
        )
        redis_lock.acquire.assert_awaited_once()
        redis_lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_busy_lock(self, manager, redis_lock):
        redis_lock.acquire.return_value = False

        with pytest.raises(ConflictError):
            async with DistributedLock(manager, "registration:scan:1:abc"):
                pass

        redis_lock.release.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_released_on_error(self, manager, redis_lock):
        with pytest.raises(ValueError):
            async with DistributedLock(manager, "registration:gate:7"):
                raise ValueError("boom")

        redis_lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expired_lock_release(self, manager, redis_lock):
        redis_lock.release.side_effect = LockError("Cannot release an unlocked lock")

        async with DistributedLock(manager, "registration:gate:7"):
            pass
