"""
Redis client for Campus Events Service.
Handles pub/sub publishing for real-time updates and registration-level locks.
"""

from typing import Optional
import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import LockError
import logging

from campus_events.core.config import config
from campus_events.core.exceptions import ConflictError

logger = logging.getLogger(__name__)

LOCK_PREFIX = "campus:lock:"


class RedisManager:
    """
    Redis manager for real-time updates and registration-level locks.
    """

    def __init__(self):
        self.redis_client: Optional[Redis] = None
        self._initialized = False

    async def initialize(self):
        """Initialize Redis connection."""
        if self._initialized:
            return

        try:
            redis_url = await config.get_redis_url()
            self.redis_client = redis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            await self.redis_client.ping()
            self._initialized = True
            logger.info("Redis client initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Redis client: {e}")
            raise

    async def close(self):
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.close()
        logger.info("Redis connection closed")

    async def publish(self, channel: str, message: str) -> int:
        """
        Publish a message on a channel.

        Returns:
            Number of subscribers that received the message
        """
        if not self._initialized:
            await self.initialize()

        return await self.redis_client.publish(channel, message)

    async def health_check(self) -> bool:
        """Check Redis connection health."""
        try:
            if not self._initialized:
                await self.initialize()

            result = await self.redis_client.ping()
            return result is True
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            return False


# Global Redis manager instance
redis_manager = RedisManager()


class DistributedLock:
    """
    Async context manager over redis-py's token-checked Lock.
    Raises ConflictError when the lock is still held after blocking_timeout.
    """

    def __init__(self, redis_manager: RedisManager, lock_key: str, timeout: int = 30, blocking_timeout: int = 10):
        self.redis_manager = redis_manager
        self.lock_key = lock_key
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self._lock = None

    async def __aenter__(self):
        if not self.redis_manager._initialized:
            await self.redis_manager.initialize()

        self._lock = self.redis_manager.redis_client.lock(
            f"{LOCK_PREFIX}{self.lock_key}",
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout
        )
        if not await self._lock.acquire():
            logger.warning(f"Failed to acquire lock {self.lock_key} within {self.blocking_timeout}s")
            raise ConflictError(
                "Another operation on this registration is in progress, please retry",
                {"lock": self.lock_key}
            )

        logger.debug(f"Distributed lock acquired: {self.lock_key}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            await self._lock.release()
            logger.debug(f"Distributed lock released: {self.lock_key}")
        except LockError as e:
            # Expired and possibly taken by another worker; nothing of ours to release
            logger.warning(f"Lock {self.lock_key} was no longer held on release: {e}")


def get_distributed_lock(lock_key: str, timeout: int = 30, blocking_timeout: int = 10) -> DistributedLock:
    """Get a distributed lock context manager."""
    return DistributedLock(redis_manager, lock_key, timeout, blocking_timeout)
