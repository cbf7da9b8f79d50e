"""
Redis Connection Management

Redis connection with retries and graceful degradation, plus the
per-conversation lock used to serialize chat turns. When Redis is
unreachable the lock falls back to an in-process asyncio.Lock.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, LockError, RedisError, TimeoutError

from app.config import get_settings

logger = logging.getLogger(__name__)

# App prefix for namespacing (allows multiple apps/versions on same Redis)
APP_PREFIX = "artestofados:v1:"


class RedisClient:
    """
    Manages one Redis connection.

    Features:
    - Connection pooling
    - Automatic retries
    - Timeouts
    - Graceful failure handling (get_client returns None when down)
    """

    def __init__(self, url: Optional[str] = None):
        self.url = url or get_settings().redis_url
        self._client: Optional[Redis] = None
        self._connected: bool = False

    async def get_client(self) -> Optional[Redis]:
        """
        Get or create Redis client.

        Returns:
            Redis client or None if connection fails
        """
        if self._client is not None and self._connected:
            return self._client

        try:
            # Retry configuration: 3 retries with exponential backoff
            retry = Retry(ExponentialBackoff(), retries=3)

            self._client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5.0,
                socket_timeout=5.0,
                retry_on_timeout=True,
                retry=retry,
            )

            await self._client.ping()
            self._connected = True
            logger.info("Redis connection established successfully")
            return self._client

        except (ConnectionError, TimeoutError, RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self._connected = False
            self._client = None
            return None

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client is not None:
            try:
                await self._client.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                self._client = None
                self._connected = False

    def is_connected(self) -> bool:
        """Check if Redis is connected."""
        return self._connected

    async def check_health(self) -> bool:
        """
        Check Redis connectivity for health checks.

        Returns:
            True if Redis is accessible and responding, False otherwise
        """
        client = await self.get_client()
        if client is None:
            return False
        try:
            await client.ping()
            return True
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            self._connected = False
            return False


class ConversationBusyError(Exception):
    """Another worker holds the conversation lock past the wait limit."""
    pass


class ConversationLock:
    """
    Serializes work per key (a phone number).

    Keys: artestofados:v1:lock:conversation:{key}

    Uses a Redis lock so several workers agree; falls back to a local
    asyncio.Lock per key only when Redis is unavailable. Local locks are
    dropped once no turn holds or awaits them.
    """

    LOCK_PREFIX = f"{APP_PREFIX}lock:conversation:"

    def __init__(
        self,
        redis_client: Optional[RedisClient] = None,
        timeout: Optional[int] = None,
    ):
        self.redis_client = redis_client
        self.timeout = timeout or get_settings().redis_lock_timeout
        self._local_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _local(self, key: str) -> asyncio.Lock:
        lock = self._local_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._local_locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        Hold the lock for `key` for the duration of the block.

        Usage:
            async with conversation_lock.hold(phone):
                ...
        """
        client = await self.redis_client.get_client() if self.redis_client else None

        if client is not None:
            lock = client.lock(
                f"{self.LOCK_PREFIX}{key}",
                timeout=self.timeout,
                blocking_timeout=self.timeout,
            )
            try:
                acquired = await lock.acquire()
            except RedisError as e:
                logger.warning(f"Redis lock unavailable for {key}, using local lock: {e}")
                acquired = None

            if acquired:
                try:
                    yield
                finally:
                    try:
                        await lock.release()
                    except (LockError, RedisError) as e:
                        logger.warning(f"Could not release conversation lock for {key}: {e}")
                return
            if acquired is False:
                raise ConversationBusyError(
                    f"Conversation lock {key} still held after {self.timeout}s"
                )

        async with self._local(key):
            yield
