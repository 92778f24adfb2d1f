"""Redis client for sessions and distributed locks"""
import asyncio
import logging
from contextlib import contextmanager
from typing import Optional

import redis
import redis.asyncio as aioredis

from descsync.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None
_async_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def get_async_redis_client():
    """Get or create async Redis client bound to the running event loop

    Recreated when the loop changes, which happens between tests.
    """
    global _async_client

    try:
        current_loop = asyncio.get_running_loop()
    except RuntimeError:
        return None

    if _async_client is not None:
        client_loop = getattr(_async_client.connection_pool, '_loop', None)
        if client_loop is not current_loop:
            _async_client = None

    if _async_client is None:
        _async_client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=20
        )
        _async_client.connection_pool._loop = current_loop

    return _async_client


def get_session(session_id: str) -> Optional[int]:
    """Get user_id from session"""
    user_id = get_redis_client().get(f"session:{session_id}")
    return int(user_id) if user_id else None


def acquire_lock(lock_key: str, timeout: int = 30) -> bool:
    """Acquire a distributed lock using Redis SET with NX and EX.

    Args:
        lock_key: The lock key to acquire
        timeout: Lock timeout in seconds (default 30)

    Returns:
        True if lock was acquired, False if lock already exists
    """
    result = get_redis_client().set(lock_key, "1", nx=True, ex=timeout)
    return result is True


def release_lock(lock_key: str) -> None:
    """Release a distributed lock by deleting the key."""
    get_redis_client().delete(lock_key)


def is_locked(lock_key: str) -> bool:
    return get_redis_client().exists(lock_key) > 0


@contextmanager
def distributed_lock(lock_key: str, timeout: int = 30):
    """Yield whether the lock was acquired; release it on exit if so"""
    acquired = False
    try:
        acquired = acquire_lock(lock_key, timeout=timeout)
        yield acquired
    finally:
        if acquired:
            try:
                release_lock(lock_key)
            except redis.RedisError as e:
                # Key expires on its own after the timeout
                logger.warning(f"Failed to release lock {lock_key}: {e}")
