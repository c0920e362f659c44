"""
Per-principal locks - serialize OAuth refreshes for one athlete.

Strava refresh tokens may be single-use: two concurrent refreshes for the
same athlete can leave the database holding a refresh token Strava already
invalidated. Two layers:
1. In-process asyncio.Lock keyed by principal id (always enforced).
2. Redis SET NX with TTL so several app processes also serialize
   (skipped with a warning when Redis is unavailable).
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 30
LOCK_WAIT_SECONDS = 10
LOCK_POLL_INTERVAL = 0.1  # 100ms

_local_locks: dict[str, asyncio.Lock] = {}
_local_waiters: dict[str, int] = {}


@asynccontextmanager
async def principal_lock(
    principal_id: int | str,
    ttl: int = LOCK_TTL_SECONDS,
    wait: float = LOCK_WAIT_SECONDS,
):
    """
    Acquire the refresh lock for a principal.

    Usage:
        async with principal_lock(principal_id):
            # refresh + persist tokens
    """
    key = str(principal_id)
    lock = _local_locks.setdefault(key, asyncio.Lock())
    _local_waiters[key] = _local_waiters.get(key, 0) + 1
    try:
        async with lock:
            lock_key = f"pacefund:lock:principal:{key}"
            lock_value = uuid.uuid4().hex
            acquired = await _acquire_lock(lock_key, lock_value, ttl, wait)
            if not acquired:
                raise LockTimeoutError(
                    f"Could not acquire refresh lock for principal {key} within {wait}s"
                )
            try:
                yield
            finally:
                await _release_lock(lock_key, lock_value)
    finally:
        _local_waiters[key] -= 1
        if _local_waiters[key] <= 0:
            _local_waiters.pop(key, None)
            _local_locks.pop(key, None)


async def _acquire_lock(
    key: str,
    value: str,
    ttl: int,
    wait: float,
) -> bool:
    """Try to acquire a Redis lock with polling."""
    try:
        from pacefund.utils.redis_client import get_redis
        redis = await get_redis()

        was_set = await redis.set(key, value, nx=True, ex=ttl)
        if was_set:
            return True

        elapsed = 0.0
        while elapsed < wait:
            await asyncio.sleep(LOCK_POLL_INTERVAL)
            elapsed += LOCK_POLL_INTERVAL
            was_set = await redis.set(key, value, nx=True, ex=ttl)
            if was_set:
                return True

        logger.warning("Lock acquisition timed out for %s", key)
        return False
    except Exception as e:
        # The in-process lock still holds; only cross-process exclusion is lost
        logger.warning("Redis lock error for %s: %s. Proceeding with local lock only.", key, str(e))
        return True


async def _release_lock(key: str, value: str) -> None:
    """Release a Redis lock only if we still own it (compare-and-delete)."""
    try:
        from pacefund.utils.redis_client import get_redis
        redis = await get_redis()

        lua_script = """
        if redis.call('get', KEYS[1]) == ARGV[1] then
            return redis.call('del', KEYS[1])
        else
            return 0
        end
        """
        await redis.eval(lua_script, 1, key, value)
    except Exception as e:
        logger.warning("Redis lock release error for %s: %s", key, str(e))


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout."""
    pass
