"""
Shared async Redis connection (lazily initialized).
Used for refresh locks and worker heartbeats. Every caller
treats Redis as optional and degrades when it is unreachable.
"""
from datetime import datetime, timezone

_redis_client = None

HEARTBEAT_KEY_PREFIX = "pacefund:worker_health:"


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from pacefund.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


async def heartbeat(worker_name: str, ttl_seconds: int) -> None:
    """Store a worker heartbeat timestamp. Never raises."""
    try:
        redis = await get_redis()
        await redis.set(
            f"{HEARTBEAT_KEY_PREFIX}{worker_name}",
            datetime.now(timezone.utc).isoformat(),
            ex=ttl_seconds,
        )
    except Exception:
        pass
