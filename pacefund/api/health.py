"""
Health check endpoints - used by load balancers and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + Redis + worker heartbeats)
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text

from pacefund.database import get_db
from pacefund.utils.redis_client import get_redis, HEARTBEAT_KEY_PREFIX

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"
WORKER_NAMES = ("retention_sweeper",)


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
):
    """
    Readiness check - verifies database and Redis connectivity.
    Worker heartbeats are reported but do not affect readiness.
    """
    checks = {"database": False, "redis": False}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))

    try:
        redis = await get_redis()
        await redis.ping()
        checks["redis"] = True
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))

    workers = await _check_workers() if checks["redis"] else {}

    all_healthy = all(checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "workers": workers,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def _check_workers() -> dict:
    """Last heartbeat per background worker (None when missing or expired)."""
    workers = {}
    try:
        redis = await get_redis()
        for name in WORKER_NAMES:
            beat = await redis.get(f"{HEARTBEAT_KEY_PREFIX}{name}")
            workers[name] = {"healthy": beat is not None, "last_heartbeat": beat}
    except Exception as e:
        logger.warning("Worker heartbeat check failed: %s", str(e))
    return workers
