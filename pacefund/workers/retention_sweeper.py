"""
Webhook event retention sweeper - deletes audit rows past the retention window.
Runs once a day when RETENTION_SWEEP_ENABLED is set.
"""
import asyncio
import logging

from pacefund.config import get_settings
from pacefund.services.event_log import get_event_log
from pacefund.utils.redis_client import heartbeat

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_SECONDS = 86400  # daily
HEARTBEAT_TTL_SECONDS = SWEEP_INTERVAL_SECONDS * 2


async def sweep_once() -> int:
    """Run one sweep with the configured retention. Returns rows removed."""
    days = get_settings().webhook_event_retention_days
    return await get_event_log().clear_old_events(days)


async def run_retention_sweeper():
    """Main sweeper loop."""
    logger.info("Retention sweeper started")

    while True:
        try:
            removed = await sweep_once()
            if removed > 0:
                logger.info("Retention sweeper removed %d webhook events", removed)
        except Exception as e:
            logger.error("Retention sweeper error: %s", str(e), exc_info=True)

        await heartbeat("retention_sweeper", HEARTBEAT_TTL_SECONDS)
        await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
