"""
Webhook event log browsing and retention.

- GET    /api/v1/webhook-events              - filtered list + stats
- GET    /api/v1/webhook-events/{event_id}   - single event
- DELETE /api/v1/webhook-events?days_to_keep  - retention sweep
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from pacefund.models.webhook_event import ALL_STATUSES
from pacefund.schemas.api_responses import RetentionSweepResponse, WebhookEventListResponse
from pacefund.services.event_log import EventLogStore, get_event_log, DEFAULT_LIMIT, MAX_LIMIT

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhook-events", tags=["webhook-events"])


@router.get("", response_model=WebhookEventListResponse)
async def list_webhook_events(
    type: Optional[str] = Query(None),
    athlete_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    event_log: EventLogStore = Depends(get_event_log),
):
    if status and status not in ALL_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")

    events = await event_log.get_events(
        event_type=type,
        principal_id=athlete_id,
        status=status,
        since=since,
        limit=limit,
    )
    stats = await event_log.get_stats()
    return WebhookEventListResponse(
        events=events,
        stats=stats,
        filters={
            "type": type,
            "athlete_id": athlete_id,
            "status": status,
            "since": since.isoformat() if since else None,
            "limit": limit,
        },
        total_events=len(events),
    )


@router.get("/{event_id}")
async def get_webhook_event(
    event_id: str,
    event_log: EventLogStore = Depends(get_event_log),
):
    event = await event_log.get_event_by_id(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@router.delete("", response_model=RetentionSweepResponse)
async def clear_webhook_events(
    days_to_keep: int = Query(30, ge=0),
    event_log: EventLogStore = Depends(get_event_log),
):
    cleared = await event_log.clear_old_events(days_to_keep)
    logger.info("Manual retention sweep removed %d events", cleared)
    return RetentionSweepResponse(
        success=True,
        cleared_count=cleared,
        days_to_keep=days_to_keep,
        message=f"Cleared {cleared} events older than {days_to_keep} days",
    )
