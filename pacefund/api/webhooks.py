"""
Strava push subscription endpoints.

GET  /api/v1/webhook/strava - subscription handshake (hub.challenge echo)
POST /api/v1/webhook/strava - event delivery

Strava expects a 200 within 2 seconds and retries otherwise. The POST handler
only validates, records the event as `processing` and schedules fulfilment;
every downstream call happens after the response is sent.
"""
import hmac
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import ValidationError as PydanticValidationError

from pacefund.config import get_settings
from pacefund.models.webhook_event import STATUS_SUCCESS, STATUS_FAILED
from pacefund.schemas.api_responses import WebhookAckResponse
from pacefund.schemas.webhook_payloads import StravaWebhookPayload
from pacefund.services.event_log import EventLogStore, get_event_log
from pacefund.services.webhook_processor import WebhookProcessor, get_webhook_processor
from pacefund.utils.metrics import Timer

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhook", tags=["webhooks"])


def _verify_token_matches(provided: Optional[str]) -> bool:
    expected = get_settings().strava_webhook_verify_token
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


@router.get("/strava")
async def strava_subscription_handshake(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    event_log: EventLogStore = Depends(get_event_log),
):
    """
    Strava subscription validation.
    Echoes hub.challenge when hub.verify_token matches our configured token.
    """
    # Verify token is never stored
    event_id = await event_log.log_event(
        "validation",
        {"hub.mode": mode, "hub.challenge": challenge},
    )

    if mode != "subscribe" or not challenge or not _verify_token_matches(verify_token):
        logger.warning(
            "Webhook handshake rejected: mode=%s", mode,
            extra={"event_id": event_id, "error_code": "handshake_rejected"},
        )
        await event_log.update_event_status(
            event_id, STATUS_FAILED, "Handshake rejected", {"mode": mode},
        )
        raise HTTPException(status_code=403, detail="Forbidden")

    await event_log.update_event_status(event_id, STATUS_SUCCESS, None, {"mode": mode})
    logger.info("Webhook subscription handshake accepted", extra={"event_id": event_id})
    return {"hub.challenge": challenge}


@router.post("/strava", response_model=WebhookAckResponse)
async def strava_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """Acknowledge a Strava event and process it in the background."""
    timer = Timer().start()

    body = await request.body()
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Payload must be a JSON object")

    try:
        event = StravaWebhookPayload.model_validate(payload)
    except PydanticValidationError as e:
        logger.warning("Malformed Strava webhook payload: %s", e.error_count())
        raise HTTPException(status_code=400, detail="Malformed webhook payload")

    event_id = await processor.ingest(
        "webhook",
        payload,
        {"object_type": event.object_type, "aspect_type": event.aspect_type},
    )

    ack_ms = timer.stop()
    logger.info(
        "Webhook acknowledged in %dms: %s/%s",
        ack_ms, event.object_type, event.aspect_type,
        extra={"event_id": event_id, "principal_id": event.owner_id},
    )
    return WebhookAckResponse(success=True, event_id=event_id)
