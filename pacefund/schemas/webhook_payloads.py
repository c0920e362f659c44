"""
Strava push webhook payload and its classification.

Strava sends one shape for every event; the meaningful variant is decided by
(object_type, aspect_type). Combinations we do not act on map to UNHANDLED,
which the processor records as `skipped` rather than raising.
"""
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class StravaWebhookPayload(BaseModel):
    """Strava push subscription event."""
    object_type: str  # activity, athlete
    object_id: int
    aspect_type: str  # create, update, delete
    owner_id: int
    event_time: int
    subscription_id: Optional[int] = None
    updates: dict = Field(default_factory=dict)


class WebhookVariant(str, Enum):
    ACTIVITY_CREATE = "activity_create"
    ACTIVITY_UPDATE = "activity_update"
    ACTIVITY_DELETE = "activity_delete"
    ATHLETE_DEAUTHORIZE = "athlete_deauthorize"
    UNHANDLED = "unhandled"


_ACTIVITY_VARIANTS = {
    "create": WebhookVariant.ACTIVITY_CREATE,
    "update": WebhookVariant.ACTIVITY_UPDATE,
    "delete": WebhookVariant.ACTIVITY_DELETE,
}


def classify(payload: StravaWebhookPayload) -> WebhookVariant:
    """Map a payload onto the variant the processor handles."""
    if payload.object_type == "activity":
        return _ACTIVITY_VARIANTS.get(payload.aspect_type, WebhookVariant.UNHANDLED)

    if payload.object_type == "athlete" and payload.aspect_type == "update":
        # Strava only emits athlete updates for revoked access ({"authorized": "false"})
        authorized = str(payload.updates.get("authorized", "false")).lower()
        if authorized == "false":
            return WebhookVariant.ATHLETE_DEAUTHORIZE

    return WebhookVariant.UNHANDLED
