"""
Database models - import all models here so Alembic can discover them.
"""
from pacefund.models.principal import Principal
from pacefund.models.activity import Activity
from pacefund.models.webhook_event import WebhookEvent

__all__ = [
    "Principal",
    "Activity",
    "WebhookEvent",
]
