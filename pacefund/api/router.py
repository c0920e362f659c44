"""
API router — aggregates all route modules.
"""
from fastapi import APIRouter
from pacefund.api.webhooks import router as webhooks_router
from pacefund.api.webhook_events import router as webhook_events_router
from pacefund.api.auth import router as auth_router
from pacefund.api.payments import router as payments_router
from pacefund.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(webhooks_router)
api_router.include_router(webhook_events_router)
api_router.include_router(auth_router)
api_router.include_router(payments_router)
api_router.include_router(health_router)
