"""
Pacefund - activity-backed sponsorships (Strava webhooks + USDC payments).
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from pacefund.config import get_settings
from pacefund.api.router import api_router
from pacefund.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("pacefund")

SHUTDOWN_TIMEOUT_SECONDS = 10.0


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("Pacefund starting up (env=%s)", settings.app_env)

    if not settings.strava_webhook_verify_token:
        logger.warning(
            "STRAVA_WEBHOOK_VERIFY_TOKEN not set - every subscription handshake will be rejected."
        )
    if not settings.strava_client_id or not settings.strava_client_secret:
        logger.warning(
            "STRAVA_CLIENT_ID/STRAVA_CLIENT_SECRET not set - token refresh will fail."
        )

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    worker_tasks: list[asyncio.Task] = []

    if settings.retention_sweep_enabled:
        from pacefund.workers.retention_sweeper import run_retention_sweeper
        worker_tasks.append(asyncio.create_task(run_retention_sweeper()))
        logger.info(
            "Retention sweeper started (keep %d days)", settings.webhook_event_retention_days,
        )
    else:
        logger.info("Retention sweeper disabled (RETENTION_SWEEP_ENABLED=false)")

    yield

    logger.info("Pacefund shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        await asyncio.gather(*worker_tasks, return_exceptions=True)

    # Let acknowledged webhooks finish, then stop payment polling
    from pacefund.services.webhook_processor import get_webhook_processor
    from pacefund.services.payment_monitor import get_payment_monitor
    await get_webhook_processor().wait_for_pending(SHUTDOWN_TIMEOUT_SECONDS)
    await get_payment_monitor().shutdown()
    logger.info("Pacefund shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Pacefund",
        description="Strava webhook ingestion, token lifecycle and USDC sponsorship confirmation",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            settings.app_base_url,
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID", "Accept", "Origin"],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()
