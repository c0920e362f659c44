"""
Strava webhook processor - acknowledge fast, fulfil in the background.

ingest() records the event as `processing` and schedules a detached task;
it never waits on Strava, the token endpoint or activity writes, so the
2-second delivery deadline is protected from downstream latency.

The background task classifies the payload and runs to exactly one terminal
status on the event log:
- activity create/update  -> ensure token, fetch activity, upsert by upstream id
- activity delete         -> soft-delete (principal_id + id), no-op if absent
- athlete deauthorize     -> soft-delete all activities, clear tokens, keep principal
- anything else           -> skipped

Upstream rejections and transport failures end as `failed` (no retry here;
Strava redelivery creates a new event). Unexpected exceptions end as `error`
and are never propagated - the ack has already been sent.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from pacefund.models.activity import Activity
from pacefund.models.webhook_event import (
    STATUS_SUCCESS,
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_ERROR,
)
from pacefund.schemas.webhook_payloads import StravaWebhookPayload, WebhookVariant, classify
from pacefund.services.event_log import EventLogStore, get_event_log
from pacefund.services.strava import StravaClient, get_strava_client
from pacefund.services.token_manager import TokenManager, get_token_manager
from pacefund.utils.errors import (
    AuthRevoked,
    CredentialMissing,
    RefreshError,
    TransportError,
    UpstreamRejected,
)
from pacefund.utils.timezone import utcnow

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 10.0


@dataclass
class ProcessingOutcome:
    status: str
    error: Optional[str] = None
    metadata: dict = field(default_factory=dict)


def _parse_start_date(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _activity_fields(activity_data: dict) -> dict:
    """Core columns copied out of the Strava activity payload."""
    return {
        "name": activity_data.get("name"),
        "activity_type": activity_data.get("sport_type") or activity_data.get("type"),
        "distance": activity_data.get("distance"),
        "moving_time": activity_data.get("moving_time"),
        "start_date": _parse_start_date(activity_data.get("start_date")),
        "raw_payload": activity_data,
    }


class WebhookProcessor:
    """Ingests Strava events and fulfils them asynchronously."""

    def __init__(
        self,
        event_log: Optional[EventLogStore] = None,
        token_manager: Optional[TokenManager] = None,
        strava: Optional[StravaClient] = None,
        session_factory: Optional[Callable] = None,
    ):
        if session_factory is None:
            from pacefund.database import async_session_factory
            session_factory = async_session_factory
        self._event_log = event_log
        self._token_manager = token_manager
        self._strava = strava
        self._session_factory = session_factory
        self._tasks: set[asyncio.Task] = set()

    @property
    def event_log(self) -> EventLogStore:
        if self._event_log is None:
            self._event_log = get_event_log()
        return self._event_log

    @property
    def token_manager(self) -> TokenManager:
        if self._token_manager is None:
            self._token_manager = get_token_manager()
        return self._token_manager

    @property
    def strava(self) -> StravaClient:
        if self._strava is None:
            self._strava = get_strava_client()
        return self._strava

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    # --- Ack path ---

    async def ingest(self, event_type: str, payload: dict, metadata: Optional[dict] = None) -> str:
        """Persist the event as `processing`, schedule fulfilment, return the event id."""
        event_id = await self.event_log.log_event(event_type, payload, metadata)
        self.dispatch(event_id, payload)
        return event_id

    def dispatch(self, event_id: str, payload: dict) -> asyncio.Task:
        # create_task copies the current context, so the correlation id follows the event
        task = asyncio.create_task(self.process_event(event_id, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_for_pending(self, timeout: float = SHUTDOWN_GRACE_SECONDS) -> None:
        """Let in-flight events finish; cancel whatever outlives the timeout."""
        if not self._tasks:
            return
        pending_tasks = list(self._tasks)
        logger.info("Waiting for %d in-flight webhook events", len(pending_tasks))
        done, pending = await asyncio.wait(pending_tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Cancelled %d webhook events still running at shutdown", len(pending))

    # --- Background fulfilment ---

    async def process_event(self, event_id: str, payload: dict) -> str:
        """Run one event to a terminal status. Never raises. Returns the status."""
        try:
            event = StravaWebhookPayload.model_validate(payload)
            variant = classify(event)

            if variant is WebhookVariant.UNHANDLED:
                reason = f"Unhandled event: object_type={event.object_type} aspect_type={event.aspect_type}"
                logger.info("Skipping event %s: %s", event_id, reason, extra={"event_id": event_id})
                outcome = ProcessingOutcome(STATUS_SKIPPED, metadata={"reason": reason})
            elif variant in (WebhookVariant.ACTIVITY_CREATE, WebhookVariant.ACTIVITY_UPDATE):
                outcome = await self._handle_activity_upsert(event_id, event)
            elif variant is WebhookVariant.ACTIVITY_DELETE:
                outcome = await self._handle_activity_delete(event_id, event)
            else:
                outcome = await self._handle_deauthorization(event_id, event.owner_id)

            outcome.metadata.setdefault("variant", variant.value)
            await self.event_log.update_event_status(
                event_id, outcome.status, outcome.error, outcome.metadata,
            )
            return outcome.status
        except Exception as e:
            logger.error(
                "Error processing webhook event %s: %s", event_id, str(e),
                exc_info=True, extra={"event_id": event_id},
            )
            await self.event_log.update_event_status(event_id, STATUS_ERROR, str(e))
            return STATUS_ERROR

    async def _handle_activity_upsert(
        self, event_id: str, event: StravaWebhookPayload,
    ) -> ProcessingOutcome:
        activity_id, principal_id = event.object_id, event.owner_id
        logger.info(
            "Processing %s event for activity %s by athlete %s",
            event.aspect_type, activity_id, principal_id,
            extra={"event_id": event_id, "activity_id": activity_id, "principal_id": principal_id},
        )

        try:
            access_token = await self.token_manager.ensure_valid(principal_id)
        except CredentialMissing as e:
            return ProcessingOutcome(STATUS_FAILED, str(e), {"cause": "credential_missing"})
        except AuthRevoked as e:
            logger.warning(
                "Authorization revoked for athlete %s, cleaning up", principal_id,
                extra={"event_id": event_id, "principal_id": principal_id},
            )
            await self._deauthorize(event_id, principal_id)
            return ProcessingOutcome(STATUS_FAILED, str(e), {"cause": "auth_revoked"})
        except RefreshError as e:
            return ProcessingOutcome(STATUS_FAILED, str(e), {"cause": "refresh_failed"})

        try:
            activity_data = await self.strava.fetch_activity(access_token, activity_id)
        except UpstreamRejected as e:
            logger.warning(
                "Failed to fetch activity %s: HTTP %s", activity_id, e.status_code,
                extra={"event_id": event_id, "activity_id": activity_id},
            )
            return ProcessingOutcome(
                STATUS_FAILED,
                f"Strava API returned HTTP {e.status_code}",
                {"cause": "upstream_rejected", "http_status": e.status_code},
            )
        except TransportError as e:
            return ProcessingOutcome(
                STATUS_FAILED, str(e), {"cause": "transport_error", "timeout": e.timeout},
            )

        await self.event_log.log_activity_data(event_id, activity_data, "strava-api")
        try:
            operation, result = await self._upsert_activity(event_id, activity_id, principal_id, activity_data)
        except SQLAlchemyError as e:
            await self.event_log.log_database_operation(
                event_id, "upsert_activity",
                {"activity_id": activity_id, "principal_id": principal_id}, error=str(e),
            )
            raise
        await self.event_log.log_database_operation(event_id, operation, result)
        return ProcessingOutcome(STATUS_SUCCESS)

    async def _upsert_activity(
        self, event_id: str, activity_id: int, principal_id: int, activity_data: dict,
    ) -> tuple[str, dict]:
        """Insert or update by upstream id. A concurrent insert of the same id falls back to update."""
        fields = _activity_fields(activity_data)
        try:
            operation = await self._write_activity(activity_id, principal_id, fields)
        except IntegrityError:
            logger.info(
                "Activity %s inserted concurrently, retrying as update", activity_id,
                extra={"event_id": event_id, "activity_id": activity_id},
            )
            operation = await self._write_activity(activity_id, principal_id, fields)
        return operation, {"activity_id": activity_id, "principal_id": principal_id}

    async def _write_activity(self, activity_id: int, principal_id: int, fields: dict) -> str:
        async with self._session_factory() as db:
            activity = await db.get(Activity, activity_id)
            now = utcnow()
            if activity is None:
                db.add(Activity(
                    id=activity_id,
                    principal_id=principal_id,
                    is_deleted=False,
                    created_at=now,
                    updated_at=now,
                    **fields,
                ))
                operation = "insert_activity"
            else:
                for key, value in fields.items():
                    setattr(activity, key, value)
                activity.updated_at = now
                operation = "update_activity"
            await db.commit()
        return operation

    async def _handle_activity_delete(
        self, event_id: str, event: StravaWebhookPayload,
    ) -> ProcessingOutcome:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(Activity)
                    .where(Activity.id == event.object_id, Activity.principal_id == event.owner_id)
                    .values(is_deleted=True, updated_at=utcnow())
                )
                await db.commit()
        except SQLAlchemyError as e:
            await self.event_log.log_database_operation(
                event_id, "soft_delete_activity", {"activity_id": event.object_id}, error=str(e),
            )
            raise
        rows = result.rowcount or 0
        await self.event_log.log_database_operation(
            event_id, "soft_delete_activity", {"activity_id": event.object_id, "rows": rows},
        )
        if not rows:
            logger.info(
                "Delete for unknown activity %s, nothing to do", event.object_id,
                extra={"event_id": event_id, "activity_id": event.object_id},
            )
        return ProcessingOutcome(STATUS_SUCCESS, metadata={"rows_affected": rows})

    async def _handle_deauthorization(self, event_id: str, principal_id: int) -> ProcessingOutcome:
        logger.info(
            "Athlete deauthorization event for athlete %s", principal_id,
            extra={"event_id": event_id, "principal_id": principal_id},
        )
        await self._deauthorize(event_id, principal_id)
        return ProcessingOutcome(STATUS_SUCCESS)

    async def _deauthorize(self, event_id: str, principal_id: int) -> None:
        """Soft-delete every activity for the athlete and drop their tokens."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(Activity)
                    .where(Activity.principal_id == principal_id)
                    .values(is_deleted=True, updated_at=utcnow())
                )
                await db.commit()
        except SQLAlchemyError as e:
            await self.event_log.log_database_operation(
                event_id, "soft_delete_principal_activities", {"principal_id": principal_id}, error=str(e),
            )
            raise
        await self.event_log.log_database_operation(
            event_id, "soft_delete_principal_activities",
            {"principal_id": principal_id, "rows": result.rowcount or 0},
        )

        try:
            cleared = await self.token_manager.clear_credential(principal_id)
        except SQLAlchemyError as e:
            await self.event_log.log_database_operation(
                event_id, "clear_credential", {"principal_id": principal_id}, error=str(e),
            )
            raise
        await self.event_log.log_database_operation(
            event_id, "clear_credential", {"principal_id": principal_id, "cleared": cleared},
        )


_processor: Optional[WebhookProcessor] = None


def get_webhook_processor() -> WebhookProcessor:
    global _processor
    if _processor is None:
        _processor = WebhookProcessor()
    return _processor
