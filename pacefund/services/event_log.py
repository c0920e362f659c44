"""
Webhook event log - durable audit trail for every inbound Strava webhook.

Each event is written as `processing` at ingestion and moved exactly once to
a terminal status (success, failed, skipped, error) by the background task
that fulfils it. Metadata is an append-only bag: activity payloads fetched
from Strava land under metadata.activities[source], and every database
operation performed on behalf of the event is appended to metadata.database.

DbEventLogStore is the system of record. InMemoryEventLogStore implements
the same interface without durability (last 100 events) for local debugging
and tests.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError

from pacefund.models.webhook_event import (
    WebhookEvent,
    ALL_STATUSES,
    TERMINAL_STATUSES,
    STATUS_PROCESSING,
)
from pacefund.utils.logging import get_correlation_id
from pacefund.utils.timezone import utcnow, ensure_utc

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000
IN_MEMORY_MAX_EVENTS = 100


def _owner_id(data: dict) -> Optional[int]:
    """Pull the athlete id out of a Strava webhook payload, if present."""
    try:
        owner = data.get("owner_id") if isinstance(data, dict) else None
        return int(owner) if owner is not None else None
    except (TypeError, ValueError):
        return None


def _clamp_limit(limit: Optional[int]) -> int:
    if not limit or limit < 1:
        return DEFAULT_LIMIT
    return min(limit, MAX_LIMIT)


def _duration_ms(started_at: Optional[datetime], ended_at: datetime) -> Optional[int]:
    started = ensure_utc(started_at)
    if started is None:
        return None
    return max(0, int((ended_at - started).total_seconds() * 1000))


def _validate_status(status: str) -> None:
    if status not in ALL_STATUSES:
        raise ValueError(f"Unknown event status: {status}")


def _db_operation_entry(operation: str, result, error) -> dict:
    return {
        "timestamp": utcnow().isoformat(),
        "operation": operation,
        "result": result,
        "error": error,
        "success": not error,
    }


class EventLogStore(ABC):
    """Read/write contract shared by every event log backend."""

    @abstractmethod
    async def log_event(self, event_type: str, data: dict, metadata: Optional[dict] = None) -> str:
        """Record a new event in `processing` state. Returns the event id."""
        ...

    @abstractmethod
    async def update_event_status(
        self,
        event_id: str,
        status: str,
        error: Optional[str] = None,
        additional_data: Optional[dict] = None,
    ) -> bool:
        """
        Move an event to `status`, stamping end time and duration.
        Terminal events are never modified. Returns True if the row changed.
        """
        ...

    @abstractmethod
    async def log_activity_data(self, event_id: str, activity_data: dict, source: str = "strava-api") -> None:
        ...

    @abstractmethod
    async def log_database_operation(
        self, event_id: str, operation: str, result, error: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    async def get_events(
        self,
        event_type: Optional[str] = None,
        principal_id: Optional[int] = None,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = DEFAULT_LIMIT,
    ) -> list[dict]:
        """Newest first."""
        ...

    @abstractmethod
    async def get_event_by_id(self, event_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    async def get_stats(self) -> dict:
        ...

    @abstractmethod
    async def clear_old_events(self, days_to_keep: int = 30) -> int:
        """Delete events received more than `days_to_keep` days ago. Returns count removed."""
        ...


class DbEventLogStore(EventLogStore):
    """PostgreSQL-backed event log (webhook_events table)."""

    def __init__(self, session_factory: Optional[Callable] = None):
        if session_factory is None:
            from pacefund.database import async_session_factory
            session_factory = async_session_factory
        self._session_factory = session_factory

    async def log_event(self, event_type: str, data: dict, metadata: Optional[dict] = None) -> str:
        now = utcnow()
        event = WebhookEvent(
            id=uuid.uuid4(),
            event_type=event_type,
            received_at=now,
            raw_payload=data,
            principal_id=_owner_id(data),
            status=STATUS_PROCESSING,
            started_at=now,
            event_metadata=dict(metadata or {}),
            correlation_id=get_correlation_id(),
        )
        event_id = str(event.id)

        try:
            async with self._session_factory() as db:
                db.add(event)
                await db.commit()
            logger.info("Webhook event logged: %s", event_type, extra={"event_id": event_id})
        except SQLAlchemyError as e:
            # Ingestion must still succeed; the ack does not depend on the audit row
            logger.error(
                "Failed to insert webhook event %s: %s", event_id, str(e),
                extra={"event_id": event_id},
            )
        return event_id

    async def _load(self, db, event_id: str) -> Optional[WebhookEvent]:
        try:
            key = uuid.UUID(str(event_id))
        except ValueError:
            return None
        return await db.get(WebhookEvent, key)

    async def update_event_status(
        self,
        event_id: str,
        status: str,
        error: Optional[str] = None,
        additional_data: Optional[dict] = None,
    ) -> bool:
        _validate_status(status)
        try:
            async with self._session_factory() as db:
                event = await self._load(db, event_id)
                if event is None:
                    logger.error("Event %s not found for update", event_id)
                    return False
                if event.is_terminal:
                    logger.warning(
                        "Event %s already terminal (%s), ignoring transition to %s",
                        event_id, event.status, status,
                    )
                    return False
                if status == STATUS_PROCESSING:
                    return False

                ended_at = utcnow()
                event.status = status
                event.error = error
                event.ended_at = ended_at
                event.duration_ms = _duration_ms(event.started_at, ended_at)
                if additional_data:
                    event.event_metadata = {**(event.event_metadata or {}), **additional_data}
                await db.commit()

            logger.info(
                "Event %s status updated: %s (%sms)", event_id, status, event.duration_ms,
                extra={"event_id": event_id},
            )
            return True
        except SQLAlchemyError as e:
            logger.error("Failed to update event %s: %s", event_id, str(e))
            return False

    async def log_activity_data(self, event_id: str, activity_data: dict, source: str = "strava-api") -> None:
        try:
            async with self._session_factory() as db:
                event = await self._load(db, event_id)
                if event is None:
                    logger.error("Event %s not found for activity data logging", event_id)
                    return
                metadata = dict(event.event_metadata or {})
                activities = dict(metadata.get("activities") or {})
                activities[source] = {"timestamp": utcnow().isoformat(), "data": activity_data}
                metadata["activities"] = activities
                event.event_metadata = metadata
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to log activity data for event %s: %s", event_id, str(e))

    async def log_database_operation(
        self, event_id: str, operation: str, result, error: Optional[str] = None,
    ) -> None:
        try:
            async with self._session_factory() as db:
                event = await self._load(db, event_id)
                if event is None:
                    logger.error("Event %s not found for database operation logging", event_id)
                    return
                metadata = dict(event.event_metadata or {})
                trace = list(metadata.get("database") or [])
                trace.append(_db_operation_entry(operation, result, error))
                metadata["database"] = trace
                event.event_metadata = metadata
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to log database operation for event %s: %s", event_id, str(e))

    async def get_events(
        self,
        event_type: Optional[str] = None,
        principal_id: Optional[int] = None,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = DEFAULT_LIMIT,
    ) -> list[dict]:
        query = select(WebhookEvent).order_by(WebhookEvent.received_at.desc())
        if event_type:
            query = query.where(WebhookEvent.event_type == event_type)
        if principal_id is not None:
            query = query.where(WebhookEvent.principal_id == principal_id)
        if status:
            query = query.where(WebhookEvent.status == status)
        if since is not None:
            query = query.where(WebhookEvent.received_at >= ensure_utc(since))
        query = query.limit(_clamp_limit(limit))

        async with self._session_factory() as db:
            result = await db.execute(query)
            return [event.to_dict() for event in result.scalars().all()]

    async def get_event_by_id(self, event_id: str) -> Optional[dict]:
        async with self._session_factory() as db:
            event = await self._load(db, event_id)
            return event.to_dict() if event else None

    async def get_stats(self) -> dict:
        async with self._session_factory() as db:
            grouped = await db.execute(
                select(
                    WebhookEvent.event_type,
                    WebhookEvent.status,
                    func.count(WebhookEvent.id),
                ).group_by(WebhookEvent.event_type, WebhookEvent.status)
            )
            rows = grouped.all()

            summary = await db.execute(
                select(
                    func.avg(WebhookEvent.duration_ms),
                    func.min(WebhookEvent.received_at),
                    func.max(WebhookEvent.received_at),
                )
            )
            avg_duration, oldest, newest = summary.one()

        by_type: dict[str, int] = {}
        by_status: dict[str, int] = {}
        for event_type, status, count in rows:
            by_type[event_type] = by_type.get(event_type, 0) + count
            by_status[status] = by_status.get(status, 0) + count

        return {
            "total": sum(by_type.values()),
            "by_type": by_type,
            "by_status": by_status,
            "average_processing_time_ms": int(round(avg_duration)) if avg_duration is not None else 0,
            "oldest_event": ensure_utc(oldest).isoformat() if oldest else None,
            "newest_event": ensure_utc(newest).isoformat() if newest else None,
        }

    async def clear_old_events(self, days_to_keep: int = 30) -> int:
        if days_to_keep < 0:
            raise ValueError("days_to_keep must be >= 0")
        cutoff = utcnow() - timedelta(days=days_to_keep)

        async with self._session_factory() as db:
            result = await db.execute(
                delete(WebhookEvent).where(WebhookEvent.received_at < cutoff)
            )
            await db.commit()
            count = result.rowcount or 0

        logger.info("Cleared %d webhook events older than %d days", count, days_to_keep)
        return count


class InMemoryEventLogStore(EventLogStore):
    """
    Non-durable event log holding the most recent events in process memory.
    Not a system of record: contents vanish on restart.
    """

    def __init__(self, max_events: int = IN_MEMORY_MAX_EVENTS):
        self._events: deque[dict] = deque(maxlen=max_events)

    def _find(self, event_id: str) -> Optional[dict]:
        for event in self._events:
            if event["id"] == str(event_id):
                return event
        return None

    async def log_event(self, event_type: str, data: dict, metadata: Optional[dict] = None) -> str:
        now = utcnow()
        event_id = str(uuid.uuid4())
        self._events.appendleft({
            "id": event_id,
            "type": event_type,
            "received_at": now.isoformat(),
            "raw_payload": data,
            "principal_id": _owner_id(data),
            "status": STATUS_PROCESSING,
            "started_at": now.isoformat(),
            "ended_at": None,
            "duration_ms": None,
            "error": None,
            "metadata": dict(metadata or {}),
            "correlation_id": get_correlation_id(),
        })
        return event_id

    async def update_event_status(
        self,
        event_id: str,
        status: str,
        error: Optional[str] = None,
        additional_data: Optional[dict] = None,
    ) -> bool:
        _validate_status(status)
        event = self._find(event_id)
        if event is None or event["status"] in TERMINAL_STATUSES or status == STATUS_PROCESSING:
            return False
        ended_at = utcnow()
        event["status"] = status
        event["error"] = error
        event["ended_at"] = ended_at.isoformat()
        event["duration_ms"] = _duration_ms(datetime.fromisoformat(event["started_at"]), ended_at)
        if additional_data:
            event["metadata"] = {**event["metadata"], **additional_data}
        return True

    async def log_activity_data(self, event_id: str, activity_data: dict, source: str = "strava-api") -> None:
        event = self._find(event_id)
        if event is None:
            return
        activities = dict(event["metadata"].get("activities") or {})
        activities[source] = {"timestamp": utcnow().isoformat(), "data": activity_data}
        event["metadata"] = {**event["metadata"], "activities": activities}

    async def log_database_operation(
        self, event_id: str, operation: str, result, error: Optional[str] = None,
    ) -> None:
        event = self._find(event_id)
        if event is None:
            return
        trace = list(event["metadata"].get("database") or [])
        trace.append(_db_operation_entry(operation, result, error))
        event["metadata"] = {**event["metadata"], "database": trace}

    async def get_events(
        self,
        event_type: Optional[str] = None,
        principal_id: Optional[int] = None,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = DEFAULT_LIMIT,
    ) -> list[dict]:
        since_utc = ensure_utc(since)
        matches = []
        for event in self._events:
            if event_type and event["type"] != event_type:
                continue
            if principal_id is not None and event["principal_id"] != principal_id:
                continue
            if status and event["status"] != status:
                continue
            if since_utc and datetime.fromisoformat(event["received_at"]) < since_utc:
                continue
            matches.append(event)
        return matches[:_clamp_limit(limit)]

    async def get_event_by_id(self, event_id: str) -> Optional[dict]:
        return self._find(event_id)

    async def get_stats(self) -> dict:
        by_type: dict[str, int] = {}
        by_status: dict[str, int] = {}
        durations = []
        for event in self._events:
            by_type[event["type"]] = by_type.get(event["type"], 0) + 1
            by_status[event["status"]] = by_status.get(event["status"], 0) + 1
            if event["duration_ms"] is not None:
                durations.append(event["duration_ms"])
        return {
            "total": len(self._events),
            "by_type": by_type,
            "by_status": by_status,
            "average_processing_time_ms": round(sum(durations) / len(durations)) if durations else 0,
            "oldest_event": self._events[-1]["received_at"] if self._events else None,
            "newest_event": self._events[0]["received_at"] if self._events else None,
        }

    async def clear_old_events(self, days_to_keep: int = 30) -> int:
        if days_to_keep < 0:
            raise ValueError("days_to_keep must be >= 0")
        cutoff = utcnow() - timedelta(days=days_to_keep)
        kept = [e for e in self._events if datetime.fromisoformat(e["received_at"]) >= cutoff]
        removed = len(self._events) - len(kept)
        self._events = deque(kept, maxlen=self._events.maxlen)
        return removed


_event_log: Optional[EventLogStore] = None


def get_event_log() -> EventLogStore:
    """Process-wide database-backed event log."""
    global _event_log
    if _event_log is None:
        _event_log = DbEventLogStore()
    return _event_log
