"""
Tests for pacefund/services/event_log.py — webhook event audit trail.
"""
import uuid
import pytest
from datetime import timedelta

from pacefund.models.webhook_event import WebhookEvent
from pacefund.services.event_log import DbEventLogStore, InMemoryEventLogStore
from pacefund.utils.timezone import utcnow


@pytest.fixture
def store(session_factory):
    return DbEventLogStore(session_factory=session_factory)


# ---------------------------------------------------------------------------
# log_event / update_event_status
# ---------------------------------------------------------------------------


class TestLogEvent:
    @pytest.mark.asyncio
    async def test_creates_processing_row(self, store, sample_webhook_payload):
        event_id = await store.log_event("webhook", sample_webhook_payload, {"aspect_type": "create"})

        event = await store.get_event_by_id(event_id)
        assert event["status"] == "processing"
        assert event["type"] == "webhook"
        assert event["principal_id"] == 42
        assert event["raw_payload"]["object_id"] == 555
        assert event["metadata"] == {"aspect_type": "create"}
        assert event["started_at"] is not None
        assert event["ended_at"] is None

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, store, sample_webhook_payload):
        ids = {await store.log_event("webhook", sample_webhook_payload) for _ in range(5)}
        assert len(ids) == 5


class TestUpdateEventStatus:
    @pytest.mark.asyncio
    async def test_terminal_status_sets_duration(self, store, sample_webhook_payload):
        event_id = await store.log_event("webhook", sample_webhook_payload)

        updated = await store.update_event_status(event_id, "success", None, {"variant": "activity_create"})

        assert updated is True
        event = await store.get_event_by_id(event_id)
        assert event["status"] == "success"
        assert event["ended_at"] is not None
        assert event["duration_ms"] >= 0
        assert event["metadata"]["variant"] == "activity_create"

    @pytest.mark.asyncio
    async def test_terminal_status_is_final(self, store, sample_webhook_payload):
        """A second transition never overwrites the first terminal status."""
        event_id = await store.log_event("webhook", sample_webhook_payload)
        await store.update_event_status(event_id, "failed", "HTTP 404")

        assert await store.update_event_status(event_id, "success") is False
        assert await store.update_event_status(event_id, "processing") is False

        event = await store.get_event_by_id(event_id)
        assert event["status"] == "failed"
        assert event["error"] == "HTTP 404"

    @pytest.mark.asyncio
    async def test_metadata_is_merged_not_replaced(self, store, sample_webhook_payload):
        event_id = await store.log_event("webhook", sample_webhook_payload, {"source": "strava"})
        await store.log_database_operation(event_id, "insert_activity", {"activity_id": 555})

        await store.update_event_status(event_id, "success", None, {"variant": "activity_create"})

        metadata = (await store.get_event_by_id(event_id))["metadata"]
        assert metadata["source"] == "strava"
        assert metadata["variant"] == "activity_create"
        assert metadata["database"][0]["operation"] == "insert_activity"

    @pytest.mark.asyncio
    async def test_unknown_event_returns_false(self, store):
        assert await store.update_event_status(str(uuid.uuid4()), "success") is False
        assert await store.update_event_status("not-a-uuid", "success") is False

    @pytest.mark.asyncio
    async def test_rejects_unknown_status(self, store, sample_webhook_payload):
        event_id = await store.log_event("webhook", sample_webhook_payload)
        with pytest.raises(ValueError):
            await store.update_event_status(event_id, "done")


# ---------------------------------------------------------------------------
# Metadata helpers
# ---------------------------------------------------------------------------


class TestMetadataHelpers:
    @pytest.mark.asyncio
    async def test_log_activity_data_keyed_by_source(self, store, sample_webhook_payload):
        event_id = await store.log_event("webhook", sample_webhook_payload)

        await store.log_activity_data(event_id, {"id": 555, "name": "Run"})

        metadata = (await store.get_event_by_id(event_id))["metadata"]
        assert metadata["activities"]["strava-api"]["data"]["name"] == "Run"
        assert "timestamp" in metadata["activities"]["strava-api"]

    @pytest.mark.asyncio
    async def test_database_operations_append(self, store, sample_webhook_payload):
        event_id = await store.log_event("webhook", sample_webhook_payload)

        await store.log_database_operation(event_id, "insert_activity", {"activity_id": 555})
        await store.log_database_operation(event_id, "clear_credential", None, error="boom")

        trace = (await store.get_event_by_id(event_id))["metadata"]["database"]
        assert [entry["operation"] for entry in trace] == ["insert_activity", "clear_credential"]
        assert trace[0]["success"] is True
        assert trace[1]["success"] is False
        assert trace[1]["error"] == "boom"


# ---------------------------------------------------------------------------
# Queries, stats, retention
# ---------------------------------------------------------------------------


class TestQueries:
    @pytest.mark.asyncio
    async def test_filters(self, store, sample_webhook_payload):
        first = await store.log_event("webhook", sample_webhook_payload)
        await store.log_event("webhook", {**sample_webhook_payload, "owner_id": 7})
        await store.log_event("validation", {"hub.mode": "subscribe"})
        await store.update_event_status(first, "success")

        assert len(await store.get_events()) == 3
        assert len(await store.get_events(event_type="webhook")) == 2
        assert len(await store.get_events(principal_id=7)) == 1
        by_status = await store.get_events(status="success")
        assert [e["id"] for e in by_status] == [first]
        assert len(await store.get_events(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_get_stats(self, store, sample_webhook_payload):
        first = await store.log_event("webhook", sample_webhook_payload)
        await store.log_event("validation", {"hub.mode": "subscribe"})
        await store.update_event_status(first, "success")

        stats = await store.get_stats()

        assert stats["total"] == 2
        assert stats["by_type"] == {"webhook": 1, "validation": 1}
        assert stats["by_status"] == {"success": 1, "processing": 1}
        assert stats["oldest_event"] is not None
        assert stats["newest_event"] is not None

    @pytest.mark.asyncio
    async def test_stats_empty(self, store):
        stats = await store.get_stats()
        assert stats["total"] == 0
        assert stats["average_processing_time_ms"] == 0
        assert stats["oldest_event"] is None


class TestClearOldEvents:
    @pytest.mark.asyncio
    async def test_removes_only_events_past_retention(self, store, db):
        """Events aged 40 and 5 days with a 30-day window: exactly one removed."""
        now = utcnow()
        old = WebhookEvent(
            event_type="webhook", raw_payload={}, status="success",
            received_at=now - timedelta(days=40), event_metadata={},
        )
        recent = WebhookEvent(
            event_type="webhook", raw_payload={}, status="success",
            received_at=now - timedelta(days=5), event_metadata={},
        )
        db.add_all([old, recent])
        await db.commit()
        recent_id = str(recent.id)

        removed = await store.clear_old_events(30)

        assert removed == 1
        remaining = await store.get_events()
        assert [e["id"] for e in remaining] == [recent_id]

    @pytest.mark.asyncio
    async def test_negative_days_rejected(self, store):
        with pytest.raises(ValueError):
            await store.clear_old_events(-1)


# ---------------------------------------------------------------------------
# InMemoryEventLogStore
# ---------------------------------------------------------------------------


class TestInMemoryEventLogStore:
    @pytest.mark.asyncio
    async def test_same_lifecycle_as_database_store(self, sample_webhook_payload):
        store = InMemoryEventLogStore()
        event_id = await store.log_event("webhook", sample_webhook_payload)

        assert await store.update_event_status(event_id, "skipped", None, {"reason": "x"}) is True
        assert await store.update_event_status(event_id, "success") is False

        event = await store.get_event_by_id(event_id)
        assert event["status"] == "skipped"
        assert event["metadata"]["reason"] == "x"

    @pytest.mark.asyncio
    async def test_bounded_to_most_recent(self, sample_webhook_payload):
        store = InMemoryEventLogStore(max_events=3)
        ids = [await store.log_event("webhook", sample_webhook_payload) for _ in range(5)]

        events = await store.get_events()

        assert [e["id"] for e in events] == list(reversed(ids[-3:]))
        assert await store.get_event_by_id(ids[0]) is None

    @pytest.mark.asyncio
    async def test_stats(self, sample_webhook_payload):
        store = InMemoryEventLogStore()
        event_id = await store.log_event("webhook", sample_webhook_payload)
        await store.log_event("validation", {})
        await store.update_event_status(event_id, "success")

        stats = await store.get_stats()

        assert stats["total"] == 2
        assert stats["by_status"] == {"success": 1, "processing": 1}
