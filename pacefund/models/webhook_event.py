"""
Webhook event audit trail - every incoming webhook is recorded before processing.
Enables debugging, replay, and retention sweeps.

Status moves once: processing -> success | failed | skipped | error.
Metadata is merged on every update, never replaced.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import BigInteger, String, Text, Integer, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from pacefund.database import Base

STATUS_PROCESSING = "processing"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"
STATUS_ERROR = "error"

TERMINAL_STATUSES = frozenset({STATUS_SUCCESS, STATUS_FAILED, STATUS_SKIPPED, STATUS_ERROR})
ALL_STATUSES = TERMINAL_STATUSES | {STATUS_PROCESSING}


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)  # webhook, validation
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
    raw_payload: Mapped[dict] = mapped_column(JSONB, nullable=False)

    # owner_id from the payload, denormalised for filtering
    principal_id: Mapped[Optional[int]] = mapped_column(BigInteger)

    # Processing
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=STATUS_PROCESSING, server_default=STATUS_PROCESSING
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer)
    error: Mapped[Optional[str]] = mapped_column(Text)

    # "metadata" is reserved on declarative classes
    event_metadata: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)
    correlation_id: Mapped[Optional[str]] = mapped_column(String(64))

    __table_args__ = (
        Index("ix_webhook_events_event_type", "event_type"),
        Index("ix_webhook_events_principal_id", "principal_id"),
        Index("ix_webhook_events_status", "status"),
        Index("ix_webhook_events_received_at", "received_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "type": self.event_type,
            "received_at": self.received_at.isoformat() if self.received_at else None,
            "raw_payload": self.raw_payload,
            "principal_id": self.principal_id,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "metadata": self.event_metadata or {},
            "correlation_id": self.correlation_id,
        }

    def __repr__(self) -> str:
        return f"<WebhookEvent {self.id} {self.event_type} status={self.status}>"
