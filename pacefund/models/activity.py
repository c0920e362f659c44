"""
Activity model - a run/ride recorded on Strava.
Keyed by the upstream activity id so replayed webhooks upsert instead of
duplicating. Deletion is soft (is_deleted) to preserve donation history.
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import BigInteger, Boolean, String, Float, Integer, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from pacefund.database import Base


class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    principal_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("principals.id"), nullable=False
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Core fields copied out of the upstream payload
    name: Mapped[Optional[str]] = mapped_column(String(255))
    activity_type: Mapped[Optional[str]] = mapped_column(String(50))  # Run, Ride, Walk, ...
    distance: Mapped[Optional[float]] = mapped_column(Float)  # meters
    moving_time: Mapped[Optional[int]] = mapped_column(Integer)  # seconds
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Full upstream record
    raw_payload: Mapped[Optional[dict]] = mapped_column(JSONB)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    principal: Mapped["Principal"] = relationship(back_populates="activities")

    __table_args__ = (
        Index("ix_activities_principal_id", "principal_id"),
        Index("ix_activities_start_date", "start_date"),
    )

    def __repr__(self) -> str:
        return f"<Activity {self.id} principal={self.principal_id} deleted={self.is_deleted}>"
