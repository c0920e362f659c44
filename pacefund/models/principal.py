"""
Principal model - a Strava athlete who connected their account.
Holds the OAuth credential (access token, refresh token, expiry).
CRITICAL: access_token, refresh_token and token_expires_at are only ever
written together by pacefund.services.token_manager.
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import BigInteger, String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from pacefund.database import Base


class Principal(Base):
    __tablename__ = "principals"

    # Strava athlete id (upstream assigned)
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    username: Mapped[Optional[str]] = mapped_column(String(100))
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))

    # OAuth credential - opaque secrets, never logged
    access_token: Mapped[Optional[str]] = mapped_column(Text)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text)
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    activities: Mapped[list["Activity"]] = relationship(back_populates="principal")

    @property
    def has_credential(self) -> bool:
        return bool(self.access_token and self.refresh_token and self.token_expires_at)

    def __repr__(self) -> str:
        return f"<Principal {self.id} connected={self.has_credential}>"
