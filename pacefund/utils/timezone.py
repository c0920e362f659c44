"""
Timezone helpers.
All timestamps are stored and compared in UTC. SQLite (tests, local runs)
drops tzinfo on read, so values coming back from the database are
normalised before comparison.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_epoch(seconds: Optional[int]) -> Optional[datetime]:
    """Convert a unix timestamp (as sent by Strava and the chain) to UTC."""
    if seconds is None:
        return None
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc)
