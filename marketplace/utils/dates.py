from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: Optional[datetime] = None) -> str:
    """Horodatage ISO 8601 UTC tel que stocké dans les colonnes timestamptz."""
    return (dt or utcnow()).astimezone(timezone.utc).isoformat()


def iso_before(now: datetime, *, minutes: int = 0, hours: int = 0) -> str:
    return iso(now - timedelta(minutes=minutes, hours=hours))
