"""Time utilities."""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def start_of_day(now: datetime | None = None) -> datetime:
    """Return midnight UTC of the day containing ``now``."""
    now = now or utc_now()
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(now: datetime | None = None) -> datetime:
    """Return the last representable instant of the UTC day containing ``now``."""
    return start_of_day(now) + timedelta(days=1) - timedelta(microseconds=1)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes and normalize aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
