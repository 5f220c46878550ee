"""UTC time helpers shared by models and services."""

from datetime import UTC, datetime, timedelta

ONE_TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive values (SQLite drops tzinfo on the way back)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def next_tick(previous: datetime | None, now: datetime | None = None) -> datetime:
    """Return a timestamp strictly after ``previous`` and no earlier than now."""
    current = now or utcnow()
    if previous is None:
        return current
    floor = ensure_utc(previous) + ONE_TICK
    return max(current, floor)
