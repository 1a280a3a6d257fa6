"""Datetime utilities for timezone-aware operations."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime object is timezone-aware and in UTC.

    If the datetime is naive (no tzinfo), it's assumed to be UTC. SQLite hands
    stored timestamps back naive, so every comparison goes through here.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


__all__ = [
    "ensure_utc",
    "utcnow",
]
