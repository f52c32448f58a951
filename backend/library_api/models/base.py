"""Shared column helpers."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to values read back without tzinfo (SQLite drops it)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
