"""Shared utility functions.

utcnow:  timezone-aware "now" used for every persisted timestamp
as_utc:  normalise a datetime read back from the DB (SQLite drops tzinfo)
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value):
    """Return ``value`` as an aware UTC datetime (None passes through).

    SQLite returns naive datetimes even for ``DateTime(timezone=True)``
    columns; those are stored in UTC so the tzinfo is simply re-attached.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
