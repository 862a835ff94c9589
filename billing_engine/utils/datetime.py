"""Time utilities with timezone-aware defaults."""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC time with tzinfo."""

    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise a stored timestamp to an aware UTC datetime.

    Some drivers (SQLite, MySQL) hand back naive values even for
    ``DateTime(timezone=True)`` columns; those are always written in UTC.
    """

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def period_key(moment: datetime) -> str:
    """Calendar-month billing bucket, e.g. ``2026-10``."""

    moment = as_utc(moment)
    return f"{moment.year:04d}-{moment.month:02d}"


__all__ = ["as_utc", "period_key", "utc_now"]
