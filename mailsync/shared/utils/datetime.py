"""Timezone-aware datetime helpers.

Everything stored or compared in MailSync is an aware UTC datetime. Some
database drivers (SQLite) hand back naive values, so reads go through
``ensure_utc``.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes and convert aware ones to UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_timestamp_utc(seconds: float) -> datetime:
    """Convert a unix timestamp in seconds to an aware UTC datetime"""
    return datetime.fromtimestamp(seconds, tz=UTC)


def from_timestamp_ms_utc(milliseconds: int | str) -> datetime:
    """Convert a unix timestamp in milliseconds (Gmail internalDate) to UTC"""
    return datetime.fromtimestamp(int(milliseconds) / 1000, tz=UTC)
