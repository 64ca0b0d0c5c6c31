"""
Centralized datetime utilities for the Intelligence Core.

All persisted timestamps are naive UTC datetimes; these helpers keep that
convention in one place and handle the ISO strings that arrive from callers
and external signal APIs.
"""

from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Any) -> Optional[datetime]:
    """
    Coerce a datetime or ISO-8601 string to a naive UTC datetime.

    Handles:
    - naive datetimes (assumed UTC, returned unchanged)
    - timezone-aware datetimes (converted to UTC, tzinfo dropped)
    - 'YYYY-MM-DDTHH:MM:SSZ' and '+00:00' suffixed strings
    - None (returned as None)

    Args:
        value: datetime, ISO string, or None

    Returns:
        Naive UTC datetime or None

    Raises:
        ValueError: If a string cannot be parsed
    """
    if value is None:
        return None

    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))

    if not isinstance(value, datetime):
        raise ValueError(f"Cannot convert {type(value).__name__} to datetime")

    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def isoformat_z(value: datetime) -> str:
    """Render a naive UTC datetime as an ISO string with a 'Z' suffix and millisecond precision."""
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
