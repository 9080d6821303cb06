# Overview: UTC clock and timestamp conversions for weighing and sync records.

"""
All timestamps are stored UTC-naive. Offline sites send ISO-8601 strings
with or without an offset; they are normalized on the way in so weighings
from different sites sort on one clock.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(dt: datetime) -> datetime:
    """Shift an aware datetime to UTC and drop tzinfo. Naive values are taken as UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Read an ISO-8601 timestamp ("2024-03-01T08:15:00", "...Z", "...+10:00")
    as UTC-naive. Blank input gives None; malformed input raises ValueError.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_utc_naive(datetime.fromisoformat(text))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Render a stored timestamp as ISO-8601 with a trailing Z (naive means UTC)."""
    if dt is None:
        return None
    return to_utc_naive(dt).isoformat() + "Z"
