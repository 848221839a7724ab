"""Timestamp helpers shared by the engine, the store and the analyzers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Union
import math

from dateutil import parser as du_parser


def now_utc() -> datetime:
    """Return the current time as an aware UTC ``datetime``."""
    return datetime.now(timezone.utc)


def to_utc(dt_or_str: Union[datetime, str]) -> datetime:
    """Return ``datetime`` converted to UTC.

    Raises ``ValueError`` when a string cannot be parsed.
    """

    if isinstance(dt_or_str, datetime):
        dt = dt_or_str
    else:
        dt = _parse_str(dt_or_str)
        if dt is None:
            raise ValueError(f"Unparsable timestamp: {dt_or_str!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt


def _parse_str(value: str) -> Optional[datetime]:
    v = value.strip()
    if not v:
        return None
    try:
        return datetime.fromisoformat(v.replace("Z", "+00:00"))
    except ValueError:
        try:
            return du_parser.isoparse(v)
        except (ValueError, TypeError, OverflowError):
            return None


def parse_instant(value: Any) -> Optional[datetime]:
    """
    Convert several timestamp representations to UTC-aware datetime.
    Returns None if the string/number cannot be parsed.
    Accepted forms:
      - aware/naive datetime (naive -> assume UTC)
      - ISO-8601 string
      - int/float unix seconds
    """
    if isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return to_utc(value)

    if isinstance(value, (int, float)) and math.isfinite(value):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        dt = _parse_str(value)
        return to_utc(dt) if dt is not None else None

    return None


def as_utc(raw: Any, fallback: datetime) -> datetime:
    """Total variant of :func:`parse_instant` returning ``fallback`` on junk."""
    parsed = parse_instant(raw)
    return parsed if parsed is not None else fallback


def to_iso(dt: datetime) -> str:
    """Render ``dt`` as an ISO-8601 UTC string with a ``Z`` suffix."""
    return to_utc(dt).isoformat().replace("+00:00", "Z")


def weekday_index(dt: datetime) -> int:
    """Day of week in UTC with Sunday as 0 and Saturday as 6."""
    return (to_utc(dt).weekday() + 1) % 7


__all__ = ["now_utc", "to_utc", "parse_instant", "as_utc", "to_iso", "weekday_index"]
