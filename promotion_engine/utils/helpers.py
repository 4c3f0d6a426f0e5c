"""
Common utility functions for the promotion engine.

This module provides reusable helper functions for:
- Date/time formatting (ISO-8601 with UTC, local time via pytz)
- Parsing dates and identifiers from JSON payloads
"""

from datetime import date, datetime, timezone

import pytz


def format_utc_iso(dt):
    """Return a UTC ISO-8601 string (with trailing Z) for a datetime or None."""
    if not dt:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


def format_local(dt, tz_name, fmt='%Y-%m-%d %I:%M %p'):
    """
    Convert a UTC datetime to ``tz_name`` and format it.

    Naive datetimes are treated as UTC. Raises ``pytz.UnknownTimeZoneError``
    for unknown zone names so callers can reject the request.
    """
    if not dt:
        return None

    target_tz = pytz.timezone(tz_name)
    utc_dt = dt if getattr(dt, 'tzinfo', None) else pytz.utc.localize(dt)
    return utc_dt.astimezone(target_tz).strftime(fmt)


def parse_iso_date(value):
    """
    Parse ``YYYY-MM-DD`` (or a full ISO timestamp) into a ``date``.

    Returns None for blank input; raises ValueError for anything unparsable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    if len(text) > 10 and text[10] in ('T', ' '):
        text = text.replace('Z', '+00:00')
        return datetime.fromisoformat(text).date()
    return date.fromisoformat(text)


def normalize_school_id(value):
    """Return a stripped school identifier or None for blanks."""
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def coerce_int(value):
    """Return ``value`` as an int, or None if it cannot be converted."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None
