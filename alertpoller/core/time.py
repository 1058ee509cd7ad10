from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a feed timestamp into an aware UTC datetime.

    Accepts ISO-8601 (with or without "Z"), RFC-822 (RSS pubDate),
    epoch seconds/millis and datetime objects. Naive values are taken as UTC.
    Returns None when the value cannot be read.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts > 1_000_000_000_000:
            ts = ts / 1000.0
        try:
            dt = datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        t = str(value).strip()
        if not t:
            return None
        if t.endswith("Z"):
            t = t[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(t)
        except ValueError:
            try:
                dt = parsedate_to_datetime(t)
            except (TypeError, ValueError, IndexError):
                return None
            if dt is None:
                return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime_or_now(value: Any) -> datetime:
    return parse_datetime(value) or utc_now()


def expires_or_default(value: Any, *, minutes: int) -> datetime:
    """Parsed expiry, or now + `minutes` when absent/unreadable."""
    return parse_datetime(value) or (utc_now() + timedelta(minutes=minutes))
