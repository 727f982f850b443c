# backend/salonledger/time_utils.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string into a UTC-naive datetime.

    - None / "" -> None
    - naive input is taken as UTC
    - "Z" or "+/-HH:MM" offsets are converted to UTC

    Raises ValueError on malformed input.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_date_range(start_raw: Optional[str], end_raw: Optional[str]) -> tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive [start, end] filter window for reporting queries."""
    start = parse_iso_datetime(start_raw)
    end = parse_iso_datetime(end_raw)
    if start is not None and end is not None and start > end:
        raise ValueError("start_date must be before end_date")
    return start, end


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with trailing 'Z', second precision. Naive input is taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
