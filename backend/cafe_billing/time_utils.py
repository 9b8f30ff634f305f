from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(dt: datetime) -> datetime:
    """Aware datetimes are converted to UTC; naive ones are already UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    ISO-8601 string -> UTC-naive datetime.

    "" and None give None. A trailing "Z" or an explicit offset is honored;
    a string without one is taken as UTC. Raises ValueError on garbage.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    return as_utc_naive(datetime.fromisoformat(text))


def from_epoch_millis(value: int | float) -> datetime:
    """Epoch milliseconds (as sent by browser clients) to UTC-naive datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Whole-second "YYYY-MM-DDTHH:MM:SSZ"; naive input is treated as UTC."""
    if dt is None:
        return None
    return as_utc_naive(dt).replace(microsecond=0).isoformat() + "Z"


def minutes_between(start: datetime, end: datetime) -> float:
    """Elapsed minutes between two UTC-naive datetimes (never negative)."""
    return max((end - start).total_seconds(), 0) / 60
