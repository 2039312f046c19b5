"""Timestamp helpers.

Every timestamp inside the engine is timezone-aware UTC. Display dates are
rendered in a fixed-width ISO-8601 form so that string comparison and
chronological comparison agree.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Union

ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_PARSE_FORMATS = (
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
)

TimestampLike = Union[datetime, date, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: TimestampLike) -> datetime:
    """Parse a datetime, date or timestamp string into an aware UTC datetime."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        for fmt in _PARSE_FORMATS:
            try:
                return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
            except ValueError:
                continue
        # Offsets such as +02:00 or fractional seconds
        return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    raise TypeError(f"Unsupported timestamp value: {value!r}")



def to_iso(value: datetime) -> str:
    return ensure_utc(value).strftime(ISO_FORMAT)


def elapsed_days(start: datetime, end: datetime) -> int:
    """Whole days between two instants, never negative."""
    delta = ensure_utc(end) - ensure_utc(start)
    return max(0, delta.days)


def month_bounds(year: int, month: int):
    """First instant of the month and last instant before the next month."""
    if not 1 <= month <= 12:
        raise ValueError(f"month must be within 1..12, got {month}")
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    if month == 12:
        following = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        following = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, following - timedelta(microseconds=1)
