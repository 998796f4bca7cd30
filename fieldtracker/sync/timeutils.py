"""
Time helpers shared by the server and the offline client.

All timestamps are handled as timezone-aware UTC datetimes. SQLite drops
tzinfo on the way back out, so anything read from storage goes through
``ensure_utc`` before it is compared.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

MAX_ENTRY_HOURS = 24
FUTURE_TOLERANCE = timedelta(minutes=5)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """
    Format as ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

    Millisecond precision with a literal ``Z`` matches what the mobile
    runtime emits, which keeps signed license payloads byte-identical.
    """
    if value is None:
        return None
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def duration_minutes(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants, truncated toward zero."""
    return int((ensure_utc(end) - ensure_utc(start)).total_seconds() // 60)


def duration_hours(start: datetime, end: datetime) -> float:
    """Decimal hours between two instants, rounded to two places."""
    return round(duration_minutes(start, end) / 60, 2)


def calculate_hours(
    start: datetime,
    end: datetime,
    overtime_threshold: float = 8.0,
) -> tuple[float, float]:
    """
    Split worked time into regular and overtime hours.

    Returns:
        (regular_hours, overtime_hours)
    """
    total = duration_hours(start, end)
    if total <= overtime_threshold:
        return total, 0.0
    return float(overtime_threshold), round(total - overtime_threshold, 2)


def periods_overlap(
    start1: datetime,
    end1: Optional[datetime],
    start2: datetime,
    end2: Optional[datetime],
    now: Optional[datetime] = None,
) -> bool:
    """Check whether two periods overlap; an open period extends to ``now``."""
    now = ensure_utc(now) or utcnow()
    actual_end1 = ensure_utc(end1) or now
    actual_end2 = ensure_utc(end2) or now
    return ensure_utc(start1) < actual_end2 and ensure_utc(start2) < actual_end1


def validate_time_window(
    start: datetime,
    end: Optional[datetime],
    now: Optional[datetime] = None,
) -> list[str]:
    """Business rules every time entry must satisfy on its own."""
    now = ensure_utc(now) or utcnow()
    start = ensure_utc(start)
    end = ensure_utc(end)
    errors = []

    if end is not None and end <= start:
        errors.append("End time must be after start time")
    if end is not None and duration_hours(start, end) > MAX_ENTRY_HOURS:
        errors.append(f"Time entry cannot exceed {MAX_ENTRY_HOURS} hours")
    if start > now + FUTURE_TOLERANCE:
        errors.append("Time entry cannot start in the future")

    return errors


def validate_break_window(
    break_start: datetime,
    break_end: Optional[datetime],
    entry_start: datetime,
    entry_end: Optional[datetime],
) -> list[str]:
    """A break has to sit inside its parent time entry."""
    break_start = ensure_utc(break_start)
    break_end = ensure_utc(break_end)
    entry_start = ensure_utc(entry_start)
    entry_end = ensure_utc(entry_end)
    errors = []

    if break_end is not None and break_end <= break_start:
        errors.append("Break end time must be after break start time")
    if break_start < entry_start:
        errors.append("Break cannot start before its time entry")
    if entry_end is not None:
        if break_end is None:
            errors.append("Break must be ended before its time entry ends")
        elif break_end > entry_end:
            errors.append("Break cannot end after its time entry")

    return errors
