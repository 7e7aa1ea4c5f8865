from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta

logger = logging.getLogger(__name__)

MIDNIGHT = "00:00"
ONE_DAY = timedelta(days=1)


def parse_clock(value: str) -> tuple[int, int]:
    """Parse ``HH:MM`` (or the ``24:MM`` next-day form) into hour and minute."""
    if not isinstance(value, str):
        raise ValueError(f"Unsupported time value: {value!r}")
    parts = value.strip().split(":")
    if len(parts) != 2 or not all(part.isdigit() for part in parts):
        raise ValueError(f"Unsupported time format: {value}")
    if len(parts[0]) > 2 or len(parts[1]) != 2:
        raise ValueError(f"Unsupported time format: {value}")
    hour = int(parts[0])
    minute = int(parts[1])
    if not (0 <= hour <= 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid time value: {value}")
    return hour, minute


def is_wellformed(value: str | None) -> bool:
    try:
        parse_clock(value)  # type: ignore[arg-type]
    except ValueError:
        return False
    return True


def to_instant(value: str | None, reference_day: date | datetime) -> datetime:
    """Combine a prayer time string with ``reference_day``.

    ``24:MM`` means minute MM past midnight of the following day. A
    malformed value is logged and treated as ``00:00``. When
    ``reference_day`` is a datetime its tzinfo is carried over.
    """
    if isinstance(reference_day, datetime):
        day = reference_day.date()
        tzinfo = reference_day.tzinfo
    else:
        day = reference_day
        tzinfo = None
    try:
        hour, minute = parse_clock(value)  # type: ignore[arg-type]
    except ValueError:
        logger.warning("Malformed prayer time %r; using %s", value, MIDNIGHT)
        hour, minute = 0, 0
    if hour == 24:
        day += ONE_DAY
        hour = 0
    return datetime.combine(day, time(hour=hour, minute=minute), tzinfo=tzinfo)


def roll_forward(value: str | None, now: datetime, margin: timedelta = timedelta(0)) -> datetime:
    """Return the next instant of ``value`` strictly after ``now + margin``."""
    candidate = to_instant(value, now)
    threshold = now + margin
    while candidate <= threshold:
        candidate += ONE_DAY
    return candidate


def format_duration(value: timedelta) -> str:
    total_seconds = int(value.total_seconds())
    if total_seconds < 0:
        return "00:00:00"
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
