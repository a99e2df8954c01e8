"""
Time parsing utilities for freeze windows and challenge expiry.

All instants stored by the engine are naive UTC datetimes, which is what
SQLite hands back through SQLAlchemy regardless of the column's timezone flag.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


FREEZE_PRESETS = {
    '1d': timedelta(days=1),
    '3d': timedelta(days=3),
    '1w': timedelta(weeks=1),
    '2w': timedelta(weeks=2),
}


def utc_now() -> datetime:
    """Current instant as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware or naive datetime to naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def freeze_until_from_preset(duration: str, now: Optional[datetime] = None) -> datetime:
    """
    Resolve a freeze duration into the instant the freeze ends.

    Supported formats:
    - Presets: 1d, 3d, 1w, 2w
    - Explicit date: YYYY-MM-DD (freeze ends at 00:00 UTC that day)
    - Explicit instant: YYYY-MM-DDTHH:MM (UTC unless an offset is given)

    Args:
        duration: Preset key or ISO date string
        now: Reference instant for presets (defaults to utc_now())

    Returns:
        Naive UTC datetime

    Raises:
        ValueError: If the format is invalid
    """
    duration = duration.strip().lower()
    now = to_naive_utc(now) or utc_now()

    if duration in FREEZE_PRESETS:
        return now + FREEZE_PRESETS[duration]

    try:
        parsed = datetime.fromisoformat(duration.upper() if 't' in duration else duration)
    except ValueError as e:
        presets = ", ".join(FREEZE_PRESETS)
        raise ValueError(f"Invalid freeze duration: {duration}. Use one of {presets} or a date (YYYY-MM-DD)") from e

    return to_naive_utc(parsed)


def format_remaining(until: datetime, now: Optional[datetime] = None) -> str:
    """
    Format the time left until an instant (e.g. "2d 4h", "35m").

    Returns "expired" once the instant has passed.
    """
    now = to_naive_utc(now) or utc_now()
    remaining = to_naive_utc(until) - now
    if remaining.total_seconds() <= 0:
        return "expired"

    total_minutes = int(remaining.total_seconds() // 60)
    days, remainder = divmod(total_minutes, 60 * 24)
    hours, minutes = divmod(remainder, 60)

    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
