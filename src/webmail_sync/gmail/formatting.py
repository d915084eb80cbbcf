"""Display formatting for message times and recipients."""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

_MINUTE_MS = 60 * 1000
_HOUR_MS = 60 * _MINUTE_MS
_DAY_MS = 24 * _HOUR_MS


def _to_datetime(value: datetime | int, tz: tzinfo | None) -> datetime:
    # Integers are Gmail internal dates in epoch milliseconds.
    if isinstance(value, datetime):
        dt = value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    else:
        dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return dt.astimezone(tz)


def _epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def format_clock_time(dt: datetime) -> str:
    """Format as ``3:05 PM``."""
    hour = dt.hour % 12 or 12
    suffix = "AM" if dt.hour < 12 else "PM"
    return f"{hour}:{dt.minute:02d} {suffix}"


def format_short_date(dt: datetime) -> str:
    """Format as ``Jan 5``."""
    return f"{_MONTHS[dt.month - 1]} {dt.day}"


def format_full_date(value: datetime | int, tz: tzinfo | None = None) -> str:
    """Format as ``Mon, Jan 5, 2025, 3:05 PM``."""
    dt = _to_datetime(value, tz)
    return (
        f"{_WEEKDAYS[dt.weekday()]}, {format_short_date(dt)}, {dt.year}, "
        f"{format_clock_time(dt)}"
    )


def format_relative_time(
    timestamp: datetime | int,
    now: datetime | int | None = None,
    tz: tzinfo | None = None,
) -> str:
    """Format a message time relative to ``now`` the way the mail list shows it.

    Args:
        timestamp: Message time, a datetime or epoch milliseconds.
        now: Reference time; defaults to the current time.
        tz: Zone used for clock times and dates; defaults to the local zone.

    Returns:
        One of "Just now", "N min(s) ago", a clock time, "Yesterday",
        "N days ago" or a short month/day date.
    """

    dt = _to_datetime(timestamp, tz)
    ref = _to_datetime(now if now is not None else datetime.now(timezone.utc), tz)

    diff_ms = _epoch_ms(ref) - _epoch_ms(dt)
    diff_hours = diff_ms // _HOUR_MS
    diff_days = diff_ms // _DAY_MS

    if diff_hours < 1:
        diff_minutes = diff_ms // _MINUTE_MS
        if diff_minutes < 1:
            return "Just now"
        return f"{diff_minutes} min{'s' if diff_minutes > 1 else ''} ago"
    if diff_hours < 24:
        return format_clock_time(dt)
    if diff_days == 1:
        return "Yesterday"
    if diff_days < 7:
        return f"{diff_days} days ago"
    return format_short_date(dt)


def format_recipients(addresses: list[str] | None) -> str:
    """Join recipient addresses for display."""
    return ", ".join(a for a in (addresses or []) if a)
