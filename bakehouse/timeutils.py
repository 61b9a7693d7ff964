"""Clock helpers for "HH:MM" time-of-day strings."""

from __future__ import annotations


def parse_time_to_minutes(value: str | None) -> int | None:
    """Parse "HH:MM" (or "HH:MM:SS") into minutes since midnight.

    Returns None for empty or malformed input. Seconds are ignored.
    """
    if not value or not isinstance(value, str):
        return None

    parts = value.strip().split(":")
    if len(parts) < 2:
        return None
    try:
        hours = int(parts[0])
        minutes = int(parts[1])
    except ValueError:
        return None

    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        return None
    return hours * 60 + minutes


def format_minutes(minutes: int) -> str:
    """Format minutes since midnight as zero-padded "HH:MM"."""
    if minutes < 0:
        raise ValueError(f"Negative minute offset: {minutes}")
    hours, mins = divmod(int(minutes), 60)
    return f"{hours:02d}:{mins:02d}"


def shift_time(value: str | None, delta_minutes: int) -> str | None:
    """Shift an "HH:MM" string by delta minutes; None passes through."""
    minutes = parse_time_to_minutes(value)
    if minutes is None:
        return None
    return format_minutes(minutes + delta_minutes)
