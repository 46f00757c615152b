"""Time parsing and formatting utilities for Flint.

This module provides the duration parser used by messaging commands
(``--timeout 30s``) and helpers for rendering session expiry times.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}


def parse_duration(value: str) -> timedelta:
    """Parse a duration string into a timedelta.

    Supports formats like:
    - "500ms" (milliseconds)
    - "30s" (seconds)
    - "5m" (minutes)
    - "1h" (hours)
    - "1h30m" (combined units)
    - "10" (bare number of seconds)

    Args:
        value: The duration string.

    Returns:
        The parsed duration.

    Raises:
        ValueError: If value cannot be parsed.
    """
    text = value.strip().lower()
    if not text:
        raise ValueError("Cannot parse duration: empty value")

    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return timedelta(seconds=float(text))

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()

    if position != len(text) or position == 0:
        raise ValueError(f"Cannot parse duration: {value}")

    return timedelta(seconds=total)


def utc_now() -> datetime:
    """Return the current time as a UTC-aware datetime."""
    return datetime.now(tz=timezone.utc)


def ensure_aware(dt: datetime) -> datetime:
    """Attach UTC to a naive datetime, leaving aware values untouched."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def format_remaining(expires: datetime, now: datetime | None = None) -> str:
    """Format the time left until an expiry as a short human string.

    Args:
        expires: The expiry instant.
        now: The reference instant, defaults to the current time.

    Returns:
        A string like "2d 3h", "45m" or "expired".
    """
    now = now or utc_now()
    remaining = ensure_aware(expires) - ensure_aware(now)
    seconds = int(remaining.total_seconds())
    if seconds <= 0:
        return "expired"

    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes = seconds // 60

    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{max(minutes, 1)}m"


def format_timestamp(dt: datetime | None) -> str:
    """Format a datetime for display, or "never" when absent."""
    if dt is None:
        return "never"
    return ensure_aware(dt).astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")
