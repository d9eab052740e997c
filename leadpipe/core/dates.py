"""Timestamp parsing tolerant of the formats the data sources emit."""

import re
from datetime import date, datetime, timezone
from typing import Any

_SHORT_OFFSET = re.compile(r"([+-]\d{2})$")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a timestamp into an aware UTC datetime.

    Accepts datetimes, dates, epoch numbers and ISO-like strings such as
    ``2025-12-16``, ``2025-12-16T14:00:00Z`` and ``2025-12-16 14:00:00+00``.
    Naive values are taken as UTC. Returns None for anything unparsable.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds are common in JSON payloads
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        text = _SHORT_OFFSET.sub(r"\1:00", text) if "T" in text or " " in text else text
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
