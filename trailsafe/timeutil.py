"""Time parsing helpers shared by the feed clients and scoring."""

import re
from datetime import datetime, timezone
from typing import Optional

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CLOCK_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*([AaPp][Mm])?\s*$")


def parse_iso(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime, or None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_valid_date(value: str) -> bool:
    if not value or not _DATE_RE.match(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def parse_clock_minutes(value) -> Optional[int]:
    """Minutes after midnight for "HH:MM", "HH:MM:SS" or "h:mm AM" strings."""
    if not value:
        return None
    match = _CLOCK_RE.match(str(value))
    if not match:
        return None
    hours, minutes, meridiem = int(match.group(1)), int(match.group(2)), match.group(3)
    if meridiem:
        if hours < 1 or hours > 12:
            return None
        hours = hours % 12
        if meridiem.lower() == "pm":
            hours += 12
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def clock_of_iso(value) -> Optional[int]:
    """Minutes after midnight in the timestamp's own offset (local wall clock)."""
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed.hour * 60 + parsed.minute


def local_date_of_iso(value) -> Optional[str]:
    if not value:
        return None
    return str(value)[:10]


def hours_between(later: Optional[datetime], earlier: Optional[datetime]) -> Optional[float]:
    if later is None or earlier is None:
        return None
    return (later - earlier).total_seconds() / 3600.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
