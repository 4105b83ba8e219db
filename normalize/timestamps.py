from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta


_MONTHS: dict[str, int] = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
}

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})\s*(AM|PM)$", re.IGNORECASE)


def parse_source_datetime(text: str, *, utc_offset_hours: int = 8) -> datetime | None:
    """Parse a bulletin timestamp such as ``01 November 2025 - 04:12 PM``.

    The bulletin publishes local civil time at a fixed offset from UTC.
    Returns an aware UTC datetime, or None when any part fails to parse.
    """
    parts = " ".join(text.split()).split(" - ")
    if len(parts) != 2:
        return None
    date_part, time_part = parts

    tokens = date_part.split(" ")
    if len(tokens) != 3:
        return None
    day_str, month_name, year_str = tokens
    month = _MONTHS.get(month_name.lower())
    if month is None or not day_str.isdigit() or not year_str.isdigit():
        return None

    match = _TIME_RE.match(time_part)
    if match is None:
        return None
    hour = int(match.group(1))
    minute = int(match.group(2))
    meridiem = match.group(3).upper()
    if not 1 <= hour <= 12 or minute > 59:
        return None

    if meridiem == "AM" and hour == 12:
        hour = 0
    elif meridiem == "PM" and hour != 12:
        hour += 12

    try:
        as_if_utc = datetime(int(year_str), month, int(day_str), hour, minute, tzinfo=UTC)
    except ValueError:
        return None
    return as_if_utc - timedelta(hours=utc_offset_hours)


def to_iso(dt: datetime) -> str:
    return (
        dt.astimezone(tz=UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def parse_iso(ts: str) -> datetime:
    if ts.endswith("Z"):
        return datetime.fromisoformat(ts.removesuffix("Z") + "+00:00")
    return datetime.fromisoformat(ts)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)
