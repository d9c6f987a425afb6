"""Meeting time parsing for calendar event creation."""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

RANGE_PATTERN = re.compile(r"(\d{1,2})\s*-\s*(\d{1,2})\s*([ap]m)", re.IGNORECASE)
DEFAULT_START_HOUR = 16
DEFAULT_END_HOUR = 17


def parse_meeting_time(
    expression: str | None,
    *,
    now: datetime,
    timezone: str = "UTC",
) -> tuple[datetime, datetime]:
    """Resolve a "<start>-<end>[ap]m" shorthand to a window on the following day.

    Only the range shorthand is understood. Anything else falls back to
    tomorrow 16:00-17:00 in `timezone`.
    """
    zone = ZoneInfo(timezone)
    local_now = now.astimezone(zone)
    day = (local_now + timedelta(days=1)).date()

    start_hour, end_hour = DEFAULT_START_HOUR, DEFAULT_END_HOUR
    match = RANGE_PATTERN.search(expression or "")
    if match:
        meridiem = match.group(3).lower()
        start_hour = to_24_hour(int(match.group(1)), meridiem)
        end_hour = to_24_hour(int(match.group(2)), meridiem)

    start = datetime(day.year, day.month, day.day, start_hour, 0, 0, tzinfo=zone)
    end = datetime(day.year, day.month, day.day, end_hour, 0, 0, tzinfo=zone)
    if end <= start:
        end = start + timedelta(hours=1)
    return start, end


def to_24_hour(hour: int, meridiem: str) -> int:
    hour = hour % 12
    if meridiem == "pm":
        hour += 12
    return hour
