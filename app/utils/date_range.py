"""UTC calendar windows for dashboards, trends and sync.

WHAT:
    Converts a period string ("7d", "30d") into concrete UTC windows and the
    matching previous window for period-over-period comparison.

WHY:
    Metric rows are keyed by calendar date. Computing windows on UTC day
    boundaries keeps month/year crossings and server timezones from
    shifting which days are included.

Window shapes (for days=7, "today" = 2025-03-10):
    current:  2025-03-03 00:00:00.000Z .. 2025-03-10 23:59:59.999Z
    previous: 2025-02-23 00:00:00.000Z .. 2025-03-02 23:59:59.999Z

A window for `days=n` spans n+1 calendar days (today plus the n before
it); the previous window has the same length.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

DEFAULT_PERIOD_DAYS = 7

_PERIOD_RE = re.compile(r"^(\d+)d$")


def parse_period_days(period: Optional[str]) -> int:
    """Parse "14d" -> 14. Anything else falls back to 7."""
    if not period:
        return DEFAULT_PERIOD_DAYS
    match = _PERIOD_RE.match(period.strip().lower())
    if match:
        return int(match.group(1))
    return DEFAULT_PERIOD_DAYS


def utc_today(now: Optional[datetime] = None) -> date:
    """Current calendar day in UTC (naive inputs are treated as UTC)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).date()


def get_date_range(days: int, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Return (start, end) for the trailing window ending today (UTC).

    end   = today 23:59:59.999 UTC
    start = today 00:00:00.000 UTC minus `days` days
    """
    today = utc_today(now)
    end = datetime.combine(today, time(23, 59, 59, 999000), tzinfo=timezone.utc)
    start = datetime.combine(today, time.min, tzinfo=timezone.utc) - timedelta(days=days)
    return start, end


def get_previous_period_date_range(current_start: datetime, days: int) -> Tuple[datetime, datetime]:
    """Return (start, end) of the window immediately preceding `current_start`.

    end ends 1 ms before the current window starts, so the two windows
    neither overlap nor leave a gap. Both span `days + 1` calendar days.
    """
    if current_start.tzinfo is None:
        current_start = current_start.replace(tzinfo=timezone.utc)
    end = current_start - timedelta(milliseconds=1)
    start = current_start - timedelta(days=days + 1)
    return start, end


def as_date(value) -> date:
    """Collapse a datetime (or date) to the calendar date used by metric rows."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def iter_days(start: date, end: date):
    """Yield each calendar day in [start, end] inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
