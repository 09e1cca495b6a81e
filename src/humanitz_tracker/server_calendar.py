"""
Timezone-correct calendar logic.

Every "what day / what week is it" question in the tracker goes through
ServerCalendar so that day buckets and weekly resets follow the configured
timezone's midnight, never the host's.
"""

import logging
from datetime import datetime, date, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_reset_time(value: str) -> time:
    """
    Parse an ``HH:MM`` string.

    Raises:
        ValueError: If the value is not a valid time of day.
    """
    hour, _, minute = str(value).partition(':')
    return time(int(hour), int(minute or 0))


class ServerCalendar:
    """Date keys and weekly boundaries in one configured timezone."""

    def __init__(self, tz_name: str = 'UTC', weekly_reset_day: int = 0,
                 weekly_reset_time: str = '00:00') -> None:
        """
        Initialize the calendar.

        Args:
            tz_name: IANA timezone name, e.g. "Europe/Berlin".
            weekly_reset_day: Weekday of the weekly reset, 0 = Monday ... 6 = Sunday.
            weekly_reset_time: Local time of the weekly reset, "HH:MM".

        Raises:
            ValueError: If the weekday or time is out of range.
        """
        if not 0 <= int(weekly_reset_day) <= 6:
            raise ValueError(f"weekly_reset_day must be 0-6, got {weekly_reset_day}")

        self.tz_name = tz_name
        self.tz = ZoneInfo(tz_name)
        self.weekly_reset_day = int(weekly_reset_day)
        self.weekly_reset_time = parse_reset_time(weekly_reset_time)

        logger.debug(f"Calendar in {tz_name}, weekly reset {WEEKDAY_NAMES[self.weekly_reset_day]} "
                     f"{self.weekly_reset_time.strftime('%H:%M')}")

    def local(self, moment: datetime) -> datetime:
        """Convert a datetime to the configured timezone. Naive values are taken as UTC."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz)

    def local_date(self, moment: datetime) -> date:
        return self.local(moment).date()

    def date_key(self, moment: datetime) -> str:
        """``YYYY-MM-DD`` of the moment in the configured timezone."""
        return self.local_date(moment).isoformat()

    def today_key(self, now: Optional[datetime] = None) -> str:
        return self.date_key(now or utc_now())

    def week_start(self, now: Optional[datetime] = None) -> datetime:
        """
        Most recent weekly reset boundary at or before ``now``.

        Returns:
            The boundary as an aware UTC datetime.
        """
        local_now = self.local(now or utc_now())
        days_back = (local_now.weekday() - self.weekly_reset_day) % 7
        boundary_date = local_now.date() - timedelta(days=days_back)
        boundary = datetime.combine(boundary_date, self.weekly_reset_time, tzinfo=self.tz)
        if boundary > local_now:
            boundary = datetime.combine(boundary_date - timedelta(days=7), self.weekly_reset_time,
                                        tzinfo=self.tz)
        return boundary.astimezone(timezone.utc)

    def is_new_week(self, baseline_start: datetime, now: Optional[datetime] = None) -> bool:
        """True if a weekly boundary lies after ``baseline_start`` and at or before ``now``."""
        if baseline_start.tzinfo is None:
            baseline_start = baseline_start.replace(tzinfo=timezone.utc)
        return self.week_start(now) > baseline_start

    def format_time(self, moment: datetime) -> str:
        """Short local time for rendered messages."""
        return self.local(moment).strftime('%H:%M')

    def format_date(self, date_key: str) -> str:
        """Readable label for a ``YYYY-MM-DD`` key, e.g. "Sunday 16 March 2025"."""
        day = date.fromisoformat(date_key)
        return f"{WEEKDAY_NAMES[day.weekday()]} {day.day} {day.strftime('%B %Y')}"
