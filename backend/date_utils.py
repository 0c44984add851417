"""
Resolve the free-form day/time labels on scheduled tasks into concrete datetimes.
Day labels: YYYY-MM-DD, today/tomorrow, weekday names, "April 12" / "Apr 12".
Time labels: "9:00 AM", "14:30", "9 AM", or a range "9:00 AM - 10:30 AM".
"""
import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Mapping, NamedTuple, Optional, Union

logger = logging.getLogger(__name__)

# Sunday = 0 ... Saturday = 6
DAY_NAMES = ["sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]

ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_RANGE_PATTERN = re.compile(r"^(.+?)\s*-\s*(.+)$")

MONTH_DAY_FORMATS = ["%B %d", "%b %d"]

# h:mm a, ha / h a, then 24-hour H:mm / HH:mm (which also covers h:mm)
TIME_FORMATS = ["%I:%M %p", "%I:%M%p", "%I %p", "%I%p", "%H:%M"]

DEFAULT_DURATION = timedelta(hours=1)


class ResolvedInterval(NamedTuple):
    start: Optional[datetime]
    end: Optional[datetime]

    @property
    def is_resolved(self) -> bool:
        return self.start is not None and self.end is not None


UNRESOLVED = ResolvedInterval(None, None)


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _weekday_index(day: date) -> int:
    """Weekday index with Sunday = 0."""
    return (day.weekday() + 1) % 7


def parse_day_string(day_str: Optional[str], reference_date: Union[date, datetime]) -> Optional[date]:
    """
    Turn a day label into a calendar date, or None if it can't be understood.
    Strategies are tried in order: ISO date, today/tomorrow, weekday name, month + day.
    """
    if not isinstance(day_str, str) or not day_str:
        return None

    day_str = day_str.strip()
    today = _as_date(reference_date)

    if ISO_DATE_PATTERN.match(day_str):
        try:
            return datetime.strptime(day_str, "%Y-%m-%d").date()
        except ValueError:
            pass

    lower_day = day_str.lower()
    if lower_day == "today":
        return today
    if lower_day == "tomorrow":
        return today + timedelta(days=1)

    if lower_day in DAY_NAMES:
        days_to_add = DAY_NAMES.index(lower_day) - _weekday_index(today)
        # Same weekday as today means next week's
        if days_to_add <= 0:
            days_to_add += 7
        return today + timedelta(days=days_to_add)

    for fmt in MONTH_DAY_FORMATS:
        try:
            # Year comes from the reference date (keeps Feb 29 valid in leap years)
            return datetime.strptime(f"{day_str} {today.year}", f"{fmt} %Y").date()
        except ValueError:
            continue

    logger.warning('Could not parse day string: "%s"', day_str)
    return None


def parse_single_time(time_part: str, day: date) -> Optional[datetime]:
    """Parse one clock time ("9:00 AM", "14:30") and put it on the given day."""
    time_part = time_part.strip()
    for fmt in TIME_FORMATS:
        try:
            parsed = datetime.strptime(time_part, fmt)
        except ValueError:
            continue
        return datetime.combine(_as_date(day), time(parsed.hour, parsed.minute))
    return None


def parse_time_string(time_str: Optional[str], day: Optional[date]) -> ResolvedInterval:
    """
    Resolve a time label against an already resolved day.
    Ranges use both ends when the end is after the start, otherwise the start plus
    DEFAULT_DURATION. A single time also gets DEFAULT_DURATION.
    """
    if not isinstance(time_str, str) or not time_str or day is None:
        return UNRESOLVED

    time_str = time_str.strip()

    range_match = TIME_RANGE_PATTERN.match(time_str)
    if range_match:
        start = parse_single_time(range_match.group(1), day)
        end = parse_single_time(range_match.group(2), day)

        if start and end and end > start:
            return ResolvedInterval(start, end)
        if start:
            return ResolvedInterval(start, start + DEFAULT_DURATION)

    start = parse_single_time(time_str, day)
    if start:
        return ResolvedInterval(start, start + DEFAULT_DURATION)

    logger.warning('Could not parse time string: "%s"', time_str)
    return UNRESOLVED


def _field(task, name: str):
    if isinstance(task, Mapping):
        return task.get(name)
    return getattr(task, name, None)


def parse_task_datetime(task, reference_date: Optional[Union[date, datetime]] = None) -> ResolvedInterval:
    """
    Resolve a task's day and time labels into a start/end pair.
    Accepts a Task model or a dict with "day" and "time" keys.
    Returns (None, None) when either label can't be resolved; never raises.
    """
    if reference_date is None:
        reference_date = datetime.now()

    specific_date = parse_day_string(_field(task, "day"), reference_date)
    if specific_date is None:
        return UNRESOLVED

    return parse_time_string(_field(task, "time"), specific_date)


def as_utc_wall_clock(value: datetime) -> datetime:
    """
    Timezone policy for calendar export.
    Naive datetimes keep their wall-clock numbers and are labelled UTC with no offset
    conversion; aware datetimes are converted to UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_for_google_calendar(value: Optional[datetime]) -> str:
    """Google Calendar link format (YYYYMMDDTHHMMSS), local wall clock."""
    if value is None:
        return ""
    return value.strftime("%Y%m%dT%H%M%S")


def format_for_ics(value: Optional[datetime]) -> Optional[tuple[int, int, int, int, int]]:
    """[year, month, day, hour, minute] in UTC fields, month 1-indexed."""
    if value is None:
        return None
    utc = as_utc_wall_clock(value)
    return (utc.year, utc.month, utc.day, utc.hour, utc.minute)
