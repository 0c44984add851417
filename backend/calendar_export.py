"""
iCalendar export of a user's schedule.
Tasks are resolved with date_utils against one shared reference date; tasks that
can't be resolved are skipped and the rest become VEVENTs.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, Optional, Union

from icalendar import Calendar, Event

from date_utils import format_for_ics, parse_task_datetime
from models import Task

logger = logging.getLogger(__name__)

ICS_CONTENT_TYPE = "text/calendar; charset=utf-8"
ICS_FILENAME = "schedule.ics"
PRODID = "-//StudioGenie//Schedule Export//EN"


class NothingToExportError(Exception):
    """No task could be turned into a calendar event."""


class CalendarSerializationError(Exception):
    """The calendar library failed or produced no output."""


@dataclass(frozen=True)
class CalendarEntry:
    title: str
    start: datetime
    end: datetime
    uid: str
    description: Optional[str] = None


def build_calendar_entries(
    tasks: Iterable[Task],
    reference_date: Union[date, datetime],
) -> list[CalendarEntry]:
    """Resolve each task against reference_date, keeping input order and dropping failures."""
    entries = []
    for task in tasks:
        start, end = parse_task_datetime(task, reference_date)
        if start is None or end is None:
            logger.warning(
                "Skipping task for ICS export due to parsing issue: %s (Day: %s, Time: %s)",
                task.task_id, task.day, task.time
            )
            continue
        entries.append(CalendarEntry(
            title=task.content,
            start=start,
            end=end,
            uid=task.task_id,
            description=task.notes or None,
        ))
    return entries


def _utc_datetime(value: datetime) -> datetime:
    """Rebuild a UTC datetime from the [y, m, d, H, M] ICS fields (seconds dropped)."""
    return datetime(*format_for_ics(value), tzinfo=timezone.utc)


def _to_event(entry: CalendarEntry, stamp: datetime) -> Event:
    event = Event()
    event.add("uid", entry.uid)
    event.add("summary", entry.title)
    if entry.description:
        event.add("description", entry.description)
    event.add("dtstart", _utc_datetime(entry.start))
    event.add("dtend", _utc_datetime(entry.end))
    event.add("dtstamp", stamp)
    return event


def serialize_calendar(entries: list[CalendarEntry]) -> str:
    """
    Render entries as a single VCALENDAR text payload.
    Raises NothingToExportError for an empty list and CalendarSerializationError
    when the payload can't be built.
    """
    if not entries:
        raise NothingToExportError("Could not parse any tasks into valid calendar events.")

    stamp = datetime.now(timezone.utc)
    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")

    try:
        for entry in entries:
            cal.add_component(_to_event(entry, stamp))
        payload = cal.to_ical().decode("utf-8")
    except (ValueError, TypeError) as e:
        logger.error("Error creating ICS file: %s", e)
        raise CalendarSerializationError(str(e)) from e

    if not payload:
        raise CalendarSerializationError("Failed to generate ICS data.")

    return payload


def export_schedule(tasks: Iterable[Task], reference_date: Union[date, datetime]) -> str:
    """Resolve, filter and serialize a user's tasks into an .ics payload."""
    return serialize_calendar(build_calendar_entries(tasks, reference_date))
