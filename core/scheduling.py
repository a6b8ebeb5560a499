"""
Conflict detection for vendor appointments.

Pure functions, no I/O. Intervals are half-open [start, end): an appointment
ending at 11:00 and another starting at 11:00 do not conflict.
"""

from datetime import date, datetime
from typing import Iterable

from core.errors import InvalidIntervalError
from core.models import Appointment
from utils.timezone import day_bounds_utc


def intervals_overlap(s1: datetime, e1: datetime, s2: datetime, e2: datetime) -> bool:
    """Half-open overlap test for [s1, e1) and [s2, e2)."""
    return s1 < e2 and s2 < e1


def validate_interval(start: datetime, end: datetime) -> None:
    """
    Ensure a proposed appointment interval is well formed.

    Raises:
        InvalidIntervalError: If either bound is naive or start >= end
    """
    if start.tzinfo is None or end.tzinfo is None:
        raise InvalidIntervalError("Appointment times must be timezone-aware")

    if start >= end:
        raise InvalidIntervalError("End time must be after start time")


def find_conflicts(
    start: datetime,
    end: datetime,
    existing: Iterable[Appointment],
) -> list[Appointment]:
    """
    Existing appointments that would collide with [start, end).

    Only appointments that still occupy the calendar (scheduled, confirmed,
    in progress) are considered.
    """
    return [
        appointment for appointment in existing
        if appointment.status.blocks_calendar
        and intervals_overlap(start, end, appointment.scheduled_start, appointment.scheduled_end)
    ]


def day_bounds(day: date, tz_name: str = "UTC") -> tuple[datetime, datetime]:
    """The calendar day in tz_name as a half-open UTC interval."""
    return day_bounds_utc(day, tz_name)
