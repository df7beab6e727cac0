"""Grace-period and time policy for reminder scheduling.

Pure functions only: no I/O, no clock reads. Every instant handled here is
timezone aware; slots ("HH:mm") are turned into instants in an explicit zone
so daylight-saving transitions are respected.
"""

from __future__ import annotations

import enum
import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo

DEFAULT_GRACE_PERIOD = timedelta(minutes=30)

_TIME_SLOT_RE = re.compile(r"^\d{2}:\d{2}$")


class SchedulingDecision(str, enum.Enum):
    """Outcome of evaluating a reminder instant against the current time."""

    SCHEDULED = "scheduled"  # future: hand to the OS for later delivery
    IMMEDIATE = "immediate"  # late but within grace: fire now
    MISSED = "missed"  # past grace: drop


def parse_time_slot(time_slot: str) -> tuple[int, int]:
    """Parse an ``HH:mm`` slot (00:00 to 23:59) into ``(hour, minute)``.

    Raises:
        ValueError: If the slot is malformed or out of range.
    """
    if not isinstance(time_slot, str) or not _TIME_SLOT_RE.match(time_slot):
        raise ValueError(f'time slot must be in "HH:mm" format, got: {time_slot!r}')
    hour, minute = int(time_slot[:2]), int(time_slot[3:])
    if hour > 23 or minute > 59:
        raise ValueError(f"time slot out of range: {time_slot!r}")
    return hour, minute


def is_valid_time_slot(time_slot: str) -> bool:
    try:
        parse_time_slot(time_slot)
    except ValueError:
        return False
    return True


def format_time_slot(value: time | datetime) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def _require_aware(value: datetime, name: str) -> None:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone aware")


def slot_instant(time_slot: str, day: date, tz: tzinfo) -> datetime:
    """Return the instant of ``time_slot`` on ``day`` in local time ``tz``.

    Wall times that do not exist (spring-forward gap) are normalized through
    UTC so the result is always a real instant.
    """
    hour, minute = parse_time_slot(time_slot)
    local = datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz)
    return local.astimezone(timezone.utc).astimezone(tz)


def classify(
    scheduled_instant: datetime,
    now: datetime,
    grace: timedelta = DEFAULT_GRACE_PERIOD,
) -> SchedulingDecision:
    """Decide whether a reminder is scheduled, fired immediately, or missed.

    - ``SCHEDULED`` when ``scheduled_instant > now``.
    - ``IMMEDIATE`` when ``now - grace <= scheduled_instant <= now``.
    - ``MISSED`` otherwise.
    """
    _require_aware(scheduled_instant, "scheduled_instant")
    _require_aware(now, "now")

    if scheduled_instant > now:
        return SchedulingDecision.SCHEDULED
    if now - scheduled_instant <= grace:
        return SchedulingDecision.IMMEDIATE
    return SchedulingDecision.MISSED


def followup_instant(initial_instant: datetime, offset_hours: int | float) -> datetime:
    """Return the follow-up instant ``offset_hours`` after ``initial_instant``.

    The offset is real elapsed time: the addition happens in UTC and the
    result is converted back to the initial instant's zone. A late initial
    reminder therefore rolls onto the next calendar day (23:00 + 2h lands at
    01:00 tomorrow), and a DST change in between shifts the wall clock rather
    than the elapsed duration.
    """
    _require_aware(initial_instant, "initial_instant")
    utc = initial_instant.astimezone(timezone.utc) + timedelta(hours=offset_hours)
    return utc.astimezone(initial_instant.tzinfo)


def within_rolling_window(instant: datetime, now: datetime, window_hours: int = 24) -> bool:
    """True when ``instant`` is no later than ``now + window_hours``."""
    _require_aware(instant, "instant")
    _require_aware(now, "now")
    return instant <= now + timedelta(hours=window_hours)


def snooze_instant(now: datetime, minutes: int = 15) -> datetime:
    _require_aware(now, "now")
    return (now.astimezone(timezone.utc) + timedelta(minutes=minutes)).astimezone(now.tzinfo)


def next_weekly_summary_instant(now: datetime) -> datetime:
    """Next Monday at 09:00 local time.

    Today counts when it is Monday and still before 09:00.
    """
    _require_aware(now, "now")
    if now.weekday() == 0 and now.hour < 9:
        monday = now.date()
    else:
        days_until_monday = (7 - now.weekday()) % 7 or 7
        monday = now.date() + timedelta(days=days_until_monday)
    return slot_instant("09:00", monday, now.tzinfo)
