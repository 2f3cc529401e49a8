"""
APARTRACK Schedules — Status Machine & Inspection Window

Status is recomputed from the schedule and the current instant on every
call; nothing here is stored.
"""
import logging
import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Tuple, Optional

from ..geo import ensure_utc, to_zone, ZoneLike
from .models import Schedule

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MINUTES = 30


class ScheduleStatus(str, Enum):
    INACTIVE = "inactive"
    OVERDUE = "overdue"
    ONGOING = "ongoing"
    UPCOMING = "upcoming"
    UNKNOWN = "unknown"


def derive_status(schedule: Schedule, now: datetime) -> ScheduleStatus:
    """
    Derive the live status of a schedule at `now`.

    Order: inactive, overdue, ongoing, upcoming. The final `unknown`
    branch cannot be reached by a well-formed window; reaching it is
    logged as a data-integrity problem and returned, never raised.
    """
    if not schedule.is_active:
        return ScheduleStatus.INACTIVE

    now = ensure_utc(now)
    if now > schedule.end_at:
        return ScheduleStatus.OVERDUE
    if schedule.start_at <= now <= schedule.end_at:
        return ScheduleStatus.ONGOING
    if now < schedule.start_at:
        return ScheduleStatus.UPCOMING

    logger.warning(
        f"[Schedules] DataIntegrityUnknownStatus: schedule {schedule.id} "
        f"start={schedule.start_at} end={schedule.end_at} now={now}"
    )
    return ScheduleStatus.UNKNOWN


def inspection_window(schedule: Schedule,
                      minutes: int = DEFAULT_WINDOW_MINUTES) -> Tuple[datetime, datetime]:
    """[start - minutes, min(end, start + minutes)] in UTC."""
    margin = timedelta(minutes=minutes)
    return schedule.start_at - margin, min(schedule.end_at, schedule.start_at + margin)


def is_within_window(schedule: Schedule, instant: datetime,
                     minutes: int = DEFAULT_WINDOW_MINUTES) -> bool:
    lo, hi = inspection_window(schedule, minutes)
    return lo <= ensure_utc(instant) <= hi


def days_until(schedule: Schedule, now: datetime, zone: ZoneLike) -> int:
    """Calendar days from today to the schedule's local start date (negative when past)."""
    today = to_zone(ensure_utc(now), zone).date()
    return (schedule.local_start_date(zone) - today).days


def minutes_until_start(schedule: Schedule, now: datetime) -> Optional[int]:
    delta = schedule.start_at - ensure_utc(now)
    if delta.total_seconds() < 0:
        return None
    return math.ceil(delta.total_seconds() / 60)
