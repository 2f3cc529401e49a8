"""
APARTRACK Schedules Module
Inspection windows per asset, with a derived live status.
"""
from .routes import register_schedule_routes
from .models import init_schedule_schema, Schedule, InvalidScheduleWindow, InvalidCadence
from .status import ScheduleStatus, derive_status, inspection_window, is_within_window

__all__ = [
    "register_schedule_routes",
    "init_schedule_schema",
    "Schedule",
    "InvalidScheduleWindow",
    "InvalidCadence",
    "ScheduleStatus",
    "derive_status",
    "inspection_window",
    "is_within_window",
]
