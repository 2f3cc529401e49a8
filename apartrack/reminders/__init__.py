"""
APARTRACK Inspection Reminders
Daily email / in-app reminders ahead of each scheduled inspection.
"""
from .routes import register_reminder_routes
from .scheduler_jobs import init_reminder_scheduler, shutdown_reminder_scheduler
from .models import init_reminder_schema
from .engine import dispatch_reminders, DispatchSummary

__all__ = [
    "register_reminder_routes",
    "init_reminder_scheduler",
    "shutdown_reminder_scheduler",
    "init_reminder_schema",
    "dispatch_reminders",
    "DispatchSummary",
]
